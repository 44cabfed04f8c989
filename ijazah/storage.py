"""
Локальное хранилище загруженных изображений: фото выпускников и подписи.
"""
import io
import logging
import os
import time
from pathlib import Path
from typing import Dict, Tuple, Union

from PIL import Image

from .exceptions import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

# Канонические размеры изображений (ширина, высота)
PHOTO_SIZE: Tuple[int, int] = (496, 659)
SIGNATURE_SIZE: Tuple[int, int] = (667, 276)


class FileStorage:
    """Класс для работы с файловым хранилищем изображений"""

    def __init__(self, base_path: Union[str, Path] = "uploads"):
        self.base_path = Path(base_path)
        self.photos_path = self.base_path / "photos"
        self.signatures_path = self.base_path / "signatures"

        self.photos_path.mkdir(parents=True, exist_ok=True)
        self.signatures_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def generate_file_name(prefix: str, original_name: str = "") -> str:
        """
        Генерирует имя файла вида {prefix}_{timestampMillis}{ext}.

        Два вызова в одну миллисекунду дают одинаковое имя.

        Args:
            prefix: Префикс имени
            original_name: Исходное имя файла, из него берется расширение

        Returns:
            str: Имя файла
        """
        extension = Path(original_name).suffix or ".png"
        return f"{prefix}_{int(time.time() * 1000)}{extension}"

    def save_photo(self, data: bytes, filename: str) -> str:
        """
        Сохраняет фото, приведенное к 496x659 PNG.

        Args:
            data: Исходные байты изображения
            filename: Имя файла

        Returns:
            str: Имя сохраненного файла

        Raises:
            StorageError: При ошибке обработки или записи
        """
        self._write_image(self.photos_path, filename, data, PHOTO_SIZE)
        logger.info(f"Фото сохранено: {filename}")
        return filename

    def save_signature(self, data: bytes, filename: str) -> str:
        """
        Сохраняет подпись, приведенную к 667x276 PNG.

        Args:
            data: Исходные байты изображения
            filename: Имя файла

        Returns:
            str: Имя сохраненного файла

        Raises:
            StorageError: При ошибке обработки или записи
        """
        self._write_image(self.signatures_path, filename, data, SIGNATURE_SIZE)
        logger.info(f"Подпись сохранена: {filename}")
        return filename

    def get_photo(self, file_name_or_path: str) -> bytes:
        """Читает фото по имени файла или абсолютному пути."""
        return self._read(self.get_photo_path(file_name_or_path), "Фото", file_name_or_path)

    def get_signature(self, file_name_or_path: str) -> bytes:
        """Читает подпись по имени файла или абсолютному пути."""
        return self._read(self.get_signature_path(file_name_or_path), "Подпись", file_name_or_path)

    def delete_photo(self, file_name_or_path: str) -> bool:
        """Удаляет фото. При ошибке возвращает False."""
        return self._delete(self.photos_path, file_name_or_path, "фото")

    def delete_signature(self, file_name_or_path: str) -> bool:
        """Удаляет подпись. При ошибке возвращает False."""
        return self._delete(self.signatures_path, file_name_or_path, "подпись")

    def photo_exists(self, file_name_or_path: str) -> bool:
        try:
            return self.get_photo_path(file_name_or_path).is_file()
        except ValidationError:
            return False

    def signature_exists(self, file_name_or_path: str) -> bool:
        try:
            return self.get_signature_path(file_name_or_path).is_file()
        except ValidationError:
            return False

    def get_photo_path(self, file_name_or_path: str) -> Path:
        return self._resolve(self.photos_path, file_name_or_path)

    def get_signature_path(self, file_name_or_path: str) -> Path:
        return self._resolve(self.signatures_path, file_name_or_path)

    def get_storage_stats(self) -> Dict[str, Dict[str, int]]:
        """
        Получение статистики хранилища.

        Returns:
            Dict: {photos: {count, totalSize}, signatures: {count, totalSize}}
        """
        return {
            "photos": self._directory_stats(self.photos_path),
            "signatures": self._directory_stats(self.signatures_path),
        }

    def _resolve(self, directory: Path, file_name_or_path: str) -> Path:
        """Абсолютный путь используется как есть, имя файла ищется в директории."""
        if os.path.isabs(file_name_or_path):
            return Path(file_name_or_path)

        if (not file_name_or_path or ".." in file_name_or_path
                or "/" in file_name_or_path or "\\" in file_name_or_path):
            raise ValidationError(f"Некорректное имя файла: {file_name_or_path!r}")

        return directory / file_name_or_path

    def _write_image(self, directory: Path, filename: str, data: bytes, size: Tuple[int, int]) -> None:
        """Масштабирует изображение без сохранения пропорций и пишет PNG."""
        target = self._resolve(directory, filename)

        try:
            with Image.open(io.BytesIO(data)) as image:
                if image.mode not in ("RGB", "RGBA"):
                    image = image.convert("RGBA")
                resized = image.resize(size)

            buffer = io.BytesIO()
            resized.save(buffer, format="PNG")
            target.write_bytes(buffer.getvalue())
            os.chmod(target, 0o644)

        except Exception as e:
            logger.error(f"Ошибка сохранения изображения {filename}: {e}")
            raise StorageError(f"Ошибка сохранения изображения {filename}: {e}")

    def _read(self, path: Path, kind: str, reference: str) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error(f"Не удалось прочитать {reference}: {e}")
            raise NotFoundError(f"{kind} не найдено: {reference}")

    def _delete(self, directory: Path, reference: str, kind: str) -> bool:
        try:
            self._resolve(directory, reference).unlink()
            logger.info(f"Удален файл ({kind}): {reference}")
            return True
        except (OSError, ValidationError) as e:
            logger.warning(f"Не удалось удалить файл ({kind}) {reference}: {e}")
            return False

    @staticmethod
    def _directory_stats(directory: Path) -> Dict[str, int]:
        count = 0
        total_size = 0
        for path in directory.iterdir():
            count += 1
            try:
                total_size += path.stat().st_size
            except OSError as e:
                logger.warning(f"Не удалось получить размер {path}: {e}")

        return {"count": count, "totalSize": total_size}
