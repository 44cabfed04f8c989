"""
Кастомные исключения оркестратора ijazah.
"""

from typing import Any, Dict, Optional


class IjazahError(Exception):
    """Базовое исключение для всех ошибок оркестратора."""

    def __init__(self, message: str = "", orphaned: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        # Артефакты, оставшиеся без записи в леджере после частичного сбоя
        self.orphaned: Dict[str, Any] = dict(orphaned or {})

    @property
    def is_partial(self) -> bool:
        """Операция успела что-то записать до сбоя."""
        return bool(self.orphaned)


class AccessDeniedError(IjazahError):
    """Организация не имеет права на операцию."""
    pass


class NotFoundError(IjazahError):
    """Запись или файл не найдены."""
    pass


class ValidationError(IjazahError):
    """Ошибка валидации входных данных."""
    pass


class GenerationError(IjazahError):
    """Ошибка генерации PDF ijazah."""
    pass


class UploadError(IjazahError):
    """Ошибка загрузки или закрепления контента в кластере."""
    pass


class StorageError(IjazahError):
    """Ошибка локального файлового хранилища."""
    pass


class ClusterError(IjazahError):
    """Ошибка чтения из кластера."""
    pass


class LedgerError(IjazahError):
    """Ошибка вызова чейнкода."""
    pass


class EnrollmentError(LedgerError):
    """Ошибка регистрации идентичности в шлюзе леджера."""
    pass


class CleanupWarning(UserWarning):
    """Сбой компенсирующего действия. Только логируется, операцию не прерывает."""
    pass
