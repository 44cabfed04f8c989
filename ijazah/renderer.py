"""
Генерация PDF ijazah из шаблона.
"""
import io
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional, Union

from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .exceptions import GenerationError
from .models import DATE_FIELDS

logger = logging.getLogger(__name__)

BULAN = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


def format_tanggal(value: str) -> str:
    """
    Форматирует ISO дату в индонезийский длинный формат.

    Args:
        value: Дата в ISO формате

    Returns:
        str: Например "17 Agustus 2024"

    Raises:
        ValueError: Если строка не является ISO датой
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed: date = datetime.fromisoformat(text).date()
    except ValueError:
        parsed = date.fromisoformat(text[:10])

    return f"{parsed.day:02d} {BULAN[parsed.month - 1]} {parsed.year}"


class CertificateRenderer:
    """Рендер PDF: шаблон с полями формы плюс фото и подпись."""

    # Координаты и масштаб изображений на первой странице шаблона
    PHOTO_POSITION = (240, 25)
    PHOTO_SCALE = 0.2
    SIGNATURE_POSITION = (550, 52)
    SIGNATURE_SCALE = 0.3

    def __init__(self, template_path: Union[str, Path]):
        self.template_path = Path(template_path)

    def render(self, fields: Dict[str, object], photo: bytes, signature: bytes) -> bytes:
        """
        Генерирует PDF ijazah.

        Args:
            fields: Поля владельца в формате леджера
            photo: PNG фото выпускника
            signature: PNG подписи

        Returns:
            bytes: Содержимое PDF

        Raises:
            GenerationError: При ошибке чтения шаблона или рендера
        """
        logger.info(
            f"Генерация PDF ijazah для {fields.get('nama')} - NIM {fields.get('nomorIndukMahasiswa')}"
        )

        try:
            template = PdfReader(io.BytesIO(self.template_path.read_bytes()))
            writer = PdfWriter(clone_from=template)
            page = writer.pages[0]

            overlay = self._draw_images(
                float(page.mediabox.width), float(page.mediabox.height), photo, signature
            )
            page.merge_page(PdfReader(io.BytesIO(overlay)).pages[0])

            values = self._form_values(fields, template.get_fields() or {})
            if values:
                writer.update_page_form_field_values(page, values)

            output = io.BytesIO()
            writer.write(output)
            return output.getvalue()

        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Ошибка генерации PDF ijazah: {e}")
            raise GenerationError(f"Не удалось сгенерировать PDF ijazah: {e}")

    def _draw_images(self, width: float, height: float, photo: bytes, signature: bytes) -> bytes:
        """Страница-оверлей с фото и подписью."""
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=(width, height))

        for data, (x, y), scale in (
                (signature, self.SIGNATURE_POSITION, self.SIGNATURE_SCALE),
                (photo, self.PHOTO_POSITION, self.PHOTO_SCALE),
        ):
            image = ImageReader(io.BytesIO(data))
            image_width, image_height = image.getSize()
            c.drawImage(
                image, x, y,
                width=image_width * scale,
                height=image_height * scale,
                mask="auto"
            )

        c.save()
        return buffer.getvalue()

    @staticmethod
    def _form_values(fields: Dict[str, object], form_fields: Dict[str, object]) -> Dict[str, str]:
        """Значения для полей формы; ключи без поля в шаблоне пропускаются."""
        values = {}

        for key, value in fields.items():
            if value in (None, ""):
                continue

            text = str(value)
            if key in DATE_FIELDS:
                try:
                    text = format_tanggal(text)
                except ValueError:
                    logger.warning(f"Не удалось отформатировать дату '{key}': {value}")

            if key not in form_fields:
                logger.warning(f"Поле '{key}' отсутствует в форме шаблона, пропущено")
                continue

            values[key] = text

        return values


def render_default_template(path: Optional[Union[str, Path]] = None) -> bytes:
    """
    Строит простой шаблон A4 (альбомный) без полей формы.

    Нужен для локального запуска без оформленного шаблона.
    """
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(842, 595))
    c.setFont("Helvetica-Bold", 28)
    c.drawCentredString(421, 500, "IJAZAH")
    c.save()

    data = buffer.getvalue()
    if path is not None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(data)
    return data
