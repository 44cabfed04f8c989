"""
Настройка логирования приложения.
"""

import logging

from .settings import Settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(settings: Settings) -> None:
    """
    Настраивает корневой логгер: файл плюс консоль.

    Args:
        settings: Настройки приложения
    """
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(settings.log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )

    # httpx логирует каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
