"""
Модуль конфигурации оркестратора ijazah.
"""

from .settings import get_settings, Settings
from .log import setup_logging

__version__ = "1.0.0"

__all__ = ['get_settings', 'Settings', 'setup_logging']
