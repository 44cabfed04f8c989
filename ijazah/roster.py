"""
Справочник студентов для поиска по NIM.

Статический JSON файл, не связанный с состоянием леджера.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import Mahasiswa

logger = logging.getLogger(__name__)


class StudentRoster:
    """Справочник студентов из JSON файла"""

    def __init__(self, path: Union[str, Path, None] = None, records: Optional[List[dict]] = None):
        self.path = Path(path) if path else None
        self._records = records
        self._index: Optional[Dict[str, Mahasiswa]] = None

    def _load(self) -> Dict[str, Mahasiswa]:
        if self._index is not None:
            return self._index

        records = self._records
        if records is None:
            records = []
            if self.path is not None and self.path.is_file():
                try:
                    records = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    logger.error(f"Не удалось загрузить справочник студентов {self.path}: {e}")
            else:
                logger.warning(f"Справочник студентов не найден: {self.path}")

        index = {}
        for record in records:
            mahasiswa = Mahasiswa.model_validate(record)
            index[mahasiswa.nomor_induk_mahasiswa] = mahasiswa

        logger.info(f"Справочник студентов загружен: {len(index)} записей")
        self._index = index
        return index

    def find_by_nim(self, nim: str) -> Optional[Mahasiswa]:
        """Поиск студента по NIM"""
        return self._load().get(nim.strip())

    def __len__(self) -> int:
        return len(self._load())
