"""
Тесты для справочника студентов
"""
import json

from ijazah.roster import StudentRoster


class TestStudentRoster:
    """Тесты для StudentRoster"""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "mahasiswa.json"
        path.write_text(json.dumps([
            {"nomorIndukMahasiswa": "12345678901", "nama": "Jane Doe", "fakultas": "Teknik"},
            {"nomor_induk_mahasiswa": "12345678902", "nama": "Budi"},
        ]), encoding="utf-8")

        roster = StudentRoster(path)

        assert len(roster) == 2
        assert roster.find_by_nim(" 12345678901 ").fakultas == "Teknik"
        assert roster.find_by_nim("12345678902").nama == "Budi"

    def test_missing_file(self, tmp_path):
        roster = StudentRoster(tmp_path / "missing.json")

        assert roster.find_by_nim("12345678901") is None
        assert len(roster) == 0

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        assert StudentRoster(path).find_by_nim("1") is None
