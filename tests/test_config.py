"""
Тесты для настроек и логирования
"""
import logging

import pytest
from pydantic import ValidationError

from config.log import setup_logging
from config.settings import Settings, create_env_example


class TestSettings:
    """Тесты для Settings"""

    def test_env_override(self, monkeypatch, tmp_path):
        """Тест чтения переменных окружения"""
        monkeypatch.setenv("AKADEMIK_REST_ENDPOINT", "http://akademik:8801/")
        monkeypatch.setenv("FABRIC_CHANNEL", "ijazahchannel")
        monkeypatch.setenv("IPFS_CLUSTER_USERNAME", "admin")
        monkeypatch.setenv("IPFS_CLUSTER_PASSWORD", "secret")

        settings = Settings(_env_file=None)

        assert settings.fabric_channel == "ijazahchannel"
        assert settings.organization_endpoints["akademik"] == "http://akademik:8801"
        assert settings.cluster_auth_enabled is True

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.fabric_token_ttl == 600
        assert settings.ipfs_health_timeout == 2.0
        assert settings.files_url_prefix == "/api/files"
        assert settings.cluster_auth_enabled is False

    def test_invalid_token_ttl(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, fabric_token_ttl=0)

    def test_create_directories(self, tmp_path):
        settings = Settings(
            _env_file=None,
            uploads_dir=tmp_path / "uploads",
            log_file=tmp_path / "logs" / "app.log",
        )

        settings.create_directories()

        assert (tmp_path / "uploads" / "photos").is_dir()
        assert (tmp_path / "uploads" / "signatures").is_dir()
        assert (tmp_path / "logs").is_dir()

    def test_env_example_lists_every_setting(self, tmp_path, monkeypatch):
        """Тест: пример .env содержит все переменные настроек"""
        monkeypatch.chdir(tmp_path)

        create_env_example()

        content = (tmp_path / ".env.example").read_text(encoding="utf-8")
        keys = {line.split("=", 1)[0] for line in content.splitlines() if "=" in line}
        assert keys == {name.upper() for name in Settings.model_fields}

    def test_setup_logging_quiets_httpx(self, settings):
        setup_logging(settings)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert settings.log_file.parent.is_dir()
