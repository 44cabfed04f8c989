"""
Настройки приложения, загружаемые из переменных окружения.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Настройки приложения."""

    # Настройки Fabric REST (Fablo) для организаций
    akademik_rest_endpoint: str = Field(
        default="http://localhost:8801",
        description="REST шлюз леджера организации AKADEMIK"
    )
    rektor_rest_endpoint: str = Field(
        default="http://localhost:8802",
        description="REST шлюз леджера организации REKTOR"
    )
    fabric_channel: str = Field(default="mychannel", description="Канал леджера")
    chaincode_name: str = Field(default="mycontract", description="Имя чейнкода")
    admin_username: str = Field(default="admin", description="Администратор организаций")
    admin_password: str = Field(default="adminpw", description="Пароль администратора")
    fabric_token_ttl: int = Field(default=600, description="Время жизни токена в секундах")
    fabric_timeout: float = Field(default=30.0, description="Таймаут запросов к шлюзу")

    # Настройки IPFS Cluster
    ipfs_cluster_api_url: str = Field(
        default="http://172.19.0.4:9094",
        description="Основной API кластера"
    )
    ipfs_cluster_fallback_api_url: str = Field(
        default="http://172.19.0.6:9094",
        description="Резервный API кластера"
    )
    ipfs_gateway_url: str = Field(default="http://172.19.0.3:8080", description="Публичный шлюз IPFS")
    ipfs_cluster_username: str = Field(default="", description="Пользователь API кластера")
    ipfs_cluster_password: str = Field(default="", description="Пароль API кластера")
    ipfs_cluster_timeout: float = Field(default=30.0, description="Таймаут запросов к кластеру")
    ipfs_health_timeout: float = Field(default=2.0, description="Таймаут проверки здоровья кластера")

    # Настройки локального хранилища
    uploads_dir: Path = Field(default=Path("./uploads"), description="Корень локального хранилища")
    certificate_template: Path = Field(
        default=Path("./templates/template.pdf"),
        description="Шаблон PDF ijazah"
    )
    student_roster: Path = Field(
        default=Path("./data/mahasiswa.json"),
        description="Справочник студентов для поиска по NIM"
    )
    files_url_prefix: str = Field(default="/api/files", description="Префикс URL раздачи файлов")

    # Настройки логирования
    log_level: str = Field(default="INFO", description="Уровень логирования")
    log_file: Path = Field(default=Path("./logs/ijazah.log"), description="Путь к файлу логов")

    # Настройки приложения
    debug: bool = Field(default=False, description="Режим отладки")

    @property
    def organization_endpoints(self) -> Dict[str, str]:
        """Возвращает REST шлюзы по организациям."""
        return {
            "akademik": self.akademik_rest_endpoint,
            "rektor": self.rektor_rest_endpoint,
        }

    @property
    def cluster_auth_enabled(self) -> bool:
        """Заданы ли учетные данные API кластера."""
        return bool(self.ipfs_cluster_username and self.ipfs_cluster_password)

    @validator('fabric_token_ttl')
    def validate_token_ttl(cls, v):
        """Валидация времени жизни токена."""
        if v <= 0:
            raise ValueError("Время жизни токена должно быть положительным")
        return v

    @validator('akademik_rest_endpoint', 'rektor_rest_endpoint',
               'ipfs_cluster_api_url', 'ipfs_cluster_fallback_api_url', 'ipfs_gateway_url')
    def strip_trailing_slash(cls, v):
        """Убирает завершающий слэш из URL."""
        return v.rstrip('/')

    def create_directories(self):
        """Создает необходимые директории."""
        for directory in (
                self.uploads_dir / "photos",
                self.uploads_dir / "signatures",
                self.log_file.parent,
        ):
            directory.mkdir(parents=True, exist_ok=True)

            if not os.access(directory, os.W_OK):
                print(f"⚠️  Нет прав записи в {directory}")

    class Config:
        """Конфигурация настроек."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Игнорировать дополнительные поля из .env


@lru_cache()
def get_settings() -> Settings:
    """Возвращает объект настроек."""
    return Settings()


def create_env_example():
    """Создает пример файла .env."""
    env_example_content = """# Fabric REST (Fablo)
AKADEMIK_REST_ENDPOINT=http://localhost:8801
REKTOR_REST_ENDPOINT=http://localhost:8802
FABRIC_CHANNEL=mychannel
CHAINCODE_NAME=mycontract
ADMIN_USERNAME=admin
ADMIN_PASSWORD=adminpw
FABRIC_TOKEN_TTL=600
FABRIC_TIMEOUT=30

# IPFS Cluster
IPFS_CLUSTER_API_URL=http://172.19.0.4:9094
IPFS_CLUSTER_FALLBACK_API_URL=http://172.19.0.6:9094
IPFS_GATEWAY_URL=http://172.19.0.3:8080
IPFS_CLUSTER_USERNAME=
IPFS_CLUSTER_PASSWORD=
IPFS_CLUSTER_TIMEOUT=30
IPFS_HEALTH_TIMEOUT=2

# Локальное хранилище
UPLOADS_DIR=./uploads
CERTIFICATE_TEMPLATE=./templates/template.pdf
STUDENT_ROSTER=./data/mahasiswa.json
FILES_URL_PREFIX=/api/files

# Логирование
LOG_LEVEL=INFO
LOG_FILE=./logs/ijazah.log
DEBUG=false
"""

    with open(".env.example", "w", encoding="utf-8") as f:
        f.write(env_example_content)

    print("Создан файл .env.example с примером конфигурации")


def validate_settings() -> bool:
    """Проверяет корректность настроек."""
    try:
        settings = get_settings()

        print("Проверка настроек:")
        for org, endpoint in settings.organization_endpoints.items():
            print(f"  ✓ Шлюз {org}: {endpoint}")
        print(f"  ✓ Канал/чейнкод: {settings.fabric_channel}/{settings.chaincode_name}")
        print(f"  ✓ Кластер: {settings.ipfs_cluster_api_url} (резерв {settings.ipfs_cluster_fallback_api_url})")
        print(f"  ✓ Шлюз IPFS: {settings.ipfs_gateway_url}")
        print(f"  ✓ Локальное хранилище: {settings.uploads_dir}")

        settings.create_directories()

        return True

    except Exception as e:
        print(f"Ошибка в настройках: {e}")
        return False


if __name__ == "__main__":
    create_env_example()

    if not validate_settings():
        print("\nСоздайте файл .env на основе .env.example и укажите корректные значения")
    else:
        print("\nНастройки корректны!")
