"""
Pydantic модели записей леджера: ijazah, подписи и справочник студентов.

Python-атрибуты в snake_case, формат леджера сохраняет имена полей чейнкода
через алиасы. В леджер всегда пишется model_dump(by_alias=True).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Текущее время в ISO формате, как его хранит леджер."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Organization(str, Enum):
    """Организации сети леджера."""
    AKADEMIK = "akademik"  # выпускает ijazah
    REKTOR = "rektor"      # подписывает


class IjazahStatus(str, Enum):
    """Статус ijazah в леджере."""
    ACTIVE = "active"
    INACTIVE = "inactive"


# Поля с датами, которые печатаются в PDF в длинном формате
DATE_FIELDS = ("tanggalLahir", "tanggalLulus", "tanggalIjazahDiberikan")


def check_nim(v: str) -> str:
    """NIM состоит только из цифр."""
    nim = v.strip()
    if not nim or not nim.isdigit():
        raise ValueError(f"NIM должен содержать только цифры: {v}")
    return nim


class IjazahFields(BaseModel):
    """
    Поля владельца ijazah без входных проверок.

    Так читаются записи, уже лежащие в леджере: их могли записать другие
    клиенты контракта, поэтому формат NIM и заполненность полей не
    гарантируются.
    """
    nomor_dokumen: Optional[str] = Field(default="", description="Номер документа")
    nomor_ijazah_nasional: Optional[str] = Field(default="", description="Национальный номер ijazah")
    nama: Optional[str] = Field(default="", description="Имя выпускника")
    tempat_lahir: Optional[str] = Field(None, description="Место рождения")
    tanggal_lahir: Optional[str] = Field(default="", description="Дата рождения (ISO)")
    nomor_induk_kependudukan: Optional[str] = Field(default="", description="Номер удостоверения личности")
    program_studi: Optional[str] = Field(default="", description="Программа обучения")
    fakultas: Optional[str] = Field(default="", description="Факультет")
    tahun_diterima: Optional[str] = Field(default="", description="Год поступления")
    nomor_induk_mahasiswa: Optional[str] = Field(default="", description="NIM студента")
    tanggal_lulus: Optional[str] = Field(default="", description="Дата выпуска (ISO)")
    jenis_pendidikan: Optional[str] = Field(default="", description="Вид образования")
    gelar_pendidikan: Optional[str] = Field(default="", description="Присвоенная степень")
    akreditasi_program_studi: Optional[str] = Field(default="", description="Аккредитация программы")
    keputusan_akreditasi_program_studi: Optional[str] = Field(default="", description="Решение об аккредитации")
    tempat_ijazah_diberikan: Optional[str] = Field(default="", description="Место выдачи")
    tanggal_ijazah_diberikan: Optional[str] = Field(default="", description="Дата выдачи (ISO)")

    def holder_fields(self) -> dict:
        """Поля владельца в формате леджера."""
        return self.model_dump(by_alias=True, exclude_none=True, include=set(IjazahFields.model_fields))

    class Config:
        """Конфигурация модели."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class IjazahInput(IjazahFields):
    """Данные владельца ijazah, приходящие от вызывающей стороны."""
    nama: str = Field(..., min_length=1, description="Имя выпускника")
    nomor_induk_mahasiswa: str = Field(..., description="NIM студента")

    @validator('nomor_induk_mahasiswa')
    def validate_nim(cls, v):
        return check_nim(v)

    class Config:
        """Конфигурация модели."""
        json_schema_extra = {
            "example": {
                "nama": "Jane Doe",
                "nomorIndukMahasiswa": "12345678901",
                "programStudi": "Informatika",
                "tanggalLulus": "2024-08-17",
            }
        }


class IjazahUpdate(BaseModel):
    """Частичное обновление полей владельца. Пропущенные поля не меняются."""
    nomor_dokumen: Optional[str] = None
    nomor_ijazah_nasional: Optional[str] = None
    nama: Optional[str] = Field(None, min_length=1)
    tempat_lahir: Optional[str] = None
    tanggal_lahir: Optional[str] = None
    nomor_induk_kependudukan: Optional[str] = None
    program_studi: Optional[str] = None
    fakultas: Optional[str] = None
    tahun_diterima: Optional[str] = None
    nomor_induk_mahasiswa: Optional[str] = None
    tanggal_lulus: Optional[str] = None
    jenis_pendidikan: Optional[str] = None
    gelar_pendidikan: Optional[str] = None
    akreditasi_program_studi: Optional[str] = None
    keputusan_akreditasi_program_studi: Optional[str] = None
    tempat_ijazah_diberikan: Optional[str] = None
    tanggal_ijazah_diberikan: Optional[str] = None

    @validator('nomor_induk_mahasiswa')
    def validate_nim(cls, v):
        """Проверяется только переданный NIM."""
        return v if v is None else check_nim(v)

    def changed_fields(self) -> dict:
        """Только переданные поля в формате леджера."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        """Конфигурация модели."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class Ijazah(IjazahFields):
    """Запись ijazah в леджере."""
    id: str = Field(..., alias="ID", description="ID ijazah")
    type: str = Field(default="certificate", alias="Type")
    content_address: Optional[str] = Field(None, alias="ipfsCID", description="CID PDF в кластере")
    signature_id: Optional[str] = Field(None, alias="signatureID", description="Подпись на момент выпуска")
    photo_path: Optional[str] = Field(None, alias="photoPath", description="Имя файла фото")
    # статусы, записанные другими клиентами контракта, сохраняются строкой
    status: Union[IjazahStatus, str] = Field(default=IjazahStatus.ACTIVE, alias="Status")
    created_at: Optional[str] = Field(None, alias="CreatedAt")
    updated_at: Optional[str] = Field(None, alias="UpdatedAt")

    @property
    def is_active(self) -> bool:
        """Действует ли ijazah."""
        return self.status == IjazahStatus.ACTIVE

    def to_ledger(self) -> dict:
        """Сериализация для передачи в чейнкод."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    class Config:
        """Конфигурация модели."""
        extra = "allow"  # поля, добавленные контрактом, сохраняются при обновлении


class IjazahResponse(Ijazah):
    """Запись ijazah с производными URL для клиента."""
    certificate_url: Optional[str] = Field(None, alias="certificateUrl")
    photo_url: Optional[str] = Field(None, alias="photoUrl")

    def to_ledger(self) -> dict:
        """Сериализация без производных URL, они в леджере не хранятся."""
        return self.model_dump(
            by_alias=True, mode="json", exclude_none=True,
            exclude={"certificate_url", "photo_url"}
        )


class SignatureInput(BaseModel):
    """Данные для создания или обновления подписи."""
    id: str = Field(..., min_length=1, alias="ID", description="ID подписи")
    file_path: Optional[str] = Field(None, alias="filePath", description="Имя файла изображения")
    url: Optional[str] = Field(None, alias="URL", description="Внешний URL изображения")
    is_active: Optional[bool] = Field(None, alias="IsActive")

    def to_ledger(self) -> dict:
        """Сериализация для передачи в чейнкод."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        """Конфигурация модели."""
        populate_by_name = True


class Signature(BaseModel):
    """Запись подписи в леджере."""
    id: str = Field(..., alias="ID")
    type: str = Field(default="signature", alias="Type")
    file_path: Optional[str] = Field(None, alias="filePath")
    url: Optional[str] = Field(None, alias="URL")
    is_active: bool = Field(default=False, alias="IsActive")
    owner: Optional[str] = Field(None, alias="Owner")
    created_at: Optional[str] = Field(None, alias="CreatedAt")
    updated_at: Optional[str] = Field(None, alias="UpdatedAt")

    @property
    def content_reference(self) -> Optional[str]:
        """Ссылка на изображение: локальный файл или URL."""
        return self.file_path or self.url

    def to_ledger(self) -> dict:
        """Сериализация для передачи в чейнкод."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        """Конфигурация модели."""
        populate_by_name = True
        extra = "allow"


class Mahasiswa(BaseModel):
    """Запись справочника студентов."""
    nomor_induk_mahasiswa: str
    nama: str
    program_studi: Optional[str] = None
    fakultas: Optional[str] = None

    class Config:
        """Конфигурация модели."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"
