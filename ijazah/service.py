"""
Оркестратор жизненного цикла ijazah и подписей.

Леджер - система учета. PDF ijazah хранится в кластере, фото и подписи -
в локальном хранилище. Каждый многошаговый сценарий описан сагой с явной
политикой компенсации для каждого шага.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .cluster import IpfsClusterClient
from .exceptions import (
    AccessDeniedError, ClusterError, GenerationError, IjazahError, LedgerError,
    NotFoundError, ValidationError,
)
from .fabric import FabricGateway
from .models import (
    Ijazah, IjazahFields, IjazahInput, IjazahResponse, IjazahStatus, IjazahUpdate, Mahasiswa,
    Organization, Signature, SignatureInput, utc_now_iso,
)
from .renderer import CertificateRenderer
from .roster import StudentRoster
from .saga import Saga
from .storage import FileStorage

logger = logging.getLogger(__name__)

# Организация, выпускающая ijazah
ISSUING_ORGANIZATIONS = (Organization.AKADEMIK,)
# Организации, управляющие подписями
SIGNATURE_ORGANIZATIONS = (Organization.REKTOR, Organization.AKADEMIK)

DEFAULT_FILES_URL_PREFIX = "/api/files"
# Сообщения контракта об отсутствии записи
MISSING_RECORD_MARKERS = ("does not exist", "not found", "tidak ditemukan")


def generate_ijazah_id() -> str:
    """ID вида ijazah_{epochMillis}_{8 hex}"""
    return f"ijazah_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class IjazahService:
    """Сервис выпуска и сопровождения ijazah."""

    def __init__(
            self,
            gateway: FabricGateway,
            cluster: IpfsClusterClient,
            storage: FileStorage,
            renderer: CertificateRenderer,
            roster: Optional[StudentRoster] = None,
            settings=None
    ):
        """Инициализация сервиса с готовыми зависимостями."""
        self.gateway = gateway
        self.cluster = cluster
        self.storage = storage
        self.renderer = renderer
        self.roster = roster or StudentRoster()
        self.files_url_prefix = (
            settings.files_url_prefix if settings is not None else DEFAULT_FILES_URL_PREFIX
        ).rstrip("/")

    # === Общие помощники ===

    @staticmethod
    def _authorize(organization: Organization, allowed, action: str) -> Organization:
        try:
            organization = Organization(organization)
        except ValueError:
            raise AccessDeniedError(f"Неизвестная организация: {organization}")

        if organization not in allowed:
            logger.warning(f"Организации {organization.value} запрещено: {action}")
            raise AccessDeniedError(
                f"Access denied: {organization.value} cannot {action}"
            )
        return organization

    @staticmethod
    def _decode(result: Any) -> Any:
        """Ответ чейнкода приходит JSON строкой или уже разобранным."""
        if isinstance(result, (bytes, bytearray)):
            result = result.decode("utf-8")
        if isinstance(result, str):
            if not result.strip():
                return None
            try:
                return json.loads(result)
            except ValueError:
                return result
        return result

    @staticmethod
    def _parse(model, data: Any):
        """Входные данные в модель; ошибки pydantic становятся ValidationError."""
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Некорректные данные {model.__name__}: {e}")

    async def _read(self, organization: Organization, token: str, method: str, record_id: str, kind: str) -> dict:
        """Чтение записи по ID; отсутствие записи в контракте становится NotFoundError."""
        try:
            result = self._decode(await self.gateway.query(organization, token, method, [record_id]))
        except LedgerError as e:
            if any(marker in str(e).lower() for marker in MISSING_RECORD_MARKERS):
                raise NotFoundError(f"{kind} with ID {record_id} not found") from e
            raise

        if not isinstance(result, dict):
            raise NotFoundError(f"{kind} with ID {record_id} not found")
        return result

    def _to_response(self, record: Union[Ijazah, dict]) -> IjazahResponse:
        data = record.to_ledger() if isinstance(record, Ijazah) else dict(record)
        try:
            response = IjazahResponse.model_validate(data)
        except PydanticValidationError as e:
            raise LedgerError(f"Некорректная запись ijazah {data.get('ID')} в леджере: {e}") from e
        response.certificate_url = self.get_certificate_download_url(response.content_address)
        response.photo_url = self.get_photo_url(response.photo_path)
        return response

    # === Ijazah ===

    async def create_ijazah(
            self,
            organization: Organization,
            token: str,
            data: Union[IjazahInput, dict],
            photo: Optional[bytes]
    ) -> IjazahResponse:
        """
        Выпуск нового ijazah.

        Args:
            organization: Организация вызывающей стороны
            token: Токен леджера вызывающей стороны
            data: Данные владельца
            photo: Фото выпускника

        Returns:
            IjazahResponse: Запись из леджера с URL PDF и фото

        Raises:
            AccessDeniedError: Организация не выпускает ijazah
            ValidationError: Нет фото или активной подписи
            GenerationError: Ошибка генерации PDF
            UploadError: Ошибка загрузки PDF в кластер
            LedgerError: Ошибка записи в леджер; orphaned содержит CID и фото
        """
        organization = self._authorize(organization, ISSUING_ORGANIZATIONS, "create ijazah")

        if not photo:
            raise ValidationError("Photo is required")

        holder = self._parse(IjazahInput, data)
        ijazah_id = generate_ijazah_id()
        logger.info(f"Создание ijazah {ijazah_id} для {holder.nama} - NIM {holder.nomor_induk_mahasiswa}")

        signature = await self._require_active_signature(organization, token)
        fields = holder.holder_fields()

        async def save_photo(ctx):
            filename = self.storage.generate_file_name(f"photo_{ijazah_id}", "photo.png")
            return await asyncio.to_thread(self.storage.save_photo, photo, filename)

        async def render(ctx):
            return await asyncio.to_thread(self._render, fields, ctx["photoPath"], signature)

        async def upload(ctx):
            result = await self.cluster.add(ctx["pdf"], filename=f"{ijazah_id}_certificate.pdf", local=False)
            return result["cid"]

        async def pin(ctx):
            await self._pin(ctx["ipfsCID"])

        async def record(ctx):
            now = utc_now_iso()
            ijazah = Ijazah.model_validate({
                **fields,
                "ID": ijazah_id,
                "ipfsCID": ctx["ipfsCID"],
                "signatureID": signature.id,
                "photoPath": ctx["photoPath"],
                "Status": IjazahStatus.ACTIVE,
                "CreatedAt": now,
                "UpdatedAt": now,
            })
            result = await self.gateway.invoke(
                organization, token, "CreateIjazah", [json.dumps(ijazah.to_ledger())]
            )
            return self._confirmed(result, ijazah)

        saga = (
            Saga("create_ijazah")
            .step("photoPath", save_photo)
            .step("pdf", render, artifact=False)
            .step("ipfsCID", upload)
            .step("pin", pin, required=False, artifact=False)
            .step("ledger", record, artifact=False)
        )
        context = await saga.run()

        logger.info(f"Ijazah {ijazah_id} создан, CID {context['ipfsCID']}")
        return self._to_response(context["ledger"])

    async def update_ijazah(
            self,
            organization: Organization,
            token: str,
            ijazah_id: str,
            data: Union[IjazahUpdate, dict],
            photo: Optional[bytes] = None
    ) -> IjazahResponse:
        """
        Обновление ijazah с перевыпуском PDF.

        Без нового фото ссылка на фото не меняется. Ошибка удаления старого
        фото и открепления старого PDF только логируется.

        Raises:
            AccessDeniedError: Организация не выпускает ijazah
            NotFoundError: Ijazah не найден
            ValidationError: Нет активной подписи или фото
        """
        organization = self._authorize(organization, ISSUING_ORGANIZATIONS, "update ijazah")
        changes = self._parse(IjazahUpdate, data)

        logger.info(f"Обновление ijazah {ijazah_id}")
        existing = await self.get_ijazah(organization, token, ijazah_id)
        signature = await self._require_active_signature(organization, token)

        merged = self._parse(IjazahFields, {**existing.holder_fields(), **changes.changed_fields()})
        fields = merged.holder_fields()

        if not photo and not existing.photo_path:
            raise ValidationError("Photo file is required")

        saga = Saga("update_ijazah")

        if photo:
            async def delete_old_photo(ctx):
                if existing.photo_path and not self.storage.delete_photo(existing.photo_path):
                    raise IjazahError(f"Старое фото {existing.photo_path} не удалено")

            async def save_photo(ctx):
                filename = self.storage.generate_file_name(f"photo_{ijazah_id}", "photo.png")
                return await asyncio.to_thread(self.storage.save_photo, photo, filename)

            saga.step("oldPhoto", delete_old_photo, required=False, artifact=False)
            saga.step("photoPath", save_photo)
        else:
            async def keep_photo(ctx):
                return existing.photo_path

            saga.step("photoPath", keep_photo, artifact=False)

        async def render(ctx):
            return await asyncio.to_thread(self._render, fields, ctx["photoPath"], signature)

        async def unpin_old(ctx):
            if existing.content_address and not await self.cluster.unpin(existing.content_address):
                raise IjazahError(f"Старый PDF {existing.content_address} не откреплен")

        async def upload(ctx):
            result = await self.cluster.add(
                ctx["pdf"], filename=f"{ijazah_id}_certificate_updated.pdf", local=False
            )
            return result["cid"]

        async def pin(ctx):
            await self._pin(ctx["ipfsCID"])

        async def record(ctx):
            ijazah = Ijazah.model_validate({
                **existing.to_ledger(),
                **fields,
                "ipfsCID": ctx["ipfsCID"],
                "signatureID": signature.id,
                "photoPath": ctx["photoPath"],
                "UpdatedAt": utc_now_iso(),
            })
            result = await self.gateway.invoke(
                organization, token, "UpdateIjazah", [json.dumps(ijazah.to_ledger())]
            )
            return self._confirmed(result, ijazah)

        (
            saga
            .step("pdf", render, artifact=False)
            .step("unpinOld", unpin_old, required=False, artifact=False)
            .step("ipfsCID", upload)
            .step("pin", pin, required=False, artifact=False)
            .step("ledger", record, artifact=False)
        )
        context = await saga.run()

        logger.info(f"Ijazah {ijazah_id} обновлен, новый CID {context['ipfsCID']}")
        return self._to_response(context["ledger"])

    async def update_ijazah_status(
            self,
            organization: Organization,
            token: str,
            ijazah_id: str,
            status: Union[IjazahStatus, str]
    ) -> Any:
        """Смена статуса ijazah (отзыв или восстановление) без перевыпуска PDF."""
        organization = self._authorize(organization, ISSUING_ORGANIZATIONS, "update ijazah status")

        try:
            status = IjazahStatus(status)
        except ValueError:
            raise ValidationError(f"Некорректный статус ijazah: {status}")

        logger.info(f"Смена статуса ijazah {ijazah_id} на {status.value}")
        result = await self.gateway.invoke(
            organization, token, "UpdateIjazahStatus", [ijazah_id, status.value]
        )
        return self._decode(result)

    async def delete_ijazah(self, organization: Organization, token: str, ijazah_id: str) -> Any:
        """
        Удаление ijazah.

        Очистка PDF и фото выполняется по возможности; результат операции
        определяется только вызовом DeleteIjazah.
        """
        organization = self._authorize(organization, ISSUING_ORGANIZATIONS, "delete ijazah")

        async def fetch(ctx):
            return await self.get_ijazah(organization, token, ijazah_id)

        async def unpin(ctx):
            record = ctx["record"]
            if record is not None and record.content_address:
                if not await self.cluster.unpin(record.content_address):
                    raise IjazahError(f"CID {record.content_address} не откреплен")
                logger.info(f"Откреплен PDF ijazah: {record.content_address}")

        async def delete_photo(ctx):
            record = ctx["record"]
            if record is not None and record.photo_path:
                if not self.storage.delete_photo(record.photo_path):
                    raise IjazahError(f"Фото {record.photo_path} не удалено")

        async def remove(ctx):
            logger.info(f"Удаление ijazah {ijazah_id} из леджера")
            result = await self.gateway.invoke(organization, token, "DeleteIjazah", [ijazah_id])
            decoded = self._decode(result)
            if decoded is None:
                return {"success": True, "message": f"Ijazah {ijazah_id} deleted"}
            return decoded

        context = await (
            Saga("delete_ijazah")
            .step("record", fetch, required=False, artifact=False)
            .step("unpin", unpin, required=False, artifact=False)
            .step("photo", delete_photo, required=False, artifact=False)
            .step("ledger", remove, artifact=False)
            .run()
        )
        return context["ledger"]

    async def get_ijazah(self, organization: Organization, token: str, ijazah_id: str) -> IjazahResponse:
        """
        Чтение ijazah из леджера.

        Raises:
            NotFoundError: Ijazah не найден
        """
        logger.info(f"Получение ijazah {ijazah_id}")
        result = await self._read(organization, token, "ReadIjazah", ijazah_id, "Ijazah")
        return self._to_response(result)

    async def get_all_ijazah(self, organization: Organization, token: str) -> List[IjazahResponse]:
        """Все ijazah из леджера"""
        logger.info("Получение всех ijazah")
        result = self._decode(await self.gateway.query(organization, token, "GetAllIjazah"))
        return [self._to_response(item) for item in result or [] if isinstance(item, dict)]

    def find_mahasiswa_by_nim(self, nim: str) -> Optional[Mahasiswa]:
        """Поиск студента по NIM в справочнике"""
        mahasiswa = self.roster.find_by_nim(nim)
        if mahasiswa is None:
            logger.info(f"Студент с NIM {nim} не найден")
        return mahasiswa

    def _render(self, fields: Dict[str, Any], photo_path: str, signature: Signature) -> bytes:
        """Генерация PDF из сохраненных фото и подписи"""
        try:
            photo = self.storage.get_photo(photo_path)
            signature_image = self.storage.get_signature(signature.file_path)
        except (NotFoundError, ValidationError) as e:
            raise GenerationError(f"Не удалось прочитать изображения для PDF: {e}")

        return self.renderer.render(fields, photo, signature_image)

    async def _pin(self, cid: str) -> None:
        if not await self.cluster.pin(cid):
            raise IjazahError(f"CID {cid} не закреплен")

    def _confirmed(self, result: Any, submitted: Ijazah) -> Union[Ijazah, dict]:
        """Запись, подтвержденная леджером, либо отправленная запись."""
        decoded = self._decode(result)
        if isinstance(decoded, dict) and decoded.get("ID"):
            return decoded
        return submitted

    async def _require_active_signature(self, organization: Organization, token: str) -> Signature:
        signature = await self.get_active_signature(organization, token)
        if signature is None:
            raise ValidationError("No active signature found")
        if not signature.file_path:
            raise ValidationError(f"Active signature {signature.id} has no image file")
        return signature

    # === Подписи ===

    async def create_signature(
            self,
            organization: Organization,
            token: str,
            data: Union[SignatureInput, dict]
    ) -> Signature:
        """
        Создание записи подписи.

        Raises:
            AccessDeniedError: Организация не управляет подписями
            ValidationError: Нет ссылки на изображение или файл не найден
        """
        organization = self._authorize(organization, SIGNATURE_ORGANIZATIONS, "create signature")
        signature = self._parse(SignatureInput, data)

        if not signature.file_path and not signature.url:
            raise ValidationError("Signature requires filePath or URL")
        if signature.file_path and not self.storage.signature_exists(signature.file_path):
            raise ValidationError(f"Signature file not found: {signature.file_path}")

        logger.info(f"Создание подписи {signature.id}")
        result = await self.gateway.invoke(
            organization, token, "CreateSignature", [json.dumps(signature.to_ledger())]
        )
        return self._signature(result, signature.to_ledger())

    async def update_signature(
            self,
            organization: Organization,
            token: str,
            signature_id: str,
            data: Union[SignatureInput, dict]
    ) -> Signature:
        """
        Обновление подписи. Без filePath сохраняется файл существующей записи.

        Raises:
            NotFoundError: Подпись не найдена
        """
        organization = self._authorize(organization, SIGNATURE_ORGANIZATIONS, "update signature")

        if isinstance(data, SignatureInput):
            data = data.to_ledger()
        update = self._parse(SignatureInput, {**data, "ID": signature_id})

        if not update.file_path:
            existing = await self.get_signature(organization, token, signature_id)
            update.file_path = existing.file_path

        logger.info(f"Обновление подписи {signature_id}")
        result = await self.gateway.invoke(
            organization, token, "UpdateSignature", [json.dumps(update.to_ledger())]
        )
        return self._signature(result, update.to_ledger())

    async def upload_signature(
            self,
            organization: Organization,
            token: str,
            signature_id: str,
            data: bytes,
            filename: str = "signature.png",
            is_active: Optional[bool] = None
    ) -> Signature:
        """
        Загрузка изображения подписи с созданием или обновлением записи.

        Новый файл удаляется, если запись в леджер не удалась. Замененный
        файл удаляется после успешной записи.
        """
        organization = self._authorize(organization, SIGNATURE_ORGANIZATIONS, "upload signature")

        if not data:
            raise ValidationError("Signature image is required")

        try:
            existing = await self.get_signature(organization, token, signature_id)
        except NotFoundError as e:
            logger.info(f"Подпись {signature_id} не найдена, будет создана: {e}")
            existing = None

        async def save_file(ctx):
            name = self.storage.generate_file_name(f"signature_{signature_id}", filename)
            return await asyncio.to_thread(self.storage.save_signature, data, name)

        async def delete_file(ctx, saved):
            if not self.storage.delete_signature(saved):
                raise IjazahError(f"Файл подписи {saved} не удален")

        async def record(ctx):
            payload = {"ID": signature_id, "filePath": ctx["filePath"]}
            if is_active is not None:
                payload["IsActive"] = is_active
            if existing is None:
                return await self.create_signature(organization, token, payload)
            return await self.update_signature(organization, token, signature_id, payload)

        context = await (
            Saga("upload_signature")
            .step("filePath", save_file, compensation=delete_file)
            .step("ledger", record, artifact=False)
            .run()
        )

        if existing is not None and existing.file_path and existing.file_path != context["filePath"]:
            self.storage.delete_signature(existing.file_path)

        return context["ledger"]

    async def get_signature(self, organization: Organization, token: str, signature_id: str) -> Signature:
        """
        Чтение подписи.

        Raises:
            NotFoundError: Подпись не найдена
        """
        logger.info(f"Получение подписи {signature_id}")
        result = await self._read(organization, token, "ReadSignature", signature_id, "Signature")
        return Signature.model_validate(result)

    async def get_active_signature(self, organization: Organization, token: str) -> Optional[Signature]:
        """Активная подпись или None"""
        result = self._decode(await self.gateway.query(organization, token, "GetActiveSignature"))
        if not isinstance(result, dict) or not result.get("ID"):
            logger.warning("Активная подпись не найдена")
            return None
        return Signature.model_validate(result)

    async def get_all_signatures(self, organization: Organization, token: str) -> List[Signature]:
        result = self._decode(await self.gateway.query(organization, token, "GetAllSignatures"))
        return [Signature.model_validate(item) for item in result or [] if isinstance(item, dict)]

    async def set_active_signature(self, organization: Organization, token: str, signature_id: str) -> Signature:
        """
        Назначение активной подписи.

        Один вызов SetActiveSignature: контракт атомарно снимает активность
        со всех подписей и активирует указанную.
        """
        organization = self._authorize(organization, SIGNATURE_ORGANIZATIONS, "set active signature")

        logger.info(f"Назначение активной подписи {signature_id}")
        result = self._decode(
            await self.gateway.invoke(organization, token, "SetActiveSignature", [signature_id])
        )
        if isinstance(result, dict) and result.get("ID"):
            return Signature.model_validate(result)
        return await self.get_signature(organization, token, signature_id)

    async def deactivate_signature(self, organization: Organization, token: str, signature_id: str) -> Signature:
        """Снятие активности с подписи"""
        logger.info(f"Деактивация подписи {signature_id}")
        return await self.update_signature(organization, token, signature_id, {"IsActive": False})

    async def delete_signature(self, organization: Organization, token: str, signature_id: str) -> Any:
        """
        Удаление подписи. Файл удаляется по возможности до вызова DeleteSignature.
        """
        organization = self._authorize(organization, SIGNATURE_ORGANIZATIONS, "delete signature")

        try:
            existing = await self.get_signature(organization, token, signature_id)
            if existing.file_path:
                self.storage.delete_signature(existing.file_path)
        except IjazahError as e:
            logger.warning(f"Не удалось получить подпись {signature_id} для очистки: {e}")

        logger.info(f"Удаление подписи {signature_id}")
        result = self._decode(
            await self.gateway.invoke(organization, token, "DeleteSignature", [signature_id])
        )
        if result is None:
            return {"success": True, "message": f"Signature {signature_id} deleted"}
        return result

    async def get_signature_stats(self, organization: Organization, token: str) -> Dict[str, Any]:
        """Статистика подписей и хранилища их файлов"""
        signatures = await self.get_all_signatures(organization, token)
        active = [s for s in signatures if s.is_active]

        return {
            "total": len(signatures),
            "active": len(active),
            "inactive": len(signatures) - len(active),
            "activeSignatureId": active[0].id if active else None,
            "withFile": sum(1 for s in signatures if s.file_path),
            "withUrl": sum(1 for s in signatures if s.url),
            "storage": self.storage.get_storage_stats()["signatures"],
        }

    def _signature(self, result: Any, submitted: dict) -> Signature:
        decoded = self._decode(result)
        if isinstance(decoded, dict) and decoded.get("ID"):
            return Signature.model_validate(decoded)
        return Signature.model_validate(submitted)

    # === URL и здоровье ===

    def get_certificate_download_url(self, cid: Optional[str]) -> Optional[str]:
        """URL PDF в публичном шлюзе"""
        if not cid:
            return None
        return self.cluster.gateway_url(cid)

    def get_photo_url(self, filename: Optional[str]) -> Optional[str]:
        if not filename:
            return None
        return f"{self.files_url_prefix}/photos/{filename}"

    def get_signature_url(self, filename: Optional[str]) -> Optional[str]:
        if not filename:
            return None
        return f"{self.files_url_prefix}/signatures/{filename}"

    async def health_check(self) -> Dict[str, Any]:
        """
        Сводная проверка подсистем для мониторинга.

        Returns:
            Dict: {fabric: {org: bool}, ipfs, localStorage, overall}
        """
        fabric = await self.gateway.health_check()

        try:
            ipfs = await self.cluster.info() is not None
        except ClusterError as e:
            logger.warning(f"Проверка кластера не пройдена: {e}")
            ipfs = False

        try:
            self.storage.get_storage_stats()
            local_storage = True
        except OSError as e:
            logger.warning(f"Проверка локального хранилища не пройдена: {e}")
            local_storage = False

        overall = bool(fabric) and all(fabric.values()) and ipfs and local_storage
        return {
            "fabric": fabric,
            "ipfs": ipfs,
            "localStorage": local_storage,
            "overall": overall,
        }


def create_ijazah_service(settings, transport=None) -> IjazahService:
    """
    Сборка сервиса со всеми зависимостями из настроек.

    Args:
        settings: Настройки приложения
        transport: HTTP транспорт для шлюза и кластера (для тестов)

    Returns:
        IjazahService: Готовый сервис
    """
    return IjazahService(
        gateway=FabricGateway.from_settings(settings, transport=transport),
        cluster=IpfsClusterClient.from_settings(settings, transport=transport),
        storage=FileStorage(settings.uploads_dir),
        renderer=CertificateRenderer(settings.certificate_template),
        roster=StudentRoster(settings.student_roster),
        settings=settings
    )
