"""
Клиент IPFS Cluster: загрузка и закрепление контента, интроспекция кластера.

Чтения выбирают живой API через проверку здоровья (основной, затем резервный).
Изменяющие вызовы (add/pin/unpin/recover) всегда идут в основной API и не
повторяются на резервном, чтобы не создавать дубликатов при частичном успехе.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import ClusterError, UploadError

logger = logging.getLogger(__name__)


class IpfsClusterClient:
    """Клиент REST API IPFS Cluster"""

    def __init__(
            self,
            primary_url: str,
            fallback_url: str,
            gateway_url: str,
            username: str = "",
            password: str = "",
            timeout: float = 30.0,
            health_timeout: float = 2.0,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.primary_url = primary_url.rstrip("/")
        self.fallback_url = fallback_url.rstrip("/")
        self.gateway = gateway_url.rstrip("/")
        self.username = username
        self.password = password
        self.health_timeout = health_timeout
        self.jwt_token: Optional[str] = None

        self.primary = httpx.AsyncClient(base_url=self.primary_url, timeout=timeout, transport=transport)
        self.fallback = httpx.AsyncClient(base_url=self.fallback_url, timeout=timeout, transport=transport)
        self.gateway_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "IpfsClusterClient":
        """Создание клиента из настроек приложения"""
        return cls(
            primary_url=settings.ipfs_cluster_api_url,
            fallback_url=settings.ipfs_cluster_fallback_api_url,
            gateway_url=settings.ipfs_gateway_url,
            username=settings.ipfs_cluster_username,
            password=settings.ipfs_cluster_password,
            timeout=settings.ipfs_cluster_timeout,
            health_timeout=settings.ipfs_health_timeout,
            transport=transport
        )

    async def close(self) -> None:
        for client in (self.primary, self.fallback, self.gateway_client):
            await client.aclose()

    def gateway_url(self, cid: str) -> str:
        """URL контента в публичном шлюзе"""
        return f"{self.gateway}/ipfs/{cid}"

    async def authenticate(self) -> bool:
        """
        Получение JWT по basic-auth (основной API, затем резервный).

        Returns:
            bool: True если токен получен или аутентификация не настроена
        """
        if not self.username or not self.password:
            logger.info("Учетные данные кластера не заданы, аутентификация пропущена")
            return True

        for client in (self.primary, self.fallback):
            try:
                response = await client.post("/token", auth=(self.username, self.password))
                response.raise_for_status()
                token = response.json().get("token")
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Аутентификация в {client.base_url} не удалась: {e}")
                continue

            if token:
                self.jwt_token = token
                for api in (self.primary, self.fallback):
                    api.headers["Authorization"] = f"Bearer {token}"
                logger.info(f"Аутентификация в кластере выполнена через {client.base_url}")
                return True

        logger.error("Не удалось аутентифицироваться ни в одном API кластера")
        return False

    async def _ensure_auth(self) -> None:
        """Ленивое получение JWT, если он настроен и еще не получен"""
        if self.username and self.password and not self.jwt_token:
            await self.authenticate()

    async def _probe(self, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get("/health", timeout=self.health_timeout)
            return response.status_code < 300
        except httpx.HTTPError:
            return False

    async def check_health(self) -> bool:
        """Проверка здоровья: основной API, затем резервный"""
        if await self._probe(self.primary):
            logger.info("Основной API кластера доступен")
            return True
        logger.warning("Основной API кластера не прошел проверку")

        if await self._probe(self.fallback):
            logger.info("Резервный API кластера доступен")
            return True
        logger.warning("Резервный API кластера не прошел проверку")

        logger.error("Все API кластера недоступны")
        return False

    async def _read_client(self) -> httpx.AsyncClient:
        """Клиент для чтения: основной если жив, иначе резервный если жив"""
        await self._ensure_auth()

        if await self._probe(self.primary):
            return self.primary
        if await self._probe(self.fallback):
            return self.fallback

        logger.error("Нет доступных API кластера, используется основной")
        return self.primary

    async def _write_client(self) -> httpx.AsyncClient:
        """Клиент для изменяющих вызовов: всегда основной"""
        await self._ensure_auth()
        return self.primary

    @staticmethod
    def _extract_cid(data: Any) -> Optional[str]:
        """CID из ответа /add: объект, список объектов или NDJSON строка"""
        if isinstance(data, list):
            data = data[-1] if data else None
        if not isinstance(data, dict):
            return None

        cid = data.get("cid") or data.get("Hash")
        if isinstance(cid, dict):
            cid = cid.get("/")
        return cid or None

    async def add(
            self,
            content: bytes,
            filename: str = "file",
            local: Optional[bool] = None,
            format: Optional[str] = None,
            stream_channels: bool = False
    ) -> Dict[str, str]:
        """
        Загрузка контента в кластер

        Args:
            content: Байты контента
            filename: Имя файла в multipart
            local: Параметр local кластера
            format: Формат (unixfs или car)
            stream_channels: Потоковый ответ

        Returns:
            Dict: {"cid": ..., "url": ...}

        Raises:
            UploadError: Кластер не вернул CID или запрос не выполнен
        """
        client = await self._write_client()

        params = {"stream-channels": "true" if stream_channels else "false"}
        if local is not None:
            params["local"] = "true" if local else "false"
        if format:
            params["format"] = format

        try:
            response = await client.post(
                "/add",
                params=params,
                files={"file": (filename, content, "application/octet-stream")}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Ошибка загрузки {filename} в кластер: {e}")
            raise UploadError(f"Ошибка загрузки в кластер: {e}")

        cid = self._extract_cid(self._parse_add_response(response))
        if not cid:
            raise UploadError("Некорректный ответ IPFS Cluster API: нет CID")

        logger.info(f"Контент загружен в кластер, CID: {cid}")
        return {"cid": cid, "url": self.gateway_url(cid)}

    @staticmethod
    def _parse_add_response(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            # stream-channels отдает NDJSON, по объекту на строку
            lines = [line for line in response.text.splitlines() if line.strip()]
            if not lines:
                return None
            try:
                return json.loads(lines[-1])
            except ValueError:
                return None

    async def _mutate(self, method: str, path: str, action: str, cid: str) -> bool:
        client = await self._write_client()

        try:
            response = await client.request(method, path)
        except httpx.HTTPError as e:
            logger.error(f"Ошибка операции {action} для CID {cid}: {e}")
            raise UploadError(f"Ошибка операции {action} для CID {cid}: {e}")

        if response.is_success:
            logger.info(f"CID {cid}: {action} выполнено")
            return True

        logger.warning(f"CID {cid}: {action} не выполнено, статус {response.status_code}")
        return False

    async def pin(self, cid: str) -> bool:
        """Закрепление CID. True только при ответе 2xx"""
        return await self._mutate("POST", f"/pins/{cid}", "pin", cid)

    async def unpin(self, cid: str) -> bool:
        """Открепление CID. True только при ответе 2xx"""
        return await self._mutate("DELETE", f"/pins/{cid}", "unpin", cid)

    async def recover(self, cid: str) -> bool:
        """Запуск восстановления CID"""
        return await self._mutate("POST", f"/pins/{cid}/recover", "recover", cid)

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Optional[httpx.Response]:
        client = await self._read_client()

        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Ошибка запроса {path} к кластеру: {e}")
            raise ClusterError(f"Ошибка запроса {path} к кластеру: {e}")

        if not response.is_success:
            logger.warning(f"Кластер ответил {response.status_code} на {path}")
            return None
        return response

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        response = await self._get(path, params)
        if response is None:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ClusterError(f"Некорректный ответ кластера на {path}: {e}")

    async def status(self, cid: str) -> Optional[Dict[str, Any]]:
        """Статус закрепления CID или None"""
        return await self._get_json(f"/pins/{cid}")

    async def list_pins(self) -> List[Dict[str, Any]]:
        """Список закрепленных CID"""
        data = await self._get_json("/pins")
        return data if isinstance(data, list) else []

    async def get_allocations(self, cid: Optional[str] = None) -> Any:
        """Размещения всех CID или одного CID"""
        path = f"/allocations/{cid}" if cid else "/allocations"
        return await self._get_json(path)

    async def get_peers(self) -> List[Dict[str, Any]]:
        data = await self._get_json("/peers")
        return data if isinstance(data, list) else []

    async def get_health_alerts(self) -> List[Dict[str, Any]]:
        data = await self._get_json("/health/alerts")
        return data if isinstance(data, list) else []

    async def info(self) -> Optional[Dict[str, Any]]:
        """Информация об узле кластера (/id)"""
        return await self._get_json("/id")

    async def version(self) -> Optional[Dict[str, Any]]:
        return await self._get_json("/version")

    async def cat(self, cid: str) -> bytes:
        """
        Чтение контента через публичный шлюз

        Raises:
            ClusterError: Шлюз не отдал контент
        """
        try:
            response = await self.gateway_client.get(self.gateway_url(cid))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ClusterError(f"Не удалось получить CID {cid} из шлюза: {e}")
        return response.content
