"""
Брокер токенов доступа к REST шлюзу леджера (Fablo REST).

Для каждой организации держит свой HTTP клиент и административный токен.
Вызовы чейнкода выполняются с токеном вызывающей стороны.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from .exceptions import EnrollmentError, LedgerError
from .models import Organization

logger = logging.getLogger(__name__)

OrgLike = Union[Organization, str]


class TokenEntry:
    """Токен с объявленным сроком жизни."""

    def __init__(self, token: str, ttl: float, issued_at: Optional[float] = None):
        self.token = token
        self.issued_at = time.monotonic() if issued_at is None else issued_at
        self.expires_at = self.issued_at + ttl

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class TokenStore:
    """Хранилище административных токенов по организациям."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._entries: Dict[Organization, TokenEntry] = {}
        self._locks: Dict[Organization, asyncio.Lock] = {}

    def get(self, organization: Organization) -> Optional[TokenEntry]:
        return self._entries.get(organization)

    def set(self, organization: Organization, token: str) -> TokenEntry:
        entry = TokenEntry(token, self.ttl)
        self._entries[organization] = entry
        return entry

    def invalidate(self, organization: Organization) -> None:
        self._entries.pop(organization, None)

    def lock(self, organization: Organization) -> asyncio.Lock:
        """Блокировка перевыпуска токена для организации."""
        if organization not in self._locks:
            self._locks[organization] = asyncio.Lock()
        return self._locks[organization]


class FabricGateway:
    """Клиент REST шлюза леджера с кэшем административных токенов"""

    def __init__(
            self,
            endpoints: Dict[OrgLike, str],
            channel: str,
            contract: str,
            admin_username: str = "admin",
            admin_password: str = "adminpw",
            token_ttl: float = 600,
            timeout: float = 30.0,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.channel = channel
        self.contract = contract
        self.admin_username = admin_username
        self.admin_password = admin_password
        self.tokens = TokenStore(token_ttl)

        self.clients: Dict[Organization, httpx.AsyncClient] = {
            Organization(org): httpx.AsyncClient(
                base_url=url,
                timeout=timeout,
                headers={"Content-Type": "application/json"},
                transport=transport
            )
            for org, url in endpoints.items()
        }

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "FabricGateway":
        """Создание брокера из настроек приложения"""
        return cls(
            endpoints=settings.organization_endpoints,
            channel=settings.fabric_channel,
            contract=settings.chaincode_name,
            admin_username=settings.admin_username,
            admin_password=settings.admin_password,
            token_ttl=settings.fabric_token_ttl,
            timeout=settings.fabric_timeout,
            transport=transport
        )

    async def start(self) -> None:
        """
        Регистрирует администратора в каждой организации.

        Ошибки только логируются: брокер продолжает работу без токена,
        а вызовы, требующие администратора, завершаются EnrollmentError.
        """
        for organization in self.clients:
            try:
                token = await self.enroll(organization, self.admin_username, self.admin_password)
                self.tokens.set(organization, token)
            except EnrollmentError as e:
                logger.error(f"Не удалось получить токен администратора для {organization.value}: {e}")

        ready = [org.value for org in self.clients if self.tokens.get(org)]
        logger.info(f"Токены администратора инициализированы: {ready}")

    async def close(self) -> None:
        """Закрытие HTTP клиентов"""
        for client in self.clients.values():
            await client.aclose()

    def _client(self, organization: OrgLike) -> httpx.AsyncClient:
        try:
            return self.clients[Organization(organization)]
        except (KeyError, ValueError):
            raise LedgerError(f"Шлюз для организации {organization} не настроен")

    @staticmethod
    def _bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _error_detail(error: httpx.HTTPError) -> str:
        """Текст ошибки из ответа шлюза, если он есть."""
        if isinstance(error, httpx.HTTPStatusError):
            try:
                body = error.response.json()
                if isinstance(body, dict) and body.get("message"):
                    return f"{error.response.status_code}: {body['message']}"
            except ValueError:
                pass
            return f"{error.response.status_code}: {error.response.text}"
        return str(error) or error.__class__.__name__

    async def enroll(self, organization: OrgLike, username: str, secret: str) -> str:
        """
        Регистрация идентичности и получение токена

        Args:
            organization: Организация
            username: Имя пользователя CA
            secret: Секрет пользователя

        Returns:
            str: Токен доступа

        Raises:
            EnrollmentError: Неверные учетные данные или сетевая ошибка
        """
        client = self._client(organization)

        try:
            response = await client.post("/user/enroll", json={"id": username, "secret": secret})
            response.raise_for_status()
            token = response.json().get("token")
        except httpx.HTTPError as e:
            logger.error(f"Ошибка регистрации {username} в {organization}: {self._error_detail(e)}")
            raise EnrollmentError(f"Ошибка регистрации {username}: {self._error_detail(e)}")
        except ValueError as e:
            raise EnrollmentError(f"Некорректный ответ шлюза при регистрации {username}: {e}")

        if not token:
            raise EnrollmentError(f"Шлюз не вернул токен для {username}")

        logger.info(f"Пользователь {username} зарегистрирован в организации {Organization(organization).value}")
        return token

    async def reenroll(self, organization: OrgLike, token: str) -> str:
        """Перевыпуск токена до истечения срока"""
        client = self._client(organization)

        try:
            response = await client.post("/user/reenroll", json={}, headers=self._bearer(token))
            response.raise_for_status()
            new_token = response.json().get("token")
        except httpx.HTTPError as e:
            raise EnrollmentError(f"Ошибка перевыпуска токена: {self._error_detail(e)}")
        except ValueError as e:
            raise EnrollmentError(f"Некорректный ответ шлюза при перевыпуске токена: {e}")

        if not new_token:
            raise EnrollmentError("Шлюз не вернул новый токен")

        logger.info(f"Токен перевыпущен в организации {Organization(organization).value}")
        return new_token

    async def get_admin_token(self, organization: OrgLike) -> str:
        """
        Административный токен организации.

        Просроченный токен перевыпускается перед возвратом.

        Raises:
            EnrollmentError: Токен администратора недоступен
        """
        organization = Organization(organization)
        entry = self.tokens.get(organization)
        if entry is None:
            raise EnrollmentError(f"Admin token not available for organization: {organization.value}")

        if entry.expired:
            return await self.refresh_admin_token(organization, entry.token)
        return entry.token

    async def refresh_admin_token(self, organization: OrgLike, stale_token: Optional[str] = None) -> str:
        """
        Перевыпуск административного токена с одним запросом на организацию.

        Конкурентные вызовы с одним и тем же устаревшим токеном ждут первый
        перевыпуск и получают его результат.

        Args:
            organization: Организация
            stale_token: Токен, который вызывающая сторона считает устаревшим

        Returns:
            str: Действующий токен
        """
        organization = Organization(organization)

        async with self.tokens.lock(organization):
            entry = self.tokens.get(organization)
            if entry is not None and not entry.expired and entry.token != stale_token:
                return entry.token

            token = None
            if entry is not None:
                try:
                    token = await self.reenroll(organization, entry.token)
                except EnrollmentError as e:
                    logger.warning(f"Перевыпуск токена {organization.value} не удался, повторная регистрация: {e}")

            if token is None:
                token = await self.enroll(organization, self.admin_username, self.admin_password)

            self.tokens.set(organization, token)
            return token

    async def register_user(self, organization: OrgLike, username: str, secret: str) -> None:
        """Регистрация нового пользователя CA (требуется токен администратора)"""
        client = self._client(organization)
        admin_token = await self.get_admin_token(organization)

        try:
            response = await client.post(
                "/user/register",
                json={"id": username, "secret": secret},
                headers=self._bearer(admin_token)
            )
            response.raise_for_status()
            message = response.json().get("message")
        except httpx.HTTPError as e:
            raise EnrollmentError(f"Ошибка регистрации пользователя {username}: {self._error_detail(e)}")
        except (AttributeError, ValueError) as e:
            raise EnrollmentError(f"Некорректный ответ шлюза при регистрации пользователя {username}: {e}")

        if message != "ok":
            raise EnrollmentError(f"Регистрация {username} отклонена: {message}")

        logger.info(f"Пользователь {username} создан в организации {Organization(organization).value}")

    async def get_identities(self, organization: OrgLike) -> List[Dict[str, Any]]:
        """Список идентичностей CA организации (требуется токен администратора)"""
        client = self._client(organization)
        admin_token = await self.get_admin_token(organization)

        try:
            response = await client.get("/user/identities", headers=self._bearer(admin_token))
            response.raise_for_status()
            return response.json()["response"]["identities"]
        except httpx.HTTPError as e:
            raise LedgerError(f"Ошибка получения идентичностей: {self._error_detail(e)}")
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError(f"Некорректный ответ шлюза со списком идентичностей: {e}")

    async def invoke(
            self,
            organization: OrgLike,
            token: str,
            method: str,
            args: Optional[Sequence[str]] = None,
            channel: Optional[str] = None,
            contract: Optional[str] = None
    ) -> Any:
        """Вызов чейнкода, изменяющий состояние леджера"""
        return await self._chaincode("invoke", organization, token, method, args, channel, contract)

    async def query(
            self,
            organization: OrgLike,
            token: str,
            method: str,
            args: Optional[Sequence[str]] = None,
            channel: Optional[str] = None,
            contract: Optional[str] = None
    ) -> Any:
        """Запрос к чейнкоду только на чтение"""
        return await self._chaincode("query", organization, token, method, args, channel, contract)

    async def _chaincode(
            self,
            kind: str,
            organization: OrgLike,
            token: str,
            method: str,
            args: Optional[Sequence[str]],
            channel: Optional[str],
            contract: Optional[str]
    ) -> Any:
        client = self._client(organization)
        path = f"/{kind}/{channel or self.channel}/{contract or self.contract}"

        try:
            response = await client.post(
                path,
                json={"method": method, "args": list(args or [])},
                headers=self._bearer(token)
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Ошибка {kind} чейнкода {method}: {self._error_detail(e)}")
            raise LedgerError(f"Ошибка вызова {method}: {self._error_detail(e)}")
        except ValueError as e:
            raise LedgerError(f"Некорректный ответ шлюза на {method}: {e}")

        logger.info(f"Чейнкод {method} выполнен ({kind})")
        return payload.get("response") if isinstance(payload, dict) else payload

    async def validate_token(self, organization: OrgLike, token: str) -> bool:
        """Проверка токена безопасным запросом на чтение"""
        try:
            await self.query(organization, token, "GetAllSignatures")
            return True
        except LedgerError as e:
            logger.warning(f"Токен не прошел проверку: {e}")
            return False

    async def health_check(self) -> Dict[str, bool]:
        """Проверка доступности шлюза каждой организации"""
        health = {}

        for organization, client in self.clients.items():
            healthy = False
            try:
                admin_token = await self.get_admin_token(organization)
                response = await client.get(
                    "/user/identities",
                    headers=self._bearer(admin_token),
                    timeout=5.0
                )
                healthy = response.status_code == 200
            except (httpx.HTTPError, LedgerError) as e:
                logger.warning(f"Проверка шлюза {organization.value} не пройдена: {e}")

            health[organization.value] = healthy

        return health
