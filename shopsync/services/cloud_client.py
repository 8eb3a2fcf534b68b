import httpx
import asyncio
from typing import Optional, Dict, Any, List
from datetime import datetime
import logging
from shopsync.core.exceptions import (
    SyncError, NetworkError, ApiError, AuthError, NotAuthenticated
)

logger = logging.getLogger(__name__)

class CloudClient:
    """
    Клиент облачного бэкенда (PostgREST).

    Все чтения и записи ограничены одним арендатором (shop_id).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        service_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.service_key = service_key
        self.tenant_id = tenant_id
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

        # Токен пользовательской сессии, если есть
        self._access_token: Optional[str] = None

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        """Создание HTTP сессии"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                transport=self._transport
            )
            logger.info(f"Connected to cloud backend at {self.base_url}")

    async def disconnect(self):
        """Закрытие HTTP сессии"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from cloud backend")

    def set_session(self, tenant_id: Optional[str], access_token: Optional[str] = None):
        """Контекст арендатора после входа пользователя"""
        self.tenant_id = tenant_id
        self._access_token = access_token

    def require_tenant(self) -> str:
        if not self.tenant_id:
            raise NotAuthenticated()
        return self.tenant_id

    def _get_headers(self) -> Dict[str, str]:
        """Получение заголовков для запросов"""
        bearer = self._access_token or self.service_key or self.api_key
        return {
            "User-Agent": "ShopSync/1.0",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "apikey": self.api_key,
            "Authorization": f"Bearer {bearer}",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> Any:
        """Выполнение HTTP запроса с повторными попытками"""

        if self._client is None:
            await self.connect()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_headers = {**self._get_headers(), **(headers or {})}

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request to cloud: {method} {url} (attempt {attempt + 1})")

                response = await self._client.request(
                    method=method,
                    url=url,
                    headers=request_headers,
                    **kwargs
                )

                if response.status_code >= 400:
                    error_msg = f"Cloud API error: {response.status_code}"
                    error_data = None
                    try:
                        error_data = response.json()
                        error_msg = f"{error_msg} - {error_data}"
                    except ValueError:
                        error_msg = f"{error_msg} - {response.text[:200]}"

                    if response.status_code in (401, 403):
                        raise AuthError(error_msg, response.status_code, error_data)
                    raise ApiError(error_msg, response.status_code, error_data)

                if response.content:
                    return response.json()
                return None

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to reach cloud after {self.max_retries} attempts: {e}")
                    raise NetworkError(f"Connection failed: {e}")

                # Экспоненциальная задержка
                wait_time = 2 ** attempt
                logger.warning(f"Retrying in {wait_time}s... (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

            except SyncError:
                raise

            except httpx.HTTPError as e:
                logger.error(f"Unexpected transport error during cloud request: {e}")
                raise NetworkError(f"Unexpected error: {e}")

    async def health_check(self) -> bool:
        """Проверка доступности облака"""
        try:
            await self._request("GET", "/rest/v1/")
            return True
        except SyncError:
            return False

    async def upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str = "id") -> None:
        """Вставка или обновление строк по ключу"""
        if not rows:
            return
        await self._request(
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            json=rows
        )
        logger.debug(f"Upserted {len(rows)} rows into {table}")

    async def select(
        self,
        table: str,
        tenant_id: str,
        filters: Optional[Dict[str, str]] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
        updated_since: Optional[datetime] = None,
        order: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Выборка строк арендатора; удалённые по умолчанию отфильтрованы"""
        params: Dict[str, str] = {"select": "*", "shop_id": f"eq.{tenant_id}"}

        if deleted_only:
            params["deleted_at"] = "not.is.null"
        elif not include_deleted:
            params["deleted_at"] = "is.null"

        if updated_since:
            params["updated_at"] = f"gt.{updated_since.isoformat()}"

        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"

        if order:
            params["order"] = order

        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        rows = response or []
        logger.debug(f"Selected {len(rows)} rows from {table}")
        return rows
