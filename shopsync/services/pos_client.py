import httpx
import asyncio
import uuid
from typing import Optional, Dict, Any, List, AsyncIterator
from datetime import datetime
from dataclasses import dataclass, field
import logging
from shopsync.core.exceptions import SyncError, NetworkError, ApiError, AuthError
from shopsync.core.time_utils import parse_timestamp

logger = logging.getLogger(__name__)

@dataclass
class PosCustomer:
    """Модель клиента из POS"""
    id: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email_address: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    note: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "PosCustomer":
        address = item.get("address") or {}
        address_line = ", ".join(
            part for part in (
                address.get("address_line_1"),
                address.get("address_line_2"),
                address.get("locality"),
                address.get("postal_code"),
            ) if part
        )
        return cls(
            id=item.get("id"),
            given_name=item.get("given_name"),
            family_name=item.get("family_name"),
            email_address=item.get("email_address"),
            phone_number=item.get("phone_number"),
            address=address_line or None,
            note=item.get("note"),
            updated_at=parse_timestamp(item.get("updated_at"))
        )

@dataclass
class PosCatalogItem:
    """Модель товара каталога из POS (первая вариация)"""
    id: str
    name: str
    variation_id: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_deleted: bool = False
    updated_at: Optional[datetime] = None
    quantity: Optional[int] = None

    @classmethod
    def from_api(cls, obj: Dict[str, Any]) -> "PosCatalogItem":
        item_data = obj.get("item_data") or {}
        variations = item_data.get("variations") or []
        variation = variations[0] if variations else {}
        variation_data = variation.get("item_variation_data") or {}
        price_money = variation_data.get("price_money") or {}
        amount = price_money.get("amount")
        return cls(
            id=obj.get("id"),
            name=item_data.get("name") or "",
            variation_id=variation.get("id"),
            sku=variation_data.get("sku"),
            # Суммы в POS - в минимальных единицах валюты
            price=amount / 100.0 if amount is not None else None,
            category=item_data.get("category_id"),
            description=item_data.get("description"),
            is_deleted=bool(obj.get("is_deleted", False)),
            updated_at=parse_timestamp(obj.get("updated_at"))
        )

@dataclass
class PosInventoryCount:
    """Остаток по вариации в локации"""
    catalog_object_id: str
    location_id: Optional[str]
    quantity: int
    state: str = "IN_STOCK"
    calculated_at: Optional[datetime] = None

@dataclass
class PosPage:
    items: List[Any] = field(default_factory=list)
    cursor: Optional[str] = None

class PosClient:
    """Клиент REST API POS платформы"""

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_version: str = "2023-12-13",
        location_id: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_version = api_version
        self.location_id = location_id
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

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
            logger.info(f"Connected to POS API at {self.base_url}")

    async def disconnect(self):
        """Закрытие HTTP сессии"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from POS API")

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": "ShopSync/1.0",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Square-Version": self.api_version,
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        allow_refresh: bool = True,
        **kwargs
    ) -> Dict[str, Any]:
        """Выполнение HTTP запроса с повторными попытками"""

        if self._client is None:
            await self.connect()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request to POS: {method} {url} (attempt {attempt + 1})")

                response = await self._client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    **kwargs
                )

                if response.status_code == 401 and allow_refresh and self.refresh_token:
                    # Токен истёк - обновляем и повторяем один раз
                    await self.refresh_access_token()
                    return await self._request(method, endpoint, allow_refresh=False, **kwargs)

                if response.status_code >= 400:
                    error_msg = f"POS API error: {response.status_code}"
                    error_data = None
                    try:
                        error_data = response.json()
                        error_msg = f"{error_msg} - {error_data.get('errors', error_data)}"
                    except ValueError:
                        error_msg = f"{error_msg} - {response.text[:200]}"

                    if response.status_code in (401, 403):
                        raise AuthError(error_msg, response.status_code, error_data)
                    raise ApiError(error_msg, response.status_code, error_data)

                if response.content:
                    return response.json()
                return {}

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to reach POS after {self.max_retries} attempts: {e}")
                    raise NetworkError(f"Connection failed: {e}")

                # Экспоненциальная задержка
                wait_time = 2 ** attempt
                logger.warning(f"Retrying in {wait_time}s... (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

            except SyncError:
                raise

            except httpx.HTTPError as e:
                logger.error(f"Unexpected transport error during POS request: {e}")
                raise NetworkError(f"Unexpected error: {e}")

    async def refresh_access_token(self) -> str:
        """Обновление access token по refresh token (OAuth)"""
        if not (self.refresh_token and self.client_id):
            raise AuthError("POS refresh token is not configured", 401)

        response = await self._request(
            "POST",
            "/oauth2/token",
            allow_refresh=False,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
            }
        )
        self.access_token = response.get("access_token")
        # POS может выдать новый refresh token
        self.refresh_token = response.get("refresh_token") or self.refresh_token
        logger.info("POS access token refreshed")
        return self.access_token

    # Клиенты

    async def list_customers(self, cursor: Optional[str] = None, limit: int = 100) -> PosPage:
        params: Dict[str, Any] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor

        response = await self._request("GET", "/v2/customers", params=params)
        customers = [PosCustomer.from_api(item) for item in response.get("customers", [])]
        logger.info(f"Retrieved {len(customers)} customers from POS")
        return PosPage(items=customers, cursor=response.get("cursor"))

    async def iter_customers(self) -> AsyncIterator[PosCustomer]:
        cursor = None
        while True:
            page = await self.list_customers(cursor=cursor)
            for customer in page.items:
                yield customer
            cursor = page.cursor
            if not cursor:
                break

    async def get_customer(self, customer_id: str) -> Optional[PosCustomer]:
        """None, если объект удалён в POS"""
        try:
            response = await self._request("GET", f"/v2/customers/{customer_id}")
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise
        item = response.get("customer")
        return PosCustomer.from_api(item) if item else None

    # Каталог и остатки

    async def list_catalog(self, cursor: Optional[str] = None, types: str = "ITEM") -> PosPage:
        params: Dict[str, Any] = {"types": types}
        if cursor:
            params["cursor"] = cursor

        response = await self._request("GET", "/v2/catalog/list", params=params)
        items = [
            PosCatalogItem.from_api(obj)
            for obj in response.get("objects", [])
            if obj.get("type") == "ITEM"
        ]
        logger.info(f"Retrieved {len(items)} catalog items from POS")
        return PosPage(items=items, cursor=response.get("cursor"))

    async def iter_catalog_items(self) -> AsyncIterator[PosCatalogItem]:
        cursor = None
        while True:
            page = await self.list_catalog(cursor=cursor)
            for item in page.items:
                yield item
            cursor = page.cursor
            if not cursor:
                break

    async def get_catalog_object(self, object_id: str) -> Optional[PosCatalogItem]:
        """None, если объект удалён в POS"""
        try:
            response = await self._request("GET", f"/v2/catalog/object/{object_id}")
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise
        obj = response.get("object")
        if not obj or obj.get("type") != "ITEM":
            return None
        return PosCatalogItem.from_api(obj)

    async def batch_retrieve_inventory_counts(
        self,
        catalog_object_ids: List[str],
        location_ids: Optional[List[str]] = None
    ) -> List[PosInventoryCount]:
        """Остатки по вариациям, с обходом курсора"""
        if not catalog_object_ids:
            return []

        location_ids = location_ids or ([self.location_id] if self.location_id else None)
        counts: List[PosInventoryCount] = []
        cursor = None
        while True:
            body: Dict[str, Any] = {"catalog_object_ids": catalog_object_ids}
            if location_ids:
                body["location_ids"] = location_ids
            if cursor:
                body["cursor"] = cursor

            response = await self._request("POST", "/v2/inventory/counts/batch-retrieve", json=body)
            for item in response.get("counts", []):
                counts.append(PosInventoryCount(
                    catalog_object_id=item.get("catalog_object_id"),
                    location_id=item.get("location_id"),
                    quantity=int(float(item.get("quantity", 0))),
                    state=item.get("state", "IN_STOCK"),
                    calculated_at=parse_timestamp(item.get("calculated_at"))
                ))
            cursor = response.get("cursor")
            if not cursor:
                break
        return counts

    # Вебхуки

    async def register_webhook(self, url: str, event_types: List[str]) -> Dict[str, Any]:
        """Регистрация подписки на события"""
        response = await self._request(
            "POST",
            "/v2/webhooks/subscriptions",
            json={
                "subscription": {
                    "name": "ShopSync",
                    "event_types": event_types,
                    "notification_url": url,
                    "api_version": self.api_version,
                },
                "idempotency_key": str(uuid.uuid4()),
            }
        )
        subscription = response.get("subscription")
        if not subscription:
            raise ApiError("Webhook subscription missing in response", 502, response)
        logger.info(f"Webhook subscription registered: {subscription.get('id')}")
        return subscription

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/v2/locations")
            return True
        except SyncError:
            return False
