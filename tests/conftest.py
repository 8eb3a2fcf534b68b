import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import pytest
from sqlalchemy.orm import sessionmaker
from shopsync.core.config import Settings
from shopsync.core.exceptions import ApiError, NetworkError, NotAuthenticated
from shopsync.core.time_utils import format_timestamp, parse_timestamp
from shopsync.crud.records import SyncStore
from shopsync.database import Base, create_tables, make_engine
from shopsync.services.conflicts import ConflictResolver, ConflictStrategy
from shopsync.services.pos_client import PosCatalogItem, PosCustomer, PosInventoryCount
from shopsync.services.status_broadcaster import StatusBroadcaster
from shopsync.services.syncers.base import RetryPolicy, SyncContext

TENANT = "shop-1"
T0 = datetime(2024, 1, 20, 10, 0, tzinfo=timezone.utc)

def ts(minutes: int = 0) -> datetime:
    return T0 + timedelta(minutes=minutes)

class FakeCloud:
    """Облако в памяти: таблица -> {id: строка}"""

    def __init__(self, tenant_id: Optional[str] = TENANT):
        self.tenant_id = tenant_id
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.upsert_calls: List[tuple] = []
        self.select_calls: List[tuple] = []
        self.reachable = True
        # Очередь ошибок для следующих вызовов upsert (None - успех)
        self.upsert_failures: List[Optional[Exception]] = []
        self.select_failures: List[Optional[Exception]] = []
        self.on_upsert = None

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    def set_session(self, tenant_id, access_token=None):
        self.tenant_id = tenant_id

    def require_tenant(self) -> str:
        if not self.tenant_id:
            raise NotAuthenticated()
        return self.tenant_id

    async def health_check(self) -> bool:
        return self.reachable

    @property
    def call_count(self) -> int:
        return len(self.upsert_calls) + len(self.select_calls)

    async def upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str = "id") -> None:
        self.upsert_calls.append((table, [row["id"] for row in rows]))
        if self.on_upsert is not None:
            self.on_upsert(table, rows)
        if self.upsert_failures:
            error = self.upsert_failures.pop(0)
            if error is not None:
                raise error
        target = self.tables.setdefault(table, {})
        for row in rows:
            target.setdefault(row[on_conflict], {}).update(copy.deepcopy(row))

    async def select(
        self,
        table: str,
        tenant_id: str,
        filters=None,
        include_deleted: bool = False,
        deleted_only: bool = False,
        updated_since=None,
        order=None
    ) -> List[Dict[str, Any]]:
        self.select_calls.append((table, deleted_only))
        if self.select_failures:
            error = self.select_failures.pop(0)
            if error is not None:
                raise error

        rows = []
        for row in self.tables.get(table, {}).values():
            if row.get("shop_id") != tenant_id:
                continue
            if deleted_only and not row.get("deleted_at"):
                continue
            if not deleted_only and not include_deleted and row.get("deleted_at"):
                continue
            if updated_since and parse_timestamp(row.get("updated_at")) <= updated_since:
                continue
            if any(str(row.get(k)) != str(v) for k, v in (filters or {}).items()):
                continue
            rows.append(copy.deepcopy(row))
        return rows

    def put(self, table: str, **row):
        row.setdefault("shop_id", TENANT)
        row.setdefault("deleted_at", None)
        for key in ("created_at", "updated_at"):
            if isinstance(row.get(key), datetime):
                row[key] = format_timestamp(row[key])
            row.setdefault(key, format_timestamp(T0))
        self.tables.setdefault(table, {})[row["id"]] = row
        return row

class FakePos:
    def __init__(self):
        self.customers: Dict[str, PosCustomer] = {}
        self.items: Dict[str, PosCatalogItem] = {}
        self.counts: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[Exception] = None

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    def _call(self, name: str):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    async def iter_customers(self):
        self._call("iter_customers")
        for customer in list(self.customers.values()):
            yield customer

    async def get_customer(self, customer_id: str) -> Optional[PosCustomer]:
        self._call("get_customer")
        return self.customers.get(customer_id)

    async def iter_catalog_items(self):
        self._call("iter_catalog_items")
        for item in list(self.items.values()):
            yield item

    async def get_catalog_object(self, object_id: str) -> Optional[PosCatalogItem]:
        self._call("get_catalog_object")
        return self.items.get(object_id)

    async def batch_retrieve_inventory_counts(self, catalog_object_ids, location_ids=None):
        self._call("batch_retrieve_inventory_counts")
        return [
            PosInventoryCount(catalog_object_id=vid, location_id="L1", quantity=self.counts[vid])
            for vid in catalog_object_ids
            if vid in self.counts
        ]

    def add_customer(self, customer_id: str, updated_at: datetime = T0, **fields) -> PosCustomer:
        customer = PosCustomer(id=customer_id, updated_at=updated_at, **fields)
        self.customers[customer_id] = customer
        return customer

    def add_item(self, item_id: str, name: str, sku: str, quantity: int = 0,
                 updated_at: datetime = T0, **fields) -> PosCatalogItem:
        item = PosCatalogItem(
            id=item_id,
            name=name,
            sku=sku,
            variation_id=f"{item_id}-V",
            updated_at=updated_at,
            **fields
        )
        self.items[item_id] = item
        self.counts[item.variation_id] = quantity
        return item

@pytest.fixture
def db_session():
    engine = make_engine("sqlite://")
    create_tables(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    session = Session()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def store(db_session):
    return SyncStore(db_session)

@pytest.fixture
def cloud():
    return FakeCloud()

@pytest.fixture
def pos():
    return FakePos()

@pytest.fixture
def broadcaster():
    return StatusBroadcaster()

@pytest.fixture
def conflicts():
    return ConflictResolver(ConflictStrategy.NEWEST_WINS)

@pytest.fixture
def context(store, cloud, conflicts, broadcaster):
    return SyncContext(
        store=store,
        cloud=cloud,
        conflicts=conflicts,
        broadcaster=broadcaster,
        retry_policy=RetryPolicy(max_attempts=3, backoff_base_seconds=30, backoff_max_seconds=3600),
        batch_size=100
    )

@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SHOP_ID=TENANT,
        POS_ACCESS_TOKEN="pos-token",
        POS_WEBHOOK_SIGNATURE_KEY="webhook-secret",
        POS_WEBHOOK_NOTIFICATION_URL="https://shop.example.com/webhook",
        AUTO_SYNC_ENABLED=False,
        LOG_FILE=None,
        _env_file=None
    )

def server_error() -> ApiError:
    return ApiError("Cloud API error: 503", 503)

def network_error() -> NetworkError:
    return NetworkError("Connection failed")
