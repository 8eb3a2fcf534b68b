"""
Импорт данных POS в локальное хранилище.

Изменения, пришедшие из POS, помечают запись pending: в облако они
попадают обычной выгрузкой следующего цикла. Версией данных служит
updated_at объекта в POS, поэтому повторный импорт без изменений
ничего не трогает.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from shopsync.core.time_utils import as_utc, utcnow
from shopsync.crud.records import SyncStore
from shopsync.models.entities import Customer, InventoryItem
from shopsync.services.batch_uploader import chunked
from shopsync.services.conflicts import ConflictResolver, Winner
from shopsync.services.identity import IdentityResolver, RemoteIdentity
from shopsync.services.pos_client import PosCatalogItem, PosClient, PosCustomer
from shopsync.services.syncers.base import SyncCounters

logger = logging.getLogger(__name__)

class PosImporter:
    entity_type: str = None
    model = None

    def __init__(
        self,
        store: SyncStore,
        pos: PosClient,
        conflicts: ConflictResolver,
        tenant_id: Optional[str] = None
    ):
        self.store = store
        self.pos = pos
        self.conflicts = conflicts
        self.identity = IdentityResolver(store)
        self.tenant_id = tenant_id
        self.last_import_date: Optional[datetime] = None

    def _apply_changes(self, record: Any, values: Dict[str, Any]) -> bool:
        changed = False
        for name, value in values.items():
            if value is None:
                continue
            if getattr(record, name) != value:
                setattr(record, name, value)
                changed = True
        return changed

    def _merge(
        self,
        identity: RemoteIdentity,
        values: Dict[str, Any],
        remote_updated_at: Optional[datetime],
        variation_id: Optional[str] = None
    ) -> str:
        resolution = self.identity.resolve(self.model, identity)
        version = as_utc(remote_updated_at) or utcnow()

        if resolution.is_new:
            record = self.model(external_ref=identity.external_ref, tenant_id=self.tenant_id)
            self._apply_changes(record, values)
            record.created_at = utcnow()
            record.touch(version)
            self.store.add(record)
            self.store.flush()
            self.store.upsert_mapping(identity.external_ref, self.entity_type, record.local_id, variation_id)
            logger.info(f"Imported new {self.entity_type} {record.local_id} from POS {identity.external_ref}")
            return "created"

        record = resolution.existing
        self.store.upsert_mapping(identity.external_ref, self.entity_type, record.local_id, variation_id)

        outcome = "unchanged"
        if resolution.matched_by not in ("external_ref", "local_id"):
            # Связь установлена по вторичному ключу - external_ref надо донести до облака
            record.mark_pending()
            outcome = "updated"

        if self.conflicts.resolve(record, version) == Winner.REMOTE:
            if self._apply_changes(record, values):
                record.touch(version)
                outcome = "updated"

        self.store.flush()
        return outcome

    def _unlink(self, pos_object_id: str) -> Optional[Any]:
        """Объект удалён в POS: снимаем висящую ссылку"""
        mapping = self.store.get_mapping(pos_object_id)
        record = None
        if mapping is not None:
            record = self.store.get(self.model, mapping.local_id)
            self.store.remove_mapping(pos_object_id)
        if record is None:
            record = self.store.first(self.model, self.model.external_ref == pos_object_id)
        return record

class CustomerImporter(PosImporter):
    entity_type = "customers"
    model = Customer

    def merge_customer(self, customer: PosCustomer) -> str:
        identity = RemoteIdentity(
            external_ref=customer.id,
            email=customer.email_address,
            phone=customer.phone_number
        )
        values = {
            "first_name": customer.given_name,
            "last_name": customer.family_name,
            "email": customer.email_address,
            "phone": customer.phone_number,
            "address": customer.address,
            "notes": customer.note,
        }
        return self._merge(identity, values, customer.updated_at)

    async def import_all(self) -> SyncCounters:
        """Импорт всех клиентов POS с обходом курсора"""
        counters = SyncCounters()
        async for customer in self.pos.iter_customers():
            outcome = self.merge_customer(customer)
            setattr(counters, outcome, getattr(counters, outcome) + 1)
        self.store.save()
        self.last_import_date = utcnow()
        logger.info(f"POS customer import: created={counters.created}, updated={counters.updated}")
        return counters

    async def resync_object(self, object_id: str) -> str:
        """Точечная пересинхронизация одного клиента"""
        customer = await self.pos.get_customer(object_id)
        if customer is None:
            record = self._unlink(object_id)
            if record is not None and record.external_ref == object_id:
                # Клиента не удаляем - только связь с POS
                record.external_ref = None
                record.mark_pending()
            self.store.save()
            return "unlinked" if record is not None else "missing"

        outcome = self.merge_customer(customer)
        self.store.save()
        return outcome

class InventoryImporter(PosImporter):
    entity_type = "inventory"
    model = InventoryItem

    COUNTS_CHUNK_SIZE = 100

    def merge_item(self, item: PosCatalogItem, quantity: Optional[int] = None) -> str:
        if item.is_deleted:
            return self.apply_deletion(item.id)

        identity = RemoteIdentity(external_ref=item.id, sku=item.sku)
        values = {
            "name": item.name,
            "sku": item.sku,
            "price": item.price,
            "category": item.category,
            "quantity": quantity,
        }
        return self._merge(identity, values, item.updated_at, item.variation_id)

    def apply_deletion(self, pos_object_id: str) -> str:
        """Товар удалён в POS: локальный tombstone, который уйдёт в облако"""
        record = self._unlink(pos_object_id)
        if record is None or record.is_deleted:
            return "unchanged"
        now = utcnow()
        record.deleted_at = now
        record.touch(now)
        self.store.flush()
        logger.info(f"Inventory item {record.local_id} deleted in POS ({pos_object_id})")
        return "deleted"

    async def _fetch_quantities(self, items: List[PosCatalogItem]) -> Dict[str, int]:
        variation_ids = [item.variation_id for item in items if item.variation_id]
        quantities: Dict[str, int] = {}
        for chunk in chunked(variation_ids, self.COUNTS_CHUNK_SIZE):
            counts = await self.pos.batch_retrieve_inventory_counts(list(chunk))
            for count in counts:
                if count.state != "IN_STOCK":
                    continue
                quantities[count.catalog_object_id] = quantities.get(count.catalog_object_id, 0) + count.quantity
        return quantities

    async def import_all(self) -> SyncCounters:
        """Импорт каталога POS с остатками"""
        counters = SyncCounters()
        items = [item async for item in self.pos.iter_catalog_items()]
        quantities = await self._fetch_quantities(items)

        for item in items:
            outcome = self.merge_item(item, quantities.get(item.variation_id))
            setattr(counters, outcome, getattr(counters, outcome) + 1)

        self.store.save()
        self.last_import_date = utcnow()
        logger.info(
            f"POS catalog import: created={counters.created}, updated={counters.updated}, "
            f"deleted={counters.deleted}"
        )
        return counters

    async def resync_object(self, object_id: str) -> str:
        """Точечная пересинхронизация одного товара каталога"""
        item = await self.pos.get_catalog_object(object_id)
        if item is None:
            outcome = self.apply_deletion(object_id)
            self.store.save()
            return outcome

        quantities = await self._fetch_quantities([item])
        outcome = self.merge_item(item, quantities.get(item.variation_id))
        self.store.save()
        return outcome
