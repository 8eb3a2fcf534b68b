import logging
from typing import Any, Dict, Optional
from shopsync.core.exceptions import RecordNotFound
from shopsync.core.time_utils import utcnow
from shopsync.models.entities import InventoryItem
from shopsync.services.identity import RemoteIdentity
from shopsync.services.status_broadcaster import SyncEventType
from shopsync.services.syncers.base import EntitySyncer

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("shopsync.audit")

class InventorySyncer(EntitySyncer):
    model = InventoryItem
    table = "inventory_items"
    domain = "inventory"
    fields = (
        "sku", "part_number", "name", "category",
        "cost", "price", "quantity", "min_quantity", "is_active",
    )
    external_ref_column = "square_object_id"
    order_by = "name.asc"

    def remote_identity(self, row: Dict[str, Any]) -> RemoteIdentity:
        return RemoteIdentity(
            local_id=row.get("id"),
            external_ref=row.get(self.external_ref_column),
            sku=row.get("sku")
        )

    def after_merge(self, record: InventoryItem) -> None:
        self.notify_if_low_stock(record)

    def notify_if_low_stock(self, item: InventoryItem) -> bool:
        """Уведомление наблюдателей о низком остатке"""
        if not item.is_low_stock:
            return False
        logger.info(f"Low stock: {item.name} ({item.quantity} <= {item.min_quantity})")
        self._publish(
            SyncEventType.LOW_STOCK_ALERT,
            {
                "item_id": item.local_id,
                "name": item.name,
                "quantity": item.quantity,
                "min_quantity": item.min_quantity,
            },
            channel="inventory_updates"
        )
        return True

    async def adjust_stock(self, item_id: str, adjustment: int, reason: Optional[str] = None) -> InventoryItem:
        """
        Изменение остатка со сквозной записью: локальная правка,
        сохранение и немедленная выгрузка этой записи в облако.
        """
        item = self.store.get(self.model, item_id)
        if item is None or item.is_deleted:
            raise RecordNotFound(f"Inventory item {item_id} not found")

        new_quantity = (item.quantity or 0) + adjustment
        item.quantity = new_quantity
        item.touch(utcnow())
        self.store.save()

        await self.upload(item)

        if reason:
            audit_logger.info(
                f"Stock adjustment: item {item_id} adjusted by {adjustment} to {new_quantity}. Reason: {reason}"
            )
            self._publish(
                SyncEventType.STOCK_ADJUSTED,
                {
                    "item_id": item_id,
                    "adjustment": adjustment,
                    "quantity": new_quantity,
                    "reason": reason,
                },
                channel="inventory_updates"
            )

        self.notify_if_low_stock(item)
        return item

    def low_stock_items(self):
        return self.store.fetch(
            self.model,
            [
                self.model.quantity <= self.model.min_quantity,
                self.model.is_active.is_(True),
                self.model.deleted_at.is_(None),
            ],
            order_by=self.model.name
        )
