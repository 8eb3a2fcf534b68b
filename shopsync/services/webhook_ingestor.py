"""
Приём вебхуков POS.

Тело проверяется по HMAC-SHA256 до любого разбора; неподписанный или
неверно подписанный запрос отклоняется целиком. Доставка "хотя бы
один раз" и без порядка относительно плановой загрузки - корректность
держится на идемпотентном слиянии. Работа с хранилищем идёт под общей
с оркестратором блокировкой, поэтому событие не вмешивается в
незавершённый цикл.
"""
import asyncio
import base64
import contextlib
import hashlib
import hmac
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
from shopsync.core.exceptions import InvalidPayload, InvalidSignature, SyncError
from shopsync.crud.records import SyncStore
from shopsync.models.integration import PosMapping, SyncTrigger
from shopsync.services.pos_importer import CustomerImporter, InventoryImporter
from shopsync.services.status_broadcaster import StatusBroadcaster, SyncEventType

logger = logging.getLogger(__name__)

def compute_signature(body: bytes, signature_key: str, notification_url: Optional[str] = None) -> str:
    payload = (notification_url or "").encode("utf-8") + body
    digest = hmac.new(signature_key.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")

def verify_signature(
    body: bytes,
    signature: Optional[str],
    signature_key: Optional[str],
    notification_url: Optional[str] = None
) -> bool:
    if not signature_key or not signature:
        return False
    expected = compute_signature(body, signature_key, notification_url)
    return hmac.compare_digest(expected, signature.strip())

@dataclass
class WebhookEvent:
    type: str
    object_id: str
    event_id: Optional[str] = None
    merchant_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_deletion(self) -> bool:
        return "deleted" in self.type or bool(self.data.get("deleted"))

    @classmethod
    def parse(cls, body: bytes) -> "WebhookEvent":
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidPayload(f"Webhook body is not JSON: {e}")

        if not isinstance(payload, dict):
            raise InvalidPayload("Webhook body must be an object")

        event_type = payload.get("type")
        data = payload.get("data")
        if not isinstance(event_type, str) or not isinstance(data, dict):
            raise InvalidPayload("Webhook body must contain type and data")

        object_id = data.get("id")
        if not object_id:
            raise InvalidPayload("Webhook data.id is missing")

        return cls(
            type=event_type,
            object_id=str(object_id),
            event_id=payload.get("event_id"),
            merchant_id=payload.get("merchant_id"),
            data=data
        )

@dataclass
class WebhookResult:
    status: str              # processed, ignored, duplicate
    event_type: str
    object_id: Optional[str] = None
    outcome: Optional[str] = None

class WebhookIngestor:
    """Проверка, разбор и маршрутизация событий POS"""

    ROUTES = (
        ("inventory", "inventory"),
        ("catalog", "inventory"),
        ("customer", "customers"),
    )

    def __init__(
        self,
        store: SyncStore,
        customer_importer: CustomerImporter,
        inventory_importer: InventoryImporter,
        signature_key: Optional[str],
        notification_url: Optional[str] = None,
        import_new_objects: bool = False,
        broadcaster: Optional[StatusBroadcaster] = None,
        dedup_window: int = 1000,
        store_lock: Optional[asyncio.Lock] = None
    ):
        self.store = store
        self.importers = {
            "customers": customer_importer,
            "inventory": inventory_importer,
        }
        self.signature_key = signature_key
        self.notification_url = notification_url
        self.import_new_objects = import_new_objects
        self.broadcaster = broadcaster
        self.dedup_window = dedup_window
        self._seen_events: "OrderedDict[str, None]" = OrderedDict()
        # Сессия общая с циклом синхронизации: событие ждёт, пока цикл или импорт не закончится
        self.store_lock = store_lock

    async def handle(self, raw_body: Union[bytes, str], signature_header: Optional[str]) -> WebhookResult:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body

        if not verify_signature(body, signature_header, self.signature_key, self.notification_url):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignature("Invalid webhook signature")

        event = WebhookEvent.parse(body)
        logger.info(f"Received webhook: {event.type} for {event.object_id}")

        async with self.store_lock or contextlib.nullcontext():
            if event.event_id and event.event_id in self._seen_events:
                logger.info(f"Duplicate webhook delivery {event.event_id} ignored")
                return WebhookResult("duplicate", event.type, event.object_id)

            result = await self.process_event(event)
            self._remember(event.event_id)

        if self.broadcaster is not None:
            self.broadcaster.publish(
                SyncEventType.WEBHOOK_RECEIVED,
                {
                    "event_type": event.type,
                    "object_id": event.object_id,
                    "status": result.status,
                    "outcome": result.outcome,
                }
            )
        return result

    def route(self, event_type: str) -> Optional[str]:
        for marker, entity_type in self.ROUTES:
            if marker in event_type:
                return entity_type
        return None

    async def process_event(self, event: WebhookEvent) -> WebhookResult:
        entity_type = self.route(event.type)
        if entity_type is None:
            logger.warning(f"Unhandled webhook type: {event.type}")
            return WebhookResult("ignored", event.type, event.object_id)

        # Для событий остатков объект - вариация; ищем её товар
        object_id = self._resolve_object_id(event)
        mapping = self.store.get_mapping(object_id)
        importer = self.importers[entity_type]

        if mapping is None:
            if event.is_deletion:
                logger.info(f"Deletion of unmirrored POS object {object_id} ignored")
                return WebhookResult("ignored", event.type, object_id)
            if not self.import_new_objects:
                logger.info(f"New POS object {object_id} not imported (import disabled)")
                return WebhookResult("ignored", event.type, object_id)
            logger.info(f"Importing new POS object {object_id}")

        sync_log = self.store.create_sync_log(entity_type, SyncTrigger.WEBHOOK.value)
        try:
            if event.is_deletion and entity_type == "inventory":
                outcome = importer.apply_deletion(object_id)
                self.store.save()
            else:
                outcome = await importer.resync_object(object_id)
        except SyncError as e:
            self.store.rollback()
            self.store.finish_sync_log(sync_log, "failed", error_message=str(e))
            raise
        self.store.finish_sync_log(sync_log, "completed", {outcome: 1})

        logger.info(f"Targeted re-sync of {entity_type} {object_id}: {outcome}")
        return WebhookResult("processed", event.type, object_id, outcome)

    def _resolve_object_id(self, event: WebhookEvent) -> str:
        if "inventory" not in event.type:
            return event.object_id

        mapping = self.store.first(PosMapping, PosMapping.pos_variation_id == event.object_id)
        if mapping is not None:
            return mapping.pos_object_id

        counts = (event.data.get("object") or {}).get("inventory_counts") or []
        for count in counts:
            variation_id = count.get("catalog_object_id")
            if variation_id:
                mapping = self.store.first(PosMapping, PosMapping.pos_variation_id == variation_id)
                if mapping is not None:
                    return mapping.pos_object_id
        return event.object_id

    def _remember(self, event_id: Optional[str]):
        if not event_id:
            return
        self._seen_events[event_id] = None
        while len(self._seen_events) > self.dedup_window:
            self._seen_events.popitem(last=False)
