# shopsync/engine.py
"""
Сборка движка синхронизации из настроек.

Все компоненты получают зависимости через конструктор; глобальных
экземпляров нет, поэтому тесты собирают движок с фейковыми клиентами.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from sqlalchemy.orm import Session
from shopsync.core.config import Settings
from shopsync.crud.records import SyncStore
from shopsync.database import SessionLocal
from shopsync.services.cloud_client import CloudClient
from shopsync.services.conflicts import ConflictResolver, ConflictStrategy
from shopsync.services.orchestrator import SyncOrchestrator
from shopsync.services.pos_client import PosClient
from shopsync.services.pos_importer import CustomerImporter, InventoryImporter, PosImporter
from shopsync.services.scheduler import NetworkMonitor, SyncScheduler
from shopsync.services.status_broadcaster import StatusBroadcaster
from shopsync.services.syncers.base import EntitySyncer, RetryPolicy, SyncContext
from shopsync.services.syncers.customers import CustomerSyncer
from shopsync.services.syncers.employees import EmployeeSyncer
from shopsync.services.syncers.inventory import InventorySyncer
from shopsync.services.syncers.payments import PaymentSyncer
from shopsync.services.syncers.tickets import TicketSyncer
from shopsync.services.webhook_ingestor import WebhookIngestor

logger = logging.getLogger(__name__)

@dataclass
class SyncEngine:
    settings: Settings
    store: SyncStore
    cloud: CloudClient
    pos: Optional[PosClient]
    broadcaster: StatusBroadcaster
    syncers: Dict[str, EntitySyncer]
    orchestrator: SyncOrchestrator
    monitor: NetworkMonitor
    scheduler: SyncScheduler
    webhook: Optional[WebhookIngestor] = None
    importers: Dict[str, PosImporter] = field(default_factory=dict)

    async def start(self, auto_sync: Optional[bool] = None):
        await self.cloud.connect()
        if self.pos is not None:
            await self.pos.connect()

        if auto_sync is None:
            auto_sync = self.settings.AUTO_SYNC_ENABLED
        if auto_sync:
            self.monitor.start()
            self.scheduler.start()
        logger.info(f"Sync engine started (auto sync: {auto_sync})")

    async def stop(self):
        await self.scheduler.stop()
        await self.monitor.stop()
        await self.cloud.disconnect()
        if self.pos is not None:
            await self.pos.disconnect()
        self.store.close()
        logger.info("Sync engine stopped")

    async def __aenter__(self):
        await self.start(auto_sync=False)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

def build_engine(
    settings: Settings,
    session: Optional[Session] = None,
    cloud: Optional[CloudClient] = None,
    pos: Optional[PosClient] = None,
    broadcaster: Optional[StatusBroadcaster] = None
) -> SyncEngine:
    """Создание всех компонентов и связей между ними"""
    store = SyncStore(session or SessionLocal())
    broadcaster = broadcaster or StatusBroadcaster()

    if cloud is None:
        cloud = CloudClient(
            base_url=settings.CLOUD_URL,
            api_key=settings.CLOUD_API_KEY,
            service_key=settings.CLOUD_SERVICE_KEY,
            tenant_id=settings.SHOP_ID,
            timeout=settings.CLOUD_TIMEOUT,
            max_retries=settings.CLOUD_MAX_RETRIES
        )

    if pos is None and settings.POS_ACCESS_TOKEN:
        pos = PosClient(
            base_url=settings.POS_BASE_URL,
            access_token=settings.POS_ACCESS_TOKEN,
            refresh_token=settings.POS_REFRESH_TOKEN,
            client_id=settings.POS_CLIENT_ID,
            client_secret=settings.POS_CLIENT_SECRET,
            api_version=settings.POS_API_VERSION,
            location_id=settings.POS_LOCATION_ID,
            timeout=settings.POS_TIMEOUT,
            max_retries=settings.POS_MAX_RETRIES
        )

    conflicts = ConflictResolver(ConflictStrategy(settings.CONFLICT_STRATEGY))
    context = SyncContext(
        store=store,
        cloud=cloud,
        conflicts=conflicts,
        broadcaster=broadcaster,
        retry_policy=RetryPolicy(
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            backoff_base_seconds=settings.SYNC_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.SYNC_BACKOFF_MAX_SECONDS
        ),
        batch_size=settings.SYNC_BATCH_SIZE
    )

    syncers: Dict[str, EntitySyncer] = {
        "customers": CustomerSyncer(context),
        "inventory": InventorySyncer(context),
        "tickets": TicketSyncer(context),
        "payments": PaymentSyncer(context),
        "employees": EmployeeSyncer(context),
    }

    importers: Dict[str, PosImporter] = {}
    if pos is not None:
        importers = {
            "customers": CustomerImporter(store, pos, conflicts, settings.SHOP_ID),
            "inventory": InventoryImporter(store, pos, conflicts, settings.SHOP_ID),
        }

    orchestrator = SyncOrchestrator(store, syncers, importers, broadcaster)

    webhook = None
    if pos is not None:
        webhook = WebhookIngestor(
            store=store,
            customer_importer=importers["customers"],
            inventory_importer=importers["inventory"],
            signature_key=settings.POS_WEBHOOK_SIGNATURE_KEY,
            notification_url=settings.POS_WEBHOOK_NOTIFICATION_URL,
            import_new_objects=settings.WEBHOOK_IMPORT_NEW_OBJECTS,
            broadcaster=broadcaster,
            store_lock=orchestrator.store_lock
        )
    else:
        logger.warning("POS access token not configured, POS import and webhooks disabled")

    monitor = NetworkMonitor(cloud.health_check, settings.NETWORK_PROBE_INTERVAL_SECONDS)
    scheduler = SyncScheduler(
        orchestrator,
        monitor,
        sync_interval_seconds=settings.SYNC_INTERVAL_SECONDS,
        pos_interval_seconds=settings.POS_SYNC_INTERVAL_SECONDS if pos is not None else 0
    )

    return SyncEngine(
        settings=settings,
        store=store,
        cloud=cloud,
        pos=pos,
        broadcaster=broadcaster,
        syncers=syncers,
        orchestrator=orchestrator,
        monitor=monitor,
        scheduler=scheduler,
        webhook=webhook,
        importers=importers
    )
