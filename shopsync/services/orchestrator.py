"""
Оркестратор полного цикла синхронизации.

Домены идут в фиксированном порядке: клиенты, товары, заказы, платежи,
сотрудники. Для клиентов и товаров импорт из POS предшествует обмену с
облаком. Ошибка одного домена фиксируется в его статусе и журнале и не
прерывает остальные.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from shopsync.core.exceptions import SyncError, SyncInProgress
from shopsync.core.time_utils import format_timestamp, utcnow
from shopsync.crud.records import SyncStore
from shopsync.models.integration import DomainState, SyncTrigger
from shopsync.services.pos_importer import PosImporter
from shopsync.services.status_broadcaster import StatusBroadcaster, SyncEventType
from shopsync.services.syncers.base import EntitySyncer, SyncCounters

logger = logging.getLogger(__name__)

DOMAIN_ORDER = ("customers", "inventory", "tickets", "payments", "employees")

@dataclass
class DomainStatus:
    state: DomainState = DomainState.IDLE
    message: Optional[str] = None
    last_sync_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "message": self.message,
            "last_sync_date": format_timestamp(self.last_sync_date),
        }

class SyncOrchestrator:
    def __init__(
        self,
        store: SyncStore,
        syncers: Dict[str, EntitySyncer],
        importers: Optional[Dict[str, PosImporter]] = None,
        broadcaster: Optional[StatusBroadcaster] = None
    ):
        self.store = store
        self.syncers = syncers
        self.importers = importers or {}
        self.broadcaster = broadcaster

        self.domains: List[str] = [name for name in DOMAIN_ORDER if name in syncers]
        self.status: Dict[str, DomainStatus] = {name: DomainStatus() for name in self.domains}

        self.is_syncing = False
        # Общая сессия хранилища: цикл, импорт POS и вебхуки работают с ней по очереди
        self.store_lock = asyncio.Lock()
        self.last_sync_date: Optional[datetime] = None
        self.last_sync_error: Optional[str] = None
        self.cycles_completed = 0

    def _publish(self, event_type: SyncEventType, data: Dict[str, Any]):
        if self.broadcaster is not None:
            self.broadcaster.publish(event_type, data)

    def _set_status(self, domain: str, state: DomainState, message: Optional[str] = None):
        status = self.status[domain]
        status.state = state
        status.message = message
        if state == DomainState.IDLE:
            status.last_sync_date = utcnow()
        self._publish(SyncEventType.DOMAIN_STATUS, {"domain": domain, **status.to_dict()})

    async def _run_domain(self, domain: str, trigger: SyncTrigger) -> SyncCounters:
        """Один домен: импорт POS (если есть), затем обмен с облаком"""
        sync_log = self.store.create_sync_log(domain, trigger.value)
        self._set_status(domain, DomainState.SYNCING)

        counters = SyncCounters()
        try:
            importer = self.importers.get(domain)
            if importer is not None:
                counters.merge(await importer.import_all())
            counters.merge(await self.syncers[domain].sync())

        except SyncError as e:
            logger.error(f"Sync of {domain} failed: {e}")
            self.store.rollback()
            self._set_status(domain, DomainState.ERROR, str(e))
            self.store.finish_sync_log(sync_log, "failed", counters.to_dict(), str(e))
            raise

        self._set_status(domain, DomainState.IDLE)
        self.store.finish_sync_log(sync_log, "completed", counters.to_dict())
        return counters

    async def perform_full_sync(self, trigger: SyncTrigger = SyncTrigger.SCHEDULED) -> Optional[Dict[str, Any]]:
        """Полный цикл по всем доменам; пока идёт цикл, повторный вызов ничего не делает"""
        if self.is_syncing:
            logger.info("Full sync requested while another is running, ignoring")
            self._publish(SyncEventType.SYNC_SKIPPED, {"reason": "already syncing"})
            return None

        self.is_syncing = True
        started = time.monotonic()
        errors: Dict[str, str] = {}
        results: Dict[str, Dict[str, int]] = {}

        logger.info(f"Starting full sync ({trigger.value})")
        self._publish(SyncEventType.SYNC_STARTED, {"trigger": trigger.value, "domains": self.domains})

        try:
            async with self.store_lock:
                for domain in self.domains:
                    try:
                        counters = await self._run_domain(domain, trigger)
                        results[domain] = counters.to_dict()
                    except SyncError as e:
                        errors[domain] = str(e)

            self.last_sync_date = utcnow()
            self.last_sync_error = "; ".join(f"{d}: {m}" for d, m in errors.items()) or None
            self.cycles_completed += 1
        finally:
            self.is_syncing = False

        duration = round(time.monotonic() - started, 3)
        summary = {
            "trigger": trigger.value,
            "results": results,
            "errors": errors,
            "duration_seconds": duration,
        }

        if errors:
            logger.warning(f"Full sync finished with errors in {duration}s: {self.last_sync_error}")
            self._publish(SyncEventType.SYNC_ERROR, summary)
        else:
            logger.info(f"Full sync completed in {duration}s")
        self._publish(SyncEventType.SYNC_COMPLETED, summary)
        return summary

    async def sync_domain(self, domain: str, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncCounters:
        """Синхронизация одного домена"""
        if domain not in self.syncers:
            raise ValueError(f"Unknown sync domain: {domain}")
        if self.is_syncing or self.status[domain].state == DomainState.SYNCING:
            raise SyncInProgress(f"Sync already in progress for {domain}")

        self.is_syncing = True
        try:
            async with self.store_lock:
                return await self._run_domain(domain, trigger)
        finally:
            self.is_syncing = False

    async def run_pos_import(self) -> Optional[Dict[str, Dict[str, Any]]]:
        """Только импорт из POS, без обмена с облаком; во время цикла ничего не делает"""
        if self.is_syncing:
            logger.info("POS import requested while a sync is running, ignoring")
            return None

        self.is_syncing = True
        results = {}
        try:
            async with self.store_lock:
                for domain, importer in self.importers.items():
                    try:
                        results[domain] = (await importer.import_all()).to_dict()
                    except SyncError as e:
                        logger.error(f"POS import of {domain} failed: {e}")
                        self.store.rollback()
                        results[domain] = {"error": str(e)}
        finally:
            self.is_syncing = False
        return results

    def snapshot(self) -> Dict[str, Any]:
        return {
            "is_syncing": self.is_syncing,
            "last_sync_date": format_timestamp(self.last_sync_date),
            "last_sync_error": self.last_sync_error,
            "cycles_completed": self.cycles_completed,
            "domains": {name: status.to_dict() for name, status in self.status.items()},
            "records": {name: self.syncers[name].stats() for name in self.domains},
        }
