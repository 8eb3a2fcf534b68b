"""
Периодический запуск синхронизации.

Сетевая доступность определяется отдельным циклом NetworkMonitor; такт
планировщика только читает флаг и не делает сетевых вызовов, если сеть
недоступна.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional
from shopsync.core.time_utils import utcnow

logger = logging.getLogger(__name__)

class NetworkMonitor:
    """Флаг доступности облака, обновляемый фоновой проверкой"""

    def __init__(self, probe: Callable[[], Awaitable[bool]], interval_seconds: float = 15):
        self.probe = probe
        self.interval_seconds = interval_seconds
        self.is_reachable = False
        self.last_checked_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    def set_reachable(self, reachable: bool):
        if reachable != self.is_reachable:
            logger.info(f"Cloud {'reachable' if reachable else 'unreachable'}")
        self.is_reachable = reachable

    async def check(self) -> bool:
        try:
            reachable = await self.probe()
        except Exception as e:
            logger.warning(f"Network probe failed: {e}")
            reachable = False
        self.last_checked_at = utcnow()
        self.set_reachable(reachable)
        return reachable

    async def _run(self):
        while not self._stopping:
            await self.check()
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self._task is not None and not self._task.done():
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="network-monitor")

    async def stop(self):
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

class PeriodicJob:
    """Задача, повторяемая с фиксированным интервалом"""

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self.task: Optional[asyncio.Task] = None
        self.runs = 0

    async def run_forever(self, is_stopping: Callable[[], bool]):
        while not is_stopping():
            await asyncio.sleep(self.interval_seconds)
            if is_stopping():
                break
            # Текущий такт доводится до конца даже при остановке
            await asyncio.shield(self._run_once())

    async def _run_once(self):
        self.runs += 1
        try:
            await self.action()
        except Exception as e:
            logger.error(f"Scheduled job '{self.name}' failed: {e}")

class SyncScheduler:
    def __init__(
        self,
        orchestrator,
        monitor: NetworkMonitor,
        sync_interval_seconds: float = 30,
        pos_interval_seconds: float = 0
    ):
        self.orchestrator = orchestrator
        self.monitor = monitor
        self.sync_interval_seconds = sync_interval_seconds
        self.pos_interval_seconds = pos_interval_seconds
        self.jobs: Dict[str, PeriodicJob] = {}
        self.skipped_ticks = 0
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return any(job.task is not None and not job.task.done() for job in self.jobs.values())

    async def tick(self) -> bool:
        """Один такт облачной синхронизации; False, если такт пропущен"""
        if not self.monitor.is_reachable:
            self.skipped_ticks += 1
            logger.debug("Cloud unreachable, skipping sync tick")
            return False
        if self.orchestrator.is_syncing:
            logger.debug("Sync already in progress, skipping tick")
            return False
        await self.orchestrator.perform_full_sync()
        return True

    async def pos_tick(self) -> bool:
        if not self.monitor.is_reachable or self.orchestrator.is_syncing:
            return False
        await self.orchestrator.run_pos_import()
        return True

    def start(self):
        if self.is_running:
            return
        self._stopping = False

        self.jobs["cloud"] = PeriodicJob("cloud", self.sync_interval_seconds, self.tick)
        if self.pos_interval_seconds and self.pos_interval_seconds > 0:
            self.jobs["pos"] = PeriodicJob("pos", self.pos_interval_seconds, self.pos_tick)

        for job in self.jobs.values():
            job.task = asyncio.create_task(
                job.run_forever(lambda: self._stopping),
                name=f"sync-job-{job.name}"
            )
        logger.info(f"Scheduler started: {', '.join(self.jobs)}")

    async def stop(self):
        self._stopping = True
        for job in self.jobs.values():
            if job.task is None:
                continue
            job.task.cancel()
            try:
                await job.task
            except asyncio.CancelledError:
                pass
            job.task = None
        logger.info("Scheduler stopped")
