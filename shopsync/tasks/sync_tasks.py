"""
Задачи Celery. Каждая задача поднимает собственный движок с отдельной
сессией и выполняет цикл внутри asyncio.run.
"""
import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import uuid4
from celery import current_task
from shopsync.core.config import settings
from shopsync.core.exceptions import SyncError
from shopsync.engine import build_engine
from shopsync.models.integration import SyncTrigger
from shopsync.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

def _task_id() -> str:
    return current_task.request.id if current_task and current_task.request.id else str(uuid4())

async def _run_cycle(trigger: SyncTrigger) -> Dict[str, Any]:
    async with build_engine(settings) as engine:
        # Без сети цикл не запускается вовсе
        if not await engine.monitor.check():
            return {"status": "skipped", "reason": "cloud unreachable"}

        summary = await engine.orchestrator.perform_full_sync(trigger)
        if summary is None:
            return {"status": "skipped", "reason": "already syncing"}
        return {"status": "completed" if not summary["errors"] else "partial", **summary}

async def _run_pos_import() -> Dict[str, Any]:
    async with build_engine(settings) as engine:
        if engine.pos is None:
            return {"status": "skipped", "reason": "POS not configured"}
        results = await engine.orchestrator.run_pos_import()
        if results is None:
            return {"status": "skipped", "reason": "already syncing"}
        return {"status": "completed", "results": results}

async def _run_domain(domain: str) -> Dict[str, Any]:
    async with build_engine(settings) as engine:
        counters = await engine.orchestrator.sync_domain(domain, SyncTrigger.MANUAL)
        return {"status": "completed", "domain": domain, **counters.to_dict()}

@celery_app.task(bind=True, max_retries=3)
def run_sync_cycle(self, trigger: str = SyncTrigger.SCHEDULED.value):
    """Полный цикл синхронизации всех доменов"""
    task_id = _task_id()
    logger.info(f"Starting sync cycle task {task_id}")

    result = asyncio.run(_run_cycle(SyncTrigger(trigger)))

    logger.info(f"Sync cycle task {task_id} finished: {result['status']}")
    return result

@celery_app.task(bind=True, max_retries=3)
def run_pos_import(self):
    """Импорт клиентов и каталога из POS"""
    task_id = _task_id()
    logger.info(f"Starting POS import task {task_id}")
    return asyncio.run(_run_pos_import())

@celery_app.task(bind=True, max_retries=3)
def sync_domain(self, domain: str, retry_countdown: Optional[int] = 60):
    """Синхронизация одного домена с повтором при сбое"""
    task_id = _task_id()
    logger.info(f"Starting {domain} sync task {task_id}")
    try:
        return asyncio.run(_run_domain(domain))
    except SyncError as e:
        logger.error(f"Error in {domain} sync task {task_id}: {e}")
        raise self.retry(exc=e, countdown=retry_countdown)
