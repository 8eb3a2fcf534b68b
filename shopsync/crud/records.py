# shopsync/crud/records.py
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar
from sqlalchemy import func
from sqlalchemy.orm import Session
from shopsync.models.integration import PosMapping, SyncLog
from shopsync.core.time_utils import as_utc, utcnow
from shopsync.models.mixins import SyncStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

class SyncStore:
    """
    Обёртка над сессией локального хранилища.

    Все чтения и записи идут через один объект в одном контексте
    выполнения (цикл событий), сетевые вызовы сюда не попадают.
    """

    def __init__(self, session: Session):
        self.session = session

    def fetch(
        self,
        model: Type[T],
        filters: Optional[Sequence[Any]] = None,
        order_by: Optional[Any] = None,
        limit: Optional[int] = None
    ) -> List[T]:
        """Все записи model, удовлетворяющие filters"""
        query = self.session.query(model)
        for condition in filters or ():
            query = query.filter(condition)
        if order_by is not None:
            query = query.order_by(order_by)
        if limit:
            query = query.limit(limit)
        return query.all()

    def first(self, model: Type[T], *filters: Any) -> Optional[T]:
        query = self.session.query(model)
        for condition in filters:
            query = query.filter(condition)
        return query.first()

    def get(self, model: Type[T], local_id: str) -> Optional[T]:
        return self.session.get(model, local_id)

    def add(self, record: Any) -> None:
        self.session.add(record)

    def flush(self) -> None:
        self.session.flush()

    def delete(self, record: Any) -> None:
        self.session.delete(record)

    def save(self) -> None:
        """Фиксация единицы работы целиком или откат"""
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def unit_of_work(self):
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def close(self) -> None:
        self.session.close()

    # Выборки для синхронизации

    def pending(self, model: Type[T], now: Optional[datetime] = None) -> List[T]:
        """Ожидающие выгрузки записи, у которых истекла задержка повтора"""
        now = now or utcnow()
        records = self.fetch(
            model,
            [model.sync_status == SyncStatus.PENDING.value],
            order_by=model.updated_at
        )
        # Сравнение в Python: SQLite хранит даты без tzinfo
        return [r for r in records if r.next_attempt_at is None or as_utc(r.next_attempt_at) <= now]

    def count_by_status(self, model: Type[T]) -> Dict[str, int]:
        rows = (
            self.session.query(model.sync_status, func.count(model.local_id))
            .group_by(model.sync_status)
            .all()
        )
        return {status: count for status, count in rows}

    # Соответствия POS

    def get_mapping(self, pos_object_id: str) -> Optional[PosMapping]:
        return self.first(PosMapping, PosMapping.pos_object_id == pos_object_id)

    def upsert_mapping(
        self,
        pos_object_id: str,
        entity_type: str,
        local_id: str,
        pos_variation_id: Optional[str] = None
    ) -> PosMapping:
        mapping = self.get_mapping(pos_object_id)
        if mapping is None:
            mapping = PosMapping(
                pos_object_id=pos_object_id,
                entity_type=entity_type,
                local_id=local_id
            )
            self.session.add(mapping)
            logger.debug(f"Mapping created: {entity_type} {pos_object_id} -> {local_id}")
        mapping.local_id = local_id
        if pos_variation_id:
            mapping.pos_variation_id = pos_variation_id
        mapping.last_synced_at = utcnow()
        return mapping

    def remove_mapping(self, pos_object_id: str) -> None:
        mapping = self.get_mapping(pos_object_id)
        if mapping is not None:
            self.session.delete(mapping)

    # Журнал синхронизации

    def create_sync_log(self, domain: str, trigger: str) -> SyncLog:
        sync_log = SyncLog(domain=domain, trigger=trigger, status="running", started_at=utcnow())
        self.session.add(sync_log)
        self.save()
        return sync_log

    def finish_sync_log(
        self,
        sync_log: SyncLog,
        status: str,
        counters: Optional[Dict[str, int]] = None,
        error_message: Optional[str] = None
    ) -> SyncLog:
        counters = counters or {}
        sync_log.status = status
        sync_log.completed_at = utcnow()
        sync_log.uploaded_items = counters.get("uploaded", 0)
        sync_log.created_items = counters.get("created", 0)
        sync_log.updated_items = counters.get("updated", 0)
        sync_log.deleted_items = counters.get("deleted", 0)
        sync_log.failed_items = counters.get("failed", 0)
        sync_log.error_message = error_message
        sync_log.duration_seconds = (sync_log.completed_at - as_utc(sync_log.started_at)).total_seconds()
        self.save()
        return sync_log

    def recent_sync_logs(self, limit: int = 50, domain: Optional[str] = None) -> List[SyncLog]:
        filters = [SyncLog.domain == domain] if domain else []
        return self.fetch(SyncLog, filters, order_by=SyncLog.started_at.desc(), limit=limit)
