"""
Контракт синхронизируемой записи.

Каждая сущность, участвующая в синхронизации, наследует SyncableMixin.
local_id - единственный ключ, стабильный во всех трёх хранилищах
(локальное, облако, POS). external_ref - идентификатор объекта в POS,
может отсутствовать или указывать на удалённый в POS объект.
"""
import enum
import uuid
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import Column, Integer, String, DateTime, Text
from shopsync.core.time_utils import utcnow


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


def new_local_id() -> str:
    return str(uuid.uuid4())


class SyncableMixin:
    local_id = Column(String(36), primary_key=True, default=new_local_id)
    external_ref = Column(String(100), index=True, nullable=True)  # ID объекта в POS
    tenant_id = Column(String(36), index=True, nullable=True)      # ID магазина

    # Метки времени
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Состояние синхронизации
    sync_status = Column(String(20), default=SyncStatus.PENDING.value, index=True)
    sync_attempts = Column(Integer, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_error = Column(Text, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def touch(self, now: Optional[datetime] = None):
        """Любая локальная правка: pending + свежий updated_at"""
        self.updated_at = now or utcnow()
        self.mark_pending()

    def mark_pending(self):
        self.sync_status = SyncStatus.PENDING.value
        self.sync_attempts = 0
        self.next_attempt_at = None
        self.last_sync_error = None

    def mark_synced(self):
        self.sync_status = SyncStatus.SYNCED.value
        self.sync_attempts = 0
        self.next_attempt_at = None
        self.last_sync_error = None

    def mark_retry(self, error: str, base_seconds: int, max_seconds: int, max_attempts: int):
        """Неудачная попытка выгрузки: экспоненциальная задержка или терминальный error"""
        self.sync_attempts = (self.sync_attempts or 0) + 1
        self.last_sync_error = error
        if self.sync_attempts >= max_attempts:
            self.sync_status = SyncStatus.ERROR.value
            self.next_attempt_at = None
            return
        delay = min(base_seconds * 2 ** (self.sync_attempts - 1), max_seconds)
        self.next_attempt_at = utcnow() + timedelta(seconds=delay)

    def mark_error(self, error: str):
        self.sync_attempts = (self.sync_attempts or 0) + 1
        self.sync_status = SyncStatus.ERROR.value
        self.next_attempt_at = None
        self.last_sync_error = error
