from sqlalchemy import Column, Integer, String, DateTime, Text, Float
import enum
import uuid
from shopsync.database import Base
from shopsync.core.time_utils import utcnow

class DomainState(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"

class SyncTrigger(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"

class PosMapping(Base):
    """Соответствие объекта POS локальной записи"""
    __tablename__ = "pos_mappings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pos_object_id = Column(String(100), unique=True, nullable=False, index=True)
    pos_variation_id = Column(String(100), nullable=True)
    entity_type = Column(String(50), nullable=False)  # "customers", "inventory"
    local_id = Column(String(36), nullable=False, index=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<PosMapping {self.entity_type} {self.pos_object_id} -> {self.local_id}>"

class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Детали синхронизации
    domain = Column(String(50), nullable=False, index=True)  # "customers", "inventory", ...
    trigger = Column(String(20), nullable=False, default=SyncTrigger.SCHEDULED.value)

    # Статус
    status = Column(String(20), nullable=False)  # "running", "completed", "failed"
    started_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Результаты
    uploaded_items = Column(Integer, default=0)
    created_items = Column(Integer, default=0)
    updated_items = Column(Integer, default=0)
    deleted_items = Column(Integer, default=0)
    failed_items = Column(Integer, default=0)

    # Ошибки
    error_message = Column(Text, nullable=True)

    # Длительность
    duration_seconds = Column(Float, nullable=True)

    def __repr__(self):
        return f"<SyncLog {self.domain} ({self.status})>"
