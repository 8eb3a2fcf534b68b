"""
Сопоставление входящей внешней записи с локальной.

Порядок поиска (первое совпадение побеждает):
local_id -> external_ref -> вторичный ключ сущности (email/телефон для
клиентов, SKU для товаров). При совпадении по вторичному ключу
external_ref дописывается в локальную запись, чтобы следующий поиск шёл
по основному пути.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type
from sqlalchemy import func, or_
from shopsync.crud.records import SyncStore
from shopsync.models.entities import Customer, InventoryItem

logger = logging.getLogger(__name__)

# Вторичные ключи: имя поля -> сравнивать без учёта регистра
SECONDARY_KEYS: Dict[Type, Tuple[Tuple[str, bool], ...]] = {
    Customer: (("email", True), ("phone", False)),
    InventoryItem: (("sku", False),),
}

@dataclass
class RemoteIdentity:
    """Идентифицирующие поля внешней записи"""
    local_id: Optional[str] = None
    external_ref: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    sku: Optional[str] = None

@dataclass
class Resolution:
    existing: Optional[Any] = None
    matched_by: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return self.existing is None

class IdentityResolver:
    def __init__(self, store: SyncStore):
        self.store = store

    def resolve(self, model: Type, remote: RemoteIdentity) -> Resolution:
        if remote.local_id:
            record = self.store.get(model, remote.local_id)
            if record is not None:
                self._backfill(record, remote.external_ref)
                return Resolution(record, "local_id")

        if remote.external_ref:
            record = self.store.first(model, model.external_ref == remote.external_ref)
            if record is not None:
                return Resolution(record, "external_ref")

        for field_name, case_insensitive in SECONDARY_KEYS.get(model, ()):
            value = getattr(remote, field_name, None)
            if not value:
                continue
            record = self._find_by_secondary_key(model, field_name, value, case_insensitive, remote.external_ref)
            if record is not None:
                logger.info(
                    f"Matched {model.__tablename__} {record.local_id} by {field_name}, "
                    f"linking external ref {remote.external_ref}"
                )
                self._backfill(record, remote.external_ref)
                return Resolution(record, field_name)

        return Resolution()

    def _find_by_secondary_key(
        self,
        model: Type,
        field_name: str,
        value: str,
        case_insensitive: bool,
        external_ref: Optional[str]
    ) -> Optional[Any]:
        column = getattr(model, field_name)
        if case_insensitive:
            condition = func.lower(column) == value.strip().lower()
        else:
            condition = column == value.strip()

        # Запись, уже связанная с другим объектом POS, не подходит
        link_condition = model.external_ref.is_(None)
        if external_ref:
            link_condition = or_(link_condition, model.external_ref == external_ref)

        return self.store.first(model, condition, link_condition, model.deleted_at.is_(None))

    def _backfill(self, record: Any, external_ref: Optional[str]):
        if external_ref and not record.external_ref:
            record.external_ref = external_ref
