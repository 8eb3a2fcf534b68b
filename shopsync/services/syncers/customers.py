from typing import Any, Dict
from shopsync.models.entities import Customer
from shopsync.services.identity import RemoteIdentity
from shopsync.services.syncers.base import EntitySyncer

class CustomerSyncer(EntitySyncer):
    """Клиенты: вторичный ключ - email (без учёта регистра) или телефон"""
    model = Customer
    table = "customers"
    domain = "customers"
    fields = ("first_name", "last_name", "email", "phone", "address", "notes")
    external_ref_column = "square_customer_id"
    order_by = "last_name.asc"

    def remote_identity(self, row: Dict[str, Any]) -> RemoteIdentity:
        return RemoteIdentity(
            local_id=row.get("id"),
            external_ref=row.get(self.external_ref_column),
            email=row.get("email"),
            phone=row.get("phone")
        )
