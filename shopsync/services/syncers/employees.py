from shopsync.models.entities import Employee
from shopsync.services.syncers.base import EntitySyncer

class EmployeeSyncer(EntitySyncer):
    model = Employee
    table = "employees"
    domain = "employees"
    fields = (
        "employee_number", "email", "first_name", "last_name", "phone",
        "role", "is_active", "hourly_rate", "hire_date",
    )
    datetime_fields = ("hire_date",)
    order_by = "last_name.asc"
