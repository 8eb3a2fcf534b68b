from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Float
from shopsync.database import Base
from shopsync.models.mixins import SyncableMixin

class Customer(SyncableMixin, Base):
    __tablename__ = "customers"

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), index=True, nullable=True)
    phone = Column(String(50), index=True, nullable=True)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Customer {self.first_name} {self.last_name} ({self.local_id})>"

class InventoryItem(SyncableMixin, Base):
    __tablename__ = "inventory_items"

    sku = Column(String(100), index=True, nullable=True)
    part_number = Column(String(100), nullable=True)
    name = Column(String(200), nullable=False, default="")
    category = Column(String(100), index=True, nullable=True)
    cost = Column(Float, default=0.0)
    price = Column(Float, default=0.0)
    quantity = Column(Integer, default=0)
    min_quantity = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    @property
    def is_low_stock(self) -> bool:
        return bool(self.is_active) and (self.quantity or 0) <= (self.min_quantity or 0)

    def __repr__(self):
        return f"<InventoryItem {self.name} (SKU: {self.sku})>"

class Payment(SyncableMixin, Base):
    __tablename__ = "payments"

    # Ссылки на локальные записи; могут временно висеть
    customer_id = Column(String(36), index=True, nullable=True)
    invoice_id = Column(String(36), nullable=True)

    payment_number = Column(String(50), nullable=True)
    amount = Column(Float, nullable=False, default=0.0)
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    reference_number = Column(String(100), nullable=True)
    receipt_generated = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Payment {self.payment_number} {self.amount}>"

class Employee(SyncableMixin, Base):
    __tablename__ = "employees"

    employee_number = Column(String(50), nullable=True)
    email = Column(String(255), nullable=False, default="")
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(50), default="technician")
    is_active = Column(Boolean, default=True)
    hourly_rate = Column(Float, default=0.0)
    hire_date = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Employee {self.email} ({self.role})>"

class Ticket(SyncableMixin, Base):
    __tablename__ = "tickets"

    customer_id = Column(String(36), index=True, nullable=True)
    ticket_number = Column(Integer, default=0)

    # Устройство
    device_type = Column(String(100), nullable=True)
    device_model = Column(String(100), nullable=True)
    device_serial_number = Column(String(100), nullable=True)
    issue_description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Состояние ремонта
    status = Column(String(30), default="waiting")
    priority = Column(String(20), default="normal")
    estimated_cost = Column(Float, default=0.0)
    actual_cost = Column(Float, default=0.0)

    # Даты этапов
    estimated_completion = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Ticket #{self.ticket_number} ({self.status})>"
