from shopsync.models.entities import Payment
from shopsync.services.syncers.base import EntitySyncer

class PaymentSyncer(EntitySyncer):
    # customer_id ссылается на локальный Customer и может временно висеть
    model = Payment
    table = "payments"
    domain = "payments"
    fields = (
        "customer_id", "invoice_id", "payment_number", "amount", "payment_method",
        "payment_date", "reference_number", "receipt_generated", "notes",
    )
    datetime_fields = ("payment_date",)
    order_by = "payment_date.desc"
