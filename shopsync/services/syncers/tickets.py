from shopsync.models.entities import Ticket
from shopsync.services.syncers.base import EntitySyncer

class TicketSyncer(EntitySyncer):
    model = Ticket
    table = "tickets"
    domain = "tickets"
    fields = (
        "customer_id", "ticket_number", "device_type", "device_model",
        "device_serial_number", "issue_description", "notes", "status", "priority",
        "estimated_cost", "actual_cost", "estimated_completion", "checked_in_at",
        "started_at", "completed_at", "picked_up_at",
    )
    datetime_fields = (
        "estimated_completion", "checked_in_at", "started_at", "completed_at", "picked_up_at",
    )
    order_by = "ticket_number.desc"
