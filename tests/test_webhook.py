import asyncio
import json
import pytest
from shopsync.core.exceptions import InvalidPayload, InvalidSignature, NetworkError
from shopsync.models.entities import Customer, InventoryItem
from shopsync.models.integration import SyncLog
from shopsync.services.orchestrator import SyncOrchestrator
from shopsync.services.pos_importer import CustomerImporter, InventoryImporter
from shopsync.services.syncers.customers import CustomerSyncer
from shopsync.services.syncers.inventory import InventorySyncer
from shopsync.services.webhook_ingestor import WebhookIngestor, compute_signature, verify_signature
from tests.conftest import TENANT, FakePos, ts

KEY = "webhook-secret"
URL = "https://shop.example.com/webhook"

def event_body(event_type, object_id, event_id="evt-1", **data):
    return json.dumps({
        "merchant_id": "M1",
        "type": event_type,
        "event_id": event_id,
        "data": {"id": object_id, **data},
    }).encode()

def signed(body):
    return compute_signature(body, KEY, URL)

@pytest.fixture
def ingestor(store, pos, conflicts, broadcaster):
    return WebhookIngestor(
        store=store,
        customer_importer=CustomerImporter(store, pos, conflicts, TENANT),
        inventory_importer=InventoryImporter(store, pos, conflicts, TENANT),
        signature_key=KEY,
        notification_url=URL,
        broadcaster=broadcaster
    )

def test_signature_verification():
    body = b'{"type": "customer.updated"}'
    signature = compute_signature(body, KEY, URL)

    assert verify_signature(body, signature, KEY, URL)
    assert not verify_signature(body + b" ", signature, KEY, URL)
    assert not verify_signature(body, signature, "other-key", URL)
    assert not verify_signature(body, None, KEY, URL)
    assert not verify_signature(body, signature, None, URL)

@pytest.mark.asyncio
async def test_invalid_signature_rejected_before_parsing(ingestor, pos):
    with pytest.raises(InvalidSignature):
        await ingestor.handle(b"not json at all", "bogus")
    assert pos.calls == []

@pytest.mark.asyncio
async def test_malformed_body_rejected(ingestor):
    body = b'{"type": "customer.updated"}'
    with pytest.raises(InvalidPayload):
        await ingestor.handle(body, signed(body))

@pytest.mark.asyncio
async def test_unknown_event_type_ignored(ingestor, pos):
    body = event_body("labor.shift.created", "X1")
    result = await ingestor.handle(body, signed(body))

    assert result.status == "ignored"
    assert pos.calls == []

@pytest.mark.asyncio
async def test_customer_event_resyncs_mapped_customer(store, pos, ingestor):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))
    await ingestor.importers["customers"].import_all()
    pos.add_customer("SQ1", given_name="Annabel", updated_at=ts(5))

    body = event_body("customer.updated", "SQ1")
    result = await ingestor.handle(body, signed(body))

    assert result.status == "processed"
    assert result.outcome == "updated"
    assert store.first(Customer, Customer.external_ref == "SQ1").first_name == "Annabel"

@pytest.mark.asyncio
async def test_unmapped_object_ignored_by_default(store, pos, ingestor):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))

    body = event_body("customer.created", "SQ1")
    result = await ingestor.handle(body, signed(body))

    assert result.status == "ignored"
    assert store.fetch(Customer) == []

@pytest.mark.asyncio
async def test_unmapped_object_imported_when_enabled(store, pos, ingestor):
    ingestor.import_new_objects = True
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))

    body = event_body("customer.created", "SQ1")
    result = await ingestor.handle(body, signed(body))

    assert result.outcome == "created"
    assert len(store.fetch(Customer)) == 1

@pytest.mark.asyncio
async def test_inventory_event_resolves_variation(store, pos, ingestor):
    pos.add_item("CAT1", "Screen", "SCR-1", quantity=3, updated_at=ts(1))
    await ingestor.importers["inventory"].import_all()
    pos.items["CAT1"].updated_at = ts(5)
    pos.counts["CAT1-V"] = 11

    body = event_body("inventory.count.updated", "CAT1-V")
    result = await ingestor.handle(body, signed(body))

    assert result.object_id == "CAT1"
    assert store.first(InventoryItem, InventoryItem.external_ref == "CAT1").quantity == 11

@pytest.mark.asyncio
async def test_catalog_deletion_event(store, pos, ingestor):
    pos.add_item("CAT1", "Screen", "SCR-1", updated_at=ts(1))
    await ingestor.importers["inventory"].import_all()

    body = event_body("catalog.item.deleted", "CAT1", deleted=True)
    result = await ingestor.handle(body, signed(body))

    assert result.outcome == "deleted"
    assert store.fetch(InventoryItem)[0].is_deleted

@pytest.mark.asyncio
async def test_duplicate_delivery_processed_once(pos, ingestor):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))
    ingestor.import_new_objects = True
    body = event_body("customer.created", "SQ1", event_id="evt-42")

    first = await ingestor.handle(body, signed(body))
    second = await ingestor.handle(body, signed(body))

    assert first.status == "processed"
    assert second.status == "duplicate"
    assert pos.calls.count("get_customer") == 1

@pytest.mark.asyncio
async def test_webhook_concurrent_with_download_converges(store, cloud, pos, context, ingestor):
    """Вебхук во время плановой загрузки не создаёт дублей"""
    pos.add_item("CAT1", "Screen", "SCR-1", quantity=3, updated_at=ts(1))
    await ingestor.importers["inventory"].import_all()
    item = store.fetch(InventoryItem)[0]
    cloud.put(
        "inventory_items",
        id=item.local_id,
        name="Screen",
        sku="SCR-1",
        quantity=3,
        square_object_id="CAT1",
        updated_at=ts(1)
    )
    pos.items["CAT1"].updated_at = ts(5)
    pos.counts["CAT1-V"] = 8

    body = event_body("inventory.count.updated", "CAT1-V")
    await asyncio.gather(
        InventorySyncer(context).download(),
        ingestor.handle(body, signed(body))
    )

    items = store.fetch(InventoryItem)
    assert len(items) == 1
    assert items[0].quantity == 8

@pytest.mark.asyncio
async def test_processed_event_writes_sync_log(store, pos, ingestor):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))
    ingestor.import_new_objects = True
    body = event_body("customer.created", "SQ1")

    await ingestor.handle(body, signed(body))

    log = store.first(SyncLog, SyncLog.trigger == "webhook")
    assert log.domain == "customers"
    assert log.status == "completed"
    assert log.created_items == 1

class PagedPos(FakePos):
    """Список клиентов отдаётся двумя страницами с паузой между ними"""

    def __init__(self):
        super().__init__()
        self.first_page_done = asyncio.Event()
        self.next_page = asyncio.Event()

    async def iter_customers(self):
        self._call("iter_customers")
        customers = list(self.customers.values())
        yield customers[0]
        self.first_page_done.set()
        await self.next_page.wait()
        for customer in customers[1:]:
            yield customer

@pytest.mark.asyncio
async def test_failed_webhook_during_import_keeps_imported_records(store, conflicts, broadcaster, context):
    pos = PagedPos()
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(1))
    pos.add_customer("SQ2", given_name="Bob", updated_at=ts(1))
    customer_importer = CustomerImporter(store, pos, conflicts, TENANT)
    orchestrator = SyncOrchestrator(
        store,
        {"customers": CustomerSyncer(context)},
        {"customers": customer_importer},
        broadcaster
    )
    ingestor = WebhookIngestor(
        store=store,
        customer_importer=customer_importer,
        inventory_importer=InventoryImporter(store, pos, conflicts, TENANT),
        signature_key=KEY,
        notification_url=URL,
        import_new_objects=True,
        store_lock=orchestrator.store_lock
    )

    import_job = asyncio.create_task(orchestrator.run_pos_import())
    await pos.first_page_done.wait()

    pos.fail_with = NetworkError("POS unreachable")
    body = event_body("customer.created", "SQ9")
    webhook_job = asyncio.create_task(ingestor.handle(body, signed(body)))
    for _ in range(3):
        await asyncio.sleep(0)
    assert not webhook_job.done()

    pos.next_page.set()
    results = await import_job
    with pytest.raises(NetworkError):
        await webhook_job

    assert results["customers"]["created"] == 2
    assert {c.external_ref for c in store.fetch(Customer)} == {"SQ1", "SQ2"}
    assert store.get_mapping("SQ1") is not None
    assert store.first(SyncLog, SyncLog.trigger == "webhook").status == "failed"
