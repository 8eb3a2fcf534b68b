import pytest
from shopsync.core.time_utils import as_utc
from shopsync.models.entities import Customer, InventoryItem
from shopsync.models.integration import PosMapping
from shopsync.models.mixins import SyncStatus
from shopsync.services.pos_importer import CustomerImporter, InventoryImporter
from tests.conftest import TENANT, ts

@pytest.fixture
def customer_importer(store, pos, conflicts):
    return CustomerImporter(store, pos, conflicts, TENANT)

@pytest.fixture
def inventory_importer(store, pos, conflicts):
    return InventoryImporter(store, pos, conflicts, TENANT)

@pytest.mark.asyncio
async def test_import_customers_creates_pending_records(store, pos, customer_importer):
    pos.add_customer("SQ1", given_name="Ann", family_name="Lee", email_address="ann@example.com", updated_at=ts(3))

    counters = await customer_importer.import_all()

    assert counters.created == 1
    customer = store.first(Customer, Customer.external_ref == "SQ1")
    assert customer.first_name == "Ann"
    assert customer.tenant_id == TENANT
    assert customer.sync_status == SyncStatus.PENDING.value
    assert as_utc(customer.updated_at) == ts(3)
    assert store.get_mapping("SQ1").local_id == customer.local_id

@pytest.mark.asyncio
async def test_reimport_without_changes_is_noop(store, pos, customer_importer):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(3))
    await customer_importer.import_all()
    customer = store.first(Customer, Customer.external_ref == "SQ1")
    customer.mark_synced()
    store.save()

    counters = await customer_importer.import_all()

    assert counters.unchanged == 1
    assert customer.sync_status == SyncStatus.SYNCED.value
    assert len(store.fetch(Customer)) == 1

@pytest.mark.asyncio
async def test_import_links_existing_customer_by_email(store, pos, customer_importer):
    existing = Customer(local_id="L1", first_name="Ann", email="ANN@example.com")
    existing.touch(ts(0))
    existing.mark_synced()
    store.add(existing)
    store.save()
    pos.add_customer("SQ1", given_name="Ann", email_address="ann@example.com", updated_at=ts(5))

    counters = await customer_importer.import_all()

    assert counters.updated == 1
    assert len(store.fetch(Customer)) == 1
    assert existing.external_ref == "SQ1"
    assert existing.sync_status == SyncStatus.PENDING.value

@pytest.mark.asyncio
async def test_newer_local_edit_survives_import(store, pos, customer_importer):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(3))
    await customer_importer.import_all()
    customer = store.first(Customer, Customer.external_ref == "SQ1")
    customer.first_name = "Annie"
    customer.touch(ts(10))
    store.save()

    await customer_importer.import_all()

    assert customer.first_name == "Annie"

@pytest.mark.asyncio
async def test_resync_deleted_customer_unlinks(store, pos, customer_importer):
    pos.add_customer("SQ1", given_name="Ann", updated_at=ts(3))
    await customer_importer.import_all()
    del pos.customers["SQ1"]

    outcome = await customer_importer.resync_object("SQ1")

    customer = store.fetch(Customer)[0]
    assert outcome == "unlinked"
    assert customer.external_ref is None
    assert customer.deleted_at is None
    assert store.get_mapping("SQ1") is None

@pytest.mark.asyncio
async def test_import_catalog_with_quantities(store, pos, inventory_importer):
    pos.add_item("CAT1", "Screen", "SCR-1", quantity=7, price=49.99)

    counters = await inventory_importer.import_all()

    item = store.first(InventoryItem, InventoryItem.external_ref == "CAT1")
    assert counters.created == 1
    assert item.quantity == 7
    assert item.price == 49.99
    mapping = store.get_mapping("CAT1")
    assert mapping.pos_variation_id == "CAT1-V"
    assert mapping.entity_type == "inventory"

@pytest.mark.asyncio
async def test_catalog_deletion_creates_local_tombstone(store, pos, inventory_importer):
    pos.add_item("CAT1", "Screen", "SCR-1", quantity=7)
    await inventory_importer.import_all()
    pos.items["CAT1"].is_deleted = True
    pos.items["CAT1"].updated_at = ts(9)

    counters = await inventory_importer.import_all()

    item = store.fetch(InventoryItem)[0]
    assert counters.deleted == 1
    assert item.deleted_at is not None
    assert item.sync_status == SyncStatus.PENDING.value
    assert store.first(PosMapping, PosMapping.pos_object_id == "CAT1") is None

@pytest.mark.asyncio
async def test_resync_missing_catalog_object(store, pos, inventory_importer):
    pos.add_item("CAT1", "Screen", "SCR-1")
    await inventory_importer.import_all()
    del pos.items["CAT1"]

    outcome = await inventory_importer.resync_object("CAT1")

    assert outcome == "deleted"
    assert store.fetch(InventoryItem)[0].is_deleted
