import pytest
from shopsync.core.exceptions import NotAuthenticated
from shopsync.models.entities import InventoryItem
from shopsync.models.mixins import SyncStatus
from shopsync.services.batch_uploader import BatchUploader, chunked
from shopsync.services.syncers.inventory import InventorySyncer
from tests.conftest import network_error, server_error, ts

def make_items(store, count):
    items = []
    for index in range(count):
        item = InventoryItem(local_id=f"I{index:03d}", name=f"Item {index}", sku=f"SKU-{index}")
        item.touch(ts(index))
        store.add(item)
        items.append(item)
    store.save()
    return items

def test_chunked_sizes():
    assert [len(c) for c in chunked(list(range(250)), 100)] == [100, 100, 50]

def test_chunk_size_must_be_positive(cloud):
    with pytest.raises(ValueError):
        BatchUploader(cloud, chunk_size=0)

@pytest.mark.asyncio
async def test_partial_failure_keeps_other_chunks(cloud):
    rows = [{"id": f"R{i}", "shop_id": "shop-1"} for i in range(250)]
    cloud.upsert_failures = [None, server_error(), None]

    result = await BatchUploader(cloud, 100).upload("inventory_items", rows)

    assert result.chunks_total == 3
    assert result.chunks_failed == 1
    assert not result.is_complete
    assert len(result.committed_ids) == 150
    assert result.failed_ids == [f"R{i}" for i in range(100, 200)]
    assert len(cloud.tables["inventory_items"]) == 150

@pytest.mark.asyncio
async def test_not_authenticated_propagates(cloud):
    cloud.upsert_failures = [NotAuthenticated()]

    with pytest.raises(NotAuthenticated):
        await BatchUploader(cloud).upload("customers", [{"id": "C1"}])

@pytest.mark.asyncio
async def test_bulk_upload_marks_only_committed_records(store, cloud, context):
    items = make_items(store, 250)
    cloud.upsert_failures = [None, network_error(), None]

    result = await InventorySyncer(context).bulk_upload(items)

    synced = [i for i in items if i.sync_status == SyncStatus.SYNCED.value]
    pending = [i for i in items if i.sync_status == SyncStatus.PENDING.value]
    assert len(synced) == 150
    assert len(pending) == 100
    assert all(i.last_sync_error for i in pending)
    assert {i.local_id for i in pending} == set(result.failed_ids)
    assert len(cloud.upsert_calls) == 3

@pytest.mark.asyncio
async def test_bulk_upload_then_retry_completes(store, cloud, context):
    items = make_items(store, 120)
    cloud.upsert_failures = [server_error()]
    syncer = InventorySyncer(context)

    await syncer.bulk_upload(items)
    await syncer.bulk_upload(store.pending(InventoryItem))

    assert all(i.sync_status == SyncStatus.SYNCED.value for i in items)
    assert len(cloud.tables["inventory_items"]) == 120
