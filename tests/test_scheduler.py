import asyncio
from unittest.mock import AsyncMock, Mock
import pytest
from shopsync.services.scheduler import NetworkMonitor, SyncScheduler

def make_orchestrator(is_syncing=False):
    orchestrator = Mock()
    orchestrator.is_syncing = is_syncing
    orchestrator.perform_full_sync = AsyncMock(return_value={"errors": {}})
    orchestrator.run_pos_import = AsyncMock(return_value={})
    return orchestrator

@pytest.mark.asyncio
async def test_tick_skipped_when_offline():
    """Без сети такт не делает ни одного вызова"""
    probe = AsyncMock(return_value=False)
    monitor = NetworkMonitor(probe)
    orchestrator = make_orchestrator()
    scheduler = SyncScheduler(orchestrator, monitor)

    ran = await scheduler.tick()

    assert ran is False
    assert scheduler.skipped_ticks == 1
    orchestrator.perform_full_sync.assert_not_called()
    probe.assert_not_called()

@pytest.mark.asyncio
async def test_tick_runs_when_online():
    monitor = NetworkMonitor(AsyncMock(return_value=True))
    monitor.set_reachable(True)
    orchestrator = make_orchestrator()

    ran = await SyncScheduler(orchestrator, monitor).tick()

    assert ran is True
    orchestrator.perform_full_sync.assert_awaited_once()

@pytest.mark.asyncio
async def test_tick_noop_while_cycle_running():
    monitor = NetworkMonitor(AsyncMock(return_value=True))
    monitor.set_reachable(True)
    orchestrator = make_orchestrator(is_syncing=True)

    ran = await SyncScheduler(orchestrator, monitor).tick()

    assert ran is False
    orchestrator.perform_full_sync.assert_not_called()

@pytest.mark.asyncio
async def test_monitor_check_treats_failed_health_check_as_offline():
    monitor = NetworkMonitor(AsyncMock(side_effect=OSError("no route")))
    monitor.set_reachable(True)

    assert await monitor.check() is False
    assert monitor.is_reachable is False
    assert monitor.last_checked_at is not None

@pytest.mark.asyncio
async def test_scheduler_runs_periodically_and_stops():
    monitor = NetworkMonitor(AsyncMock(return_value=True))
    monitor.set_reachable(True)
    orchestrator = make_orchestrator()
    scheduler = SyncScheduler(orchestrator, monitor, sync_interval_seconds=0.01)

    scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    calls = orchestrator.perform_full_sync.await_count
    assert calls >= 2
    assert not scheduler.is_running

    await asyncio.sleep(0.03)
    assert orchestrator.perform_full_sync.await_count == calls

@pytest.mark.asyncio
async def test_pos_job_only_when_interval_set():
    monitor = NetworkMonitor(AsyncMock(return_value=True))
    scheduler = SyncScheduler(make_orchestrator(), monitor, sync_interval_seconds=10, pos_interval_seconds=0)

    scheduler.start()
    assert set(scheduler.jobs) == {"cloud"}
    await scheduler.stop()

@pytest.mark.asyncio
async def test_monitor_loop_updates_flag():
    probe = AsyncMock(return_value=True)
    monitor = NetworkMonitor(probe, interval_seconds=0.01)

    monitor.start()
    await asyncio.sleep(0.03)
    await monitor.stop()

    assert monitor.is_reachable is True
    assert probe.await_count >= 1
