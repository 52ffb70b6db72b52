"""Tests for the connectivity scheduler and monitor."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rostersync.models import Employee, Operation
from rostersync.sync import ConnectivityMonitor, ConnectivityScheduler, CycleResult, SyncStatus


def ok_result() -> CycleResult:
    return CycleResult(status=SyncStatus.SUCCESS)


@pytest.fixture
def fake_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run_cycle = AsyncMock(return_value=ok_result())
    return orchestrator


@pytest.fixture
def scheduler(fake_orchestrator, store, change_log):
    return ConnectivityScheduler(
        fake_orchestrator,
        store,
        change_log,
        debounce_seconds=0.01,
        poll_interval_seconds=0.01,
        max_backoff_seconds=1,
    )


class TestTriggers:
    """Tests for single-flight triggering."""

    @pytest.mark.asyncio
    async def test_manual_sync_runs_cycle(self, scheduler, fake_orchestrator):
        result = await scheduler.manual_sync()

        assert result.status is SyncStatus.SUCCESS
        fake_orchestrator.run_cycle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trigger_dropped_while_in_flight(self, scheduler, fake_orchestrator):
        release = asyncio.Event()

        async def slow_cycle():
            await release.wait()
            return ok_result()

        fake_orchestrator.run_cycle = AsyncMock(side_effect=slow_cycle)

        first = asyncio.create_task(scheduler.trigger("manual"))
        await asyncio.sleep(0)
        assert scheduler.in_flight

        assert await scheduler.trigger("poll") is None

        release.set()
        result = await first
        assert result.status is SyncStatus.SUCCESS
        assert fake_orchestrator.run_cycle.await_count == 1
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_offline_suppresses_triggers(self, scheduler, fake_orchestrator, store):
        scheduler.set_online(False)

        assert await scheduler.manual_sync() is None
        fake_orchestrator.run_cycle.assert_not_awaited()
        assert store.get_sync_state().is_online is False

    @pytest.mark.asyncio
    async def test_going_offline_does_not_abort_running_cycle(self, scheduler, fake_orchestrator, store):
        release = asyncio.Event()

        async def slow_cycle():
            await release.wait()
            return ok_result()

        fake_orchestrator.run_cycle = AsyncMock(side_effect=slow_cycle)

        running = asyncio.create_task(scheduler.trigger("manual"))
        await asyncio.sleep(0)
        assert scheduler.in_flight

        scheduler.set_online(False)
        release.set()
        result = await running

        assert result.status is SyncStatus.SUCCESS
        assert not scheduler.in_flight
        assert store.get_sync_state().is_online is False
        assert await scheduler.trigger("poll") is None
        assert fake_orchestrator.run_cycle.await_count == 1

    @pytest.mark.asyncio
    async def test_in_flight_flag_cleared_on_error(self, scheduler, fake_orchestrator):
        fake_orchestrator.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await scheduler.manual_sync()

        assert not scheduler.in_flight


class TestReconnectDebounce:
    """Tests for the debounced reconnect trigger."""

    @pytest.mark.asyncio
    async def test_reconnect_triggers_one_cycle(self, scheduler, fake_orchestrator):
        scheduler.set_online(False)
        scheduler.set_online(True)
        scheduler.set_online(True)
        scheduler.set_online(True)

        await asyncio.sleep(0.05)

        assert fake_orchestrator.run_cycle.await_count == 1
        assert not scheduler.debounce_pending

    @pytest.mark.asyncio
    async def test_going_offline_cancels_pending_timer(self, scheduler, fake_orchestrator):
        scheduler.set_online(False)
        scheduler.set_online(True)
        assert scheduler.debounce_pending

        scheduler.set_online(False)
        await asyncio.sleep(0.05)

        assert not scheduler.debounce_pending
        fake_orchestrator.run_cycle.assert_not_awaited()


class TestPolling:
    """Tests for the periodic poll and backoff."""

    @pytest.mark.asyncio
    async def test_backoff_after_failures(self, fake_orchestrator, store, change_log):
        fake_orchestrator.run_cycle = AsyncMock(
            return_value=CycleResult(status=SyncStatus.FAILED, error="down")
        )
        scheduler = ConnectivityScheduler(
            fake_orchestrator, store, change_log,
            poll_interval_seconds=30, max_backoff_seconds=100,
        )
        assert scheduler.next_poll_delay() == 30

        await scheduler.manual_sync()
        assert scheduler.next_poll_delay() == 60

        await scheduler.manual_sync()
        await scheduler.manual_sync()
        assert scheduler.consecutive_failures == 3
        assert scheduler.next_poll_delay() == 100

        fake_orchestrator.run_cycle = AsyncMock(return_value=ok_result())
        await scheduler.manual_sync()
        assert scheduler.consecutive_failures == 0
        assert scheduler.next_poll_delay() == 30

    @pytest.mark.asyncio
    async def test_poll_runs_when_outbox_has_changes(self, scheduler, fake_orchestrator, change_log):
        change_log.append(Employee(employee_id=5), Operation.UPDATE)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert fake_orchestrator.run_cycle.await_count >= 1

    @pytest.mark.asyncio
    async def test_poll_skips_empty_outbox(self, scheduler, fake_orchestrator):
        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        fake_orchestrator.run_cycle.assert_not_awaited()

    def test_get_sync_status(self, scheduler, change_log, store):
        change_log.append(Employee(employee_id=5), Operation.UPDATE)
        store.update_sync_state(last_sync_timestamp=1234)

        status = scheduler.get_sync_status()

        assert status == {
            "is_online": True,
            "is_syncing": False,
            "last_sync_timestamp": 1234,
            "unsynced_changes": 1,
            "consecutive_failures": 0,
        }


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    @pytest.mark.asyncio
    async def test_reports_offline(self, scheduler):
        remote = MagicMock()
        remote.check_connection = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(remote, scheduler, interval_seconds=0.01)

        assert await monitor.check() is False
        assert scheduler.is_online is False

    @pytest.mark.asyncio
    async def test_reports_reconnect(self, scheduler, fake_orchestrator):
        scheduler.set_online(False)
        remote = MagicMock()
        remote.check_connection = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(remote, scheduler, interval_seconds=0.01)

        await monitor.check()
        await asyncio.sleep(0.05)

        assert scheduler.is_online is True
        assert fake_orchestrator.run_cycle.await_count == 1

    @pytest.mark.asyncio
    async def test_start_stop(self, scheduler):
        remote = MagicMock()
        remote.check_connection = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(remote, scheduler, interval_seconds=0.01)

        await monitor.start()
        await asyncio.sleep(0.03)
        await monitor.stop()

        assert remote.check_connection.await_count >= 1
