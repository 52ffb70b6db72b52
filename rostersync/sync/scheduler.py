"""Decides when sync cycles run.

Cycles are started by three triggers: a debounced reconnect, a periodic poll
while the outbox is non-empty, and an explicit manual request. At most one
cycle is in flight at a time; a trigger that arrives during a cycle is dropped.
"""

import asyncio
import logging
from typing import Any

from ..store import LocalStore
from .change_log import ChangeLog
from .orchestrator import CycleResult, SyncOrchestrator, SyncStatus
from .remote import RemoteClient

logger = logging.getLogger(__name__)


class ConnectivityScheduler:
    """Single-flight trigger for sync cycles."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        store: LocalStore,
        change_log: ChangeLog,
        debounce_seconds: float = 0.5,
        poll_interval_seconds: float = 30,
        max_backoff_seconds: float = 3600,
        online: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            orchestrator: Runs the actual cycles.
            store: Local store holding the persisted sync state.
            change_log: Outbox, consulted by the periodic poll.
            debounce_seconds: Delay between reconnect and the triggered cycle.
            poll_interval_seconds: Seconds between periodic polls.
            max_backoff_seconds: Upper bound for the poll interval when
                cycles keep failing.
            online: Initial connectivity.
        """
        self._orchestrator = orchestrator
        self._store = store
        self._log = change_log
        self._debounce = debounce_seconds
        self._poll_interval = poll_interval_seconds
        self._max_backoff = max_backoff_seconds

        self._online = online
        self._in_flight = False
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._pending: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._consecutive_failures = 0

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def debounce_pending(self) -> bool:
        return self._debounce_handle is not None

    # ==================== Connectivity ====================

    def set_online(self, online: bool) -> None:
        """Feed a connectivity change into the scheduler.

        Going online (re)arms the debounce timer; going offline cancels it.
        An in-flight cycle is never aborted.
        """
        was_online = self._online
        self._online = online
        self._store.update_sync_state(is_online=online)
        self._cancel_debounce()

        if not online:
            if was_online:
                logger.info("Connection lost, sync suspended")
            return

        if not was_online:
            logger.info(f"Connection restored, syncing in {self._debounce}s")
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self._debounce, self._fire_debounced)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _fire_debounced(self) -> None:
        self._debounce_handle = None
        task = asyncio.create_task(self.trigger("reconnect"))
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error(f"Triggered sync failed: {exc}", exc_info=exc)

    # ==================== Triggers ====================

    async def trigger(self, reason: str) -> CycleResult | None:
        """Run a cycle unless one is already running or we are offline.

        Args:
            reason: Short label for the log ("reconnect", "poll", "manual").

        Returns:
            The cycle result, or None if the trigger was dropped.
        """
        if not self._online:
            logger.debug(f"Sync trigger '{reason}' ignored while offline")
            return None
        if self._in_flight:
            logger.debug(f"Sync trigger '{reason}' dropped, cycle already running")
            return None

        self._in_flight = True
        logger.info(f"Starting sync cycle ({reason})")
        try:
            result = await self._orchestrator.run_cycle()
        finally:
            self._in_flight = False

        if result.status is SyncStatus.SUCCESS:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
        return result

    async def manual_sync(self) -> CycleResult | None:
        """Run a cycle on explicit user request."""
        return await self.trigger("manual")

    # ==================== Periodic Poll ====================

    def next_poll_delay(self) -> float:
        """Poll interval, doubled for every consecutive failure."""
        if self._consecutive_failures == 0:
            return self._poll_interval
        return min(
            self._poll_interval * (2 ** self._consecutive_failures),
            self._max_backoff,
        )

    async def start(self) -> None:
        """Start the periodic poll as a background task."""
        if self._poll_task is not None:
            return

        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(self._stop_event))
        logger.info(f"Sync poll started ({self._poll_interval}s interval)")

    async def stop(self) -> None:
        """Stop polling and cancel any pending debounced trigger."""
        self._cancel_debounce()

        if self._stop_event is not None:
            self._stop_event.set()
        if self._poll_task is not None:
            try:
                await self._poll_task
            finally:
                self._poll_task = None
                self._stop_event = None

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        logger.info("Sync poll stopped")

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            wait_time = self.next_poll_delay()
            if self._consecutive_failures:
                logger.debug(f"Backing off sync for {wait_time}s")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                break
            except asyncio.TimeoutError:
                pass

            if not self._online:
                continue

            try:
                if self._log.count_unsynced() > 0:
                    await self.trigger("poll")
            except Exception as e:
                logger.error(f"Sync poll error: {e}")
                self._consecutive_failures += 1

    # ==================== Status ====================

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with connectivity, progress and outbox counters.
        """
        state = self._store.get_sync_state()
        return {
            "is_online": self._online,
            "is_syncing": self._in_flight or state.is_syncing,
            "last_sync_timestamp": state.last_sync_timestamp,
            "unsynced_changes": self._log.count_unsynced(),
            "consecutive_failures": self._consecutive_failures,
        }


class ConnectivityMonitor:
    """Polls the remote health endpoint and reports transitions."""

    def __init__(
        self,
        remote: RemoteClient,
        scheduler: ConnectivityScheduler,
        interval_seconds: float = 10,
    ):
        self._remote = remote
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    async def check(self) -> bool:
        """Probe the remote once and forward any change to the scheduler."""
        online = await self._remote.check_connection()
        if online != self._scheduler.is_online:
            self._scheduler.set_online(online)
        return online

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connectivity monitor started ({self._interval}s interval)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connectivity monitor stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Connectivity check failed: {e}", exc_info=True)

            await asyncio.sleep(self._interval)
