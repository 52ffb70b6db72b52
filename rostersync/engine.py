"""Wires the sync components together from a Config."""

import logging
from dataclasses import dataclass

import httpx

from .config import Config
from .editor import EmployeeEditor
from .store import LocalStore
from .sync import (
    ChangeLog,
    ConnectivityMonitor,
    ConnectivityScheduler,
    IdentityReconciler,
    RemoteClient,
    ReplicaManager,
    SyncOrchestrator,
)

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """All long-lived components of one client."""

    config: Config
    store: LocalStore
    change_log: ChangeLog
    editor: EmployeeEditor
    replica: ReplicaManager
    remote: RemoteClient
    orchestrator: SyncOrchestrator
    scheduler: ConnectivityScheduler
    monitor: ConnectivityMonitor

    async def close(self) -> None:
        """Stop background tasks and release resources."""
        await self.monitor.stop()
        await self.scheduler.stop()
        await self.remote.close()
        self.store.close()


def load_replica(store: LocalStore) -> ReplicaManager:
    """Restore the replica saved by the last projection, or start empty."""
    data = store.load_replica()
    if data is None:
        logger.info("No saved replica, starting with an empty document")
        return ReplicaManager()

    replica = ReplicaManager.deserialize(data)
    logger.info(f"Loaded replica with {len(replica.keys())} entries")
    return replica


def open_engine(
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
    db_path: str | None = None,
) -> Engine:
    """Build an Engine.

    Must be called with a running event loop only if the scheduler is
    started; construction itself is synchronous.

    Args:
        config: Loaded configuration.
        transport: Optional httpx transport for the remote client.
        db_path: Overrides ``config.store.db_path`` (e.g. ":memory:").

    Returns:
        A ready-to-use Engine.
    """
    store = LocalStore(db_path or config.store.db_path)
    store.connect()

    change_log = ChangeLog(store)
    replica = load_replica(store)
    remote = RemoteClient(
        base_url=config.remote.api_base,
        timeout=config.remote.timeout_seconds,
        transport=transport,
    )
    reconciler = IdentityReconciler(remote, store)
    orchestrator = SyncOrchestrator(store, change_log, replica, remote, reconciler)
    scheduler = ConnectivityScheduler(
        orchestrator,
        store,
        change_log,
        debounce_seconds=config.sync.debounce_seconds,
        poll_interval_seconds=config.sync.poll_interval_seconds,
        max_backoff_seconds=config.sync.max_backoff_seconds,
    )
    monitor = ConnectivityMonitor(
        remote,
        scheduler,
        interval_seconds=config.sync.health_check_interval_seconds,
    )

    return Engine(
        config=config,
        store=store,
        change_log=change_log,
        editor=EmployeeEditor(store, change_log),
        replica=replica,
        remote=remote,
        orchestrator=orchestrator,
        scheduler=scheduler,
        monitor=monitor,
    )
