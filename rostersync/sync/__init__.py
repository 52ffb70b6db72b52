"""Offline-first sync for the employee roster.

Local edits are queued in an outbox, folded into a CRDT replica, reconciled
with the remote authority when connectivity returns, and projected back into
the local materialized table.
"""

from .change_log import ChangeLog
from .identity import IdentityReconciler, ReconcileResult
from .orchestrator import CycleResult, SyncOrchestrator, SyncPhase, SyncStatus
from .remote import (
    RemoteClient,
    RemoteError,
    RemoteRejectedError,
    RemoteUnavailableError,
)
from .replica import ReplicaManager
from .scheduler import ConnectivityMonitor, ConnectivityScheduler

__all__ = [
    "ChangeLog",
    "ConnectivityMonitor",
    "ConnectivityScheduler",
    "CycleResult",
    "IdentityReconciler",
    "ReconcileResult",
    "RemoteClient",
    "RemoteError",
    "RemoteRejectedError",
    "RemoteUnavailableError",
    "ReplicaManager",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncStatus",
]
