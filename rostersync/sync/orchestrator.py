"""Sync cycle state machine.

One cycle drains the outbox into the replica, promotes ephemeral records,
exchanges snapshots with the remote, and projects the merged replica back into
the materialized store::

    IDLE -> DRAINING -> RECONCILING -> EXCHANGING -> PROJECTING -> IDLE
                  \\            \\              \\             \\
                   +------------+--------------+-------------+--> FAILED -> IDLE

A remote failure aborts the cycle before anything is marked synced, so a
cycle can always be re-run.
"""

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from ..models import ChangeEntry, EphemeralKey, Operation, now_ms
from ..store import LocalStore, LocalStoreError
from .change_log import ChangeLog
from .identity import IdentityReconciler
from .remote import DocumentEndpoint, RemoteError
from .replica import ReplicaManager

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    """Phase of the sync state machine."""

    IDLE = "idle"
    DRAINING = "draining"
    RECONCILING = "reconciling"
    EXCHANGING = "exchanging"
    PROJECTING = "projecting"
    FAILED = "failed"


class SyncStatus(Enum):
    """Status of a sync cycle."""

    SUCCESS = "success"
    FAILED = "failed"
    OFFLINE = "offline"  # Not attempted, no connectivity
    SKIPPED = "skipped"  # Not attempted, another cycle in flight


@dataclass
class CycleResult:
    """Result of a sync cycle."""

    status: SyncStatus
    changed: bool = False
    entries_applied: int = 0
    entries_cancelled: int = 0
    records_promoted: int = 0
    promotion_failures: int = 0
    entries_pruned: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.SUCCESS


@dataclass
class DrainResult:
    """Entries taken from the outbox in one cycle."""

    batch: list[int] = field(default_factory=list)  # in-flight entry IDs
    cancelled: list[int] = field(default_factory=list)
    applied: int = 0
    created_keys: dict[str, list[int]] = field(default_factory=dict)  # key -> entry IDs
    discarded: list[str] = field(default_factory=list)  # ephemeral keys dropped from the replica


def _is_temporary(entry: ChangeEntry) -> bool:
    return entry.employee.employee_id < 0


class SyncOrchestrator:
    """Runs sync cycles over an injected replica and local store."""

    def __init__(
        self,
        store: LocalStore,
        change_log: ChangeLog,
        replica: ReplicaManager,
        endpoint: DocumentEndpoint,
        reconciler: IdentityReconciler,
    ):
        """Initialize the orchestrator.

        Args:
            store: Local store holding the materialized table and sync state.
            change_log: Outbox of local mutations.
            replica: The replica this orchestrator exclusively mutates.
            endpoint: Remote document endpoint.
            reconciler: Promotes ephemeral keys to stable keys.
        """
        self._store = store
        self._log = change_log
        self._replica = replica
        self._endpoint = endpoint
        self._reconciler = reconciler
        self._phase = SyncPhase.IDLE

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def replica(self) -> ReplicaManager:
        return self._replica

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug(f"Sync phase {self._phase.value} -> {phase.value}")
        self._phase = phase

    async def run_cycle(self) -> CycleResult:
        """Run one full sync cycle.

        Returns:
            CycleResult describing the outcome. Remote failures are reported
            as ``SyncStatus.FAILED``.

        Raises:
            LocalStoreError: If the local database fails mid-cycle.
        """
        try:
            self._store.update_sync_state(is_syncing=True)
            result = await self._run_phases()
        except RemoteError as e:
            self._enter(SyncPhase.FAILED)
            logger.warning(f"Sync cycle aborted: {e}")
            result = CycleResult(status=SyncStatus.FAILED, error=str(e), timestamp=datetime.now())
        except sqlite3.Error as e:
            self._enter(SyncPhase.FAILED)
            logger.error(f"Local storage failure during sync: {e}")
            raise LocalStoreError(str(e)) from e
        finally:
            self._enter(SyncPhase.IDLE)
            try:
                self._store.update_sync_state(is_syncing=False)
            except sqlite3.Error as e:
                logger.error(f"Failed to clear syncing flag: {e}")

        return result

    async def _run_phases(self) -> CycleResult:
        self._enter(SyncPhase.DRAINING)
        drained = self._drain()

        self._enter(SyncPhase.RECONCILING)
        reconciled = await self._reconciler.reconcile(self._replica)

        self._enter(SyncPhase.EXCHANGING)
        remote_snapshot = await self._endpoint.fetch_document()
        merged_changed = self._replica.merge_foreign(remote_snapshot)

        if drained.batch or drained.discarded or reconciled.promoted:
            await self._endpoint.push_document(self._replica.serialize())
            logger.info(f"Pushed replica with {len(drained.batch)} local changes")

        self._enter(SyncPhase.PROJECTING)
        failed_keys = set(reconciled.failed)
        held_back = {
            entry_id
            for key in failed_keys
            for entry_id in drained.created_keys.get(key, [])
        }
        synced_ids = [entry_id for entry_id in drained.batch if entry_id not in held_back]

        changed = bool(
            merged_changed or drained.batch or drained.cancelled or reconciled.promoted
        )

        pruned: list[str] = []
        with self._store.transaction():
            self._log.mark_synced(synced_ids)
            if changed:
                projected = self._store.replace_employees(self._replica.projectable())
                logger.debug(f"Projected {projected} records into materialized store")
            pruned = self._replica.prune_transient(keep=failed_keys)
            if changed or pruned:
                self._store.save_replica(self._replica.serialize())
            self._store.update_sync_state(last_sync_timestamp=now_ms())

        result = CycleResult(
            status=SyncStatus.SUCCESS,
            changed=changed or bool(pruned),
            entries_applied=drained.applied,
            entries_cancelled=len(drained.cancelled),
            records_promoted=len(reconciled.promoted),
            promotion_failures=len(reconciled.failed),
            entries_pruned=len(pruned),
            timestamp=datetime.now(),
        )
        logger.info(
            f"Sync completed: applied={result.entries_applied}, "
            f"cancelled={result.entries_cancelled}, promoted={result.records_promoted}, "
            f"changed={result.changed}"
        )
        return result

    def _drain(self) -> DrainResult:
        """Fold unsynced outbox entries into the replica."""
        result = DrainResult()
        pending = self._log.list_unsynced()
        if not pending:
            return result

        logger.info(f"Draining {len(pending)} unsynced changes")

        # An offline create keeps the ephemeral key derived from the entry as
        # first written; later edits never change it.
        create_keys = {
            e.employee.employee_id: EphemeralKey.for_record(e.employee, e.timestamp)
            for e in pending
            if e.operation is Operation.CREATE and _is_temporary(e)
        }

        dropped_ids = {
            e.employee.employee_id
            for e in pending
            if e.operation is Operation.DELETE and _is_temporary(e)
        }
        for temp_id in sorted(dropped_ids):
            self._drop_temporary(temp_id, pending, create_keys.get(temp_id), result)
        if result.cancelled:
            self._log.discard(result.cancelled)
            logger.info(f"Cancelled {len(result.cancelled)} create/delete entries for temporary IDs")
        pending = [e for e in pending if e.employee.employee_id not in dropped_ids]

        # Edits made to a temporary record before it ever synced are folded
        # into its create so the remote sees a single new record.
        creates: dict[int, ChangeEntry] = {}
        folded: dict[int, list[int]] = {}
        batch: list[ChangeEntry] = []
        for entry in pending:
            temp_id = entry.employee.employee_id
            if entry.operation is Operation.CREATE and _is_temporary(entry):
                creates[temp_id] = entry
                folded[temp_id] = [entry.id]
                batch.append(entry)
            elif entry.operation is Operation.UPDATE and temp_id in creates:
                create = creates[temp_id]
                creates[temp_id] = replace(create, employee=entry.employee)
                folded[temp_id].append(entry.id)
            else:
                batch.append(entry)

        for entry in batch:
            key = None
            if entry.operation is Operation.CREATE and entry.employee.employee_id in creates:
                temp_id = entry.employee.employee_id
                entry = creates[temp_id]
                entry_ids = folded[temp_id]
                key = create_keys[temp_id]
            else:
                entry_ids = [entry.id]

            key = self._apply(entry, key)
            if isinstance(key, EphemeralKey):
                result.created_keys.setdefault(str(key), []).extend(entry_ids)
            result.batch.extend(entry_ids)
            result.applied += 1

        return result

    def _drop_temporary(
        self,
        temp_id: int,
        pending: list[ChangeEntry],
        create_key: EphemeralKey | None,
        result: DrainResult,
    ) -> None:
        """Settle a temporary record that was deleted before it synced.

        Normally the create and delete cancel out and the record's ephemeral
        entry, left behind by a failed promotion, is dropped from the replica.
        If an aborted cycle already promoted the create, the remote holds the
        record, so the delete is applied under its stable key instead.
        """
        entries = [e for e in pending if e.employee.employee_id == temp_id]
        entry_ids = [e.id for e in entries]

        stable = self._reconciler.resolve(create_key) if create_key is not None else None
        if stable is not None:
            delete = [e for e in entries if e.operation is Operation.DELETE][-1]
            logger.info(f"Temporary record {temp_id} was already promoted to {stable}, deleting it")
            self._replica.apply_delete(
                delete.employee.with_id(stable.employee_id), delete.timestamp
            )
            result.batch.extend(entry_ids)
            result.applied += 1
            return

        if create_key is not None and self._replica.discard(create_key):
            logger.debug(f"Dropped {create_key} from replica")
            result.discarded.append(str(create_key))
        result.cancelled.extend(entry_ids)

    def _apply(self, entry: ChangeEntry, key: EphemeralKey | None = None):
        """Apply one entry, routing already-promoted creates to their stable key."""
        if entry.operation is Operation.CREATE:
            if key is None:
                key = EphemeralKey.for_record(entry.employee, entry.timestamp)
            stable = self._reconciler.resolve(key)
            if stable is not None:
                logger.debug(f"{key} already promoted to {stable}, applying as update")
                return self._replica.apply_update(
                    entry.employee.with_id(stable.employee_id), entry.timestamp
                )
            return self._replica.apply_create(entry.employee, entry.timestamp, key=key)
        return self._replica.apply_entry(entry)
