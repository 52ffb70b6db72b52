"""Locally mutable copy of the shared employee document.

The document is a pycrdt ``Doc`` with three root maps:

- ``employees``: document key -> record in wire form
- ``deleted``: stable key -> deletion time (epoch milliseconds)
- ``meta``: ``lastModified.<client id>`` -> epoch milliseconds

Every write happens inside ``Doc.transaction()``. Merging is delegated to the
CRDT, so it is commutative, associative and idempotent.

Each replica only writes its own ``lastModified`` slot, so concurrent writes
never collide and the maximum over all slots can only grow under merge. A key
in ``deleted`` marks the record tombstoned whatever the concurrent state of its
``employees`` entry, so a delete is never lost to an edit made at the same
time. Markers outlive pruning.
"""

import logging
from typing import Any

from pycrdt import Doc, Map

from ..models import (
    ChangeEntry,
    Employee,
    EphemeralKey,
    Operation,
    RecordKey,
    RecordStatus,
    StableKey,
    now_ms,
)
from . import tombstone as policy

logger = logging.getLogger(__name__)

LAST_MODIFIED = "lastModified"


class ReplicaManager:
    """Owns one replica of the employee document."""

    def __init__(self, doc: Doc | None = None):
        """Initialize the replica.

        Args:
            doc: Existing document to wrap; a fresh one is created if None.
        """
        self._doc = doc if doc is not None else Doc()
        self._records = self._doc.get("employees", type=Map)
        self._deleted = self._doc.get("deleted", type=Map)
        self._meta = self._doc.get("meta", type=Map)
        self._modified_slot = f"{LAST_MODIFIED}.{self._doc.client_id}"

    # ==================== Snapshot Exchange ====================

    def serialize(self) -> bytes:
        """Encode the full document state as a binary update."""
        return self._doc.get_update()

    @staticmethod
    def deserialize(data: bytes) -> "ReplicaManager":
        """Rebuild a replica from bytes produced by ``serialize``."""
        doc = Doc()
        doc.apply_update(data)
        return ReplicaManager(doc)

    def merge_foreign(self, snapshot: bytes) -> bool:
        """Merge a foreign snapshot into this replica.

        Args:
            snapshot: Bytes from another replica's ``serialize``.

        Returns:
            True if the merged records differ from the pre-merge records.
            ``lastModified`` is not compared.
        """
        before = self._record_state()
        self._doc.apply_update(snapshot)
        changed = self._record_state() != before
        logger.debug(f"Merged foreign snapshot ({len(snapshot)} bytes), changed={changed}")
        return changed

    # ==================== Reads ====================

    def _raw_records(self) -> dict[str, Any]:
        return self._records.to_py() or {}

    def _deleted_keys(self) -> dict[str, Any]:
        return self._deleted.to_py() or {}

    def _record_state(self) -> dict[str, Any]:
        return {"employees": self._raw_records(), "deleted": self._deleted_keys()}

    def _resolve(self, key: str, data: dict[str, Any], deleted: dict[str, Any]) -> Employee:
        record = Employee.from_dict(data)
        if key in deleted and not record.is_deleted:
            record = record.transition(RecordStatus.DELETED)
        return record

    @property
    def last_modified(self) -> int:
        meta = self._meta.to_py() or {}
        stamps = [
            int(value or 0)
            for slot, value in meta.items()
            if slot == LAST_MODIFIED or slot.startswith(f"{LAST_MODIFIED}.")
        ]
        return max(stamps, default=0)

    def keys(self) -> list[str]:
        return sorted(self._raw_records())

    def get(self, key: RecordKey | str) -> Employee | None:
        raw = str(key)
        data = self._raw_records().get(raw)
        if data is None:
            return None
        return self._resolve(raw, data, self._deleted_keys())

    def entries(self) -> list[tuple[str, Employee]]:
        """All (raw key, record) pairs, sorted by key."""
        deleted = self._deleted_keys()
        return [
            (key, self._resolve(key, value, deleted))
            for key, value in sorted(self._raw_records().items())
        ]

    def transient_entries(self) -> list[tuple[str, Employee]]:
        """Entries still waiting for a server-assigned identity."""
        return [
            (key, record)
            for key, record in self.entries()
            if policy.is_transient(key, record)
        ]

    def projectable(self) -> list[Employee]:
        """Records that belong in the materialized store."""
        return [
            record
            for key, record in self.entries()
            if policy.is_projectable(key, record)
        ]

    def content(self) -> dict[str, Any]:
        """Plain-Python view of the document, used for equality checks."""
        return {
            "employees": self._raw_records(),
            "deleted": self._deleted_keys(),
            "lastModified": self.last_modified,
        }

    def equals(self, other: "ReplicaManager") -> bool:
        return self.content() == other.content()

    def describe(self) -> dict[str, Any]:
        """Summarize the document for debugging."""
        entries = self.entries()
        transient = [key for key, record in entries if policy.is_transient(key, record)]
        deleted = [key for key, record in entries if policy.is_tombstoned(record)]
        return {
            "total": len(entries),
            "valid": sum(1 for key, record in entries if policy.is_projectable(key, record)),
            "transient": len(transient),
            "tombstoned": len(deleted),
            "transient_keys": transient,
            "tombstoned_keys": deleted,
            "last_modified": self.last_modified,
        }

    # ==================== Writes ====================

    def _touch(self, timestamp: int | None = None) -> None:
        """Advance this replica's lastModified slot; it never moves backwards."""
        ts = timestamp if timestamp is not None else now_ms()
        self._meta[self._modified_slot] = max(ts, self.last_modified)

    def _write(self, key: RecordKey | str, record: Employee, timestamp: int) -> None:
        with self._doc.transaction():
            self._records[str(key)] = record.to_dict()
            self._touch(timestamp)

    def apply_create(
        self,
        employee: Employee,
        timestamp: int,
        key: EphemeralKey | None = None,
    ) -> EphemeralKey:
        """Store a new record under an ephemeral key with ID 0.

        Args:
            employee: Record as created locally; any ID on it is cleared.
            timestamp: Creation time in epoch milliseconds.
            key: Key to write under. Defaults to one derived from the
                record's names and ``timestamp``.

        Returns:
            The ephemeral key the record was written under.
        """
        if key is None:
            key = EphemeralKey.for_record(employee, timestamp)
        self._write(key, employee.with_id(0), timestamp)
        logger.debug(f"Applied create under {key}")
        return key

    def apply_update(self, employee: Employee, timestamp: int) -> RecordKey:
        """Write a record under its stable key.

        A record without a positive ID cannot be addressed by a stable key;
        it is written with create semantics instead, so the remote never sees
        an update for a row that does not exist.
        """
        if not employee.has_stable_id:
            key = self.apply_create(employee, timestamp)
            logger.info(
                f"Update for record with invalid ID {employee.employee_id} "
                f"downgraded to create under {key}"
            )
            return key

        key = StableKey(employee.employee_id)
        self._write(key, employee, timestamp)
        logger.debug(f"Applied update under {key}")
        return key

    def apply_delete(self, employee: Employee, timestamp: int) -> StableKey | None:
        """Overwrite the record's current entry with a tombstone and mark it deleted.

        Returns:
            The key that was tombstoned, or None if the record has no
            addressable key in this replica.
        """
        if not employee.has_stable_id:
            logger.warning(
                f"Delete for record with invalid ID {employee.employee_id} ignored: "
                "no stable key to tombstone"
            )
            return None

        key = StableKey(employee.employee_id)
        deleted = policy.tombstone(self.get(key), employee)
        with self._doc.transaction():
            self._records[str(key)] = deleted.to_dict()
            self._deleted[str(key)] = timestamp
            self._touch(timestamp)
        logger.debug(f"Applied delete (tombstone) under {key}")
        return key

    def apply_entry(self, entry: ChangeEntry) -> RecordKey | None:
        """Apply one change-log entry."""
        if entry.operation is Operation.CREATE:
            return self.apply_create(entry.employee, entry.timestamp)
        if entry.operation is Operation.UPDATE:
            return self.apply_update(entry.employee, entry.timestamp)
        return self.apply_delete(entry.employee, entry.timestamp)

    def promote(self, key: RecordKey | str, employee_id: int) -> StableKey:
        """Rekey a transient entry to its server-assigned ID.

        The ephemeral entry is removed and the record rewritten under the
        stable key in a single transaction; all fields but the ID are kept.

        Raises:
            KeyError: If there is no entry under ``key``.
        """
        record = self.get(key)
        if record is None:
            raise KeyError(str(key))

        stable = StableKey(employee_id)
        with self._doc.transaction():
            del self._records[str(key)]
            self._records[str(stable)] = record.with_id(employee_id).to_dict()
            self._touch()

        logger.info(f"Promoted {key} to stable key {stable}")
        return stable

    def discard(self, key: RecordKey | str) -> bool:
        """Remove an entry outright.

        Only safe once every side agrees the record is gone, e.g. after the
        authority has hard-deleted a tombstoned row. Deletion markers and
        lastModified are left alone.
        """
        raw = str(key)
        if raw not in self._raw_records():
            return False
        with self._doc.transaction():
            del self._records[raw]
        return True

    def prune_transient(self, keep: set[str] | None = None) -> list[str]:
        """Remove transient and tombstoned entries.

        Args:
            keep: Raw keys to leave in place even if they qualify.

        Returns:
            Keys that were removed.
        """
        keep = keep or set()
        doomed = [
            key
            for key, record in self.entries()
            if key not in keep and policy.should_prune(key, record)
        ]
        if not doomed:
            return []

        with self._doc.transaction():
            for key in doomed:
                del self._records[key]

        logger.debug(f"Pruned {len(doomed)} entries from replica: {doomed}")
        return doomed
