"""Append-only change log (outbox) of local mutations awaiting sync.

Entries live in the ``changes`` table of the local store so that an outbox
append and the matching materialized write can share one transaction.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from ..models import ChangeEntry, Employee, Operation, now_ms
from ..store import LocalStore

logger = logging.getLogger(__name__)


class ChangeLog:
    """Outbox of local create/update/delete operations.

    Entries are never rewritten: the only mutation is the ``synced`` flag
    flipping from false to true once the remote has accepted the state.
    """

    def __init__(self, store: LocalStore):
        """Initialize the change log.

        Args:
            store: Local store owning the ``changes`` table.
        """
        self._store = store

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> ChangeEntry:
        return ChangeEntry(
            id=row["id"],
            employee=Employee.from_dict(json.loads(row["record"])),
            operation=Operation(row["operation"]),
            timestamp=row["timestamp"],
            synced=bool(row["synced"]),
        )

    def append(
        self,
        employee: Employee,
        operation: Operation,
        timestamp: int | None = None,
    ) -> ChangeEntry:
        """Append a new unsynced entry.

        Joins the caller's transaction when one is open.

        Args:
            employee: Snapshot of the record as the user left it.
            operation: Kind of mutation.
            timestamp: Epoch milliseconds; defaults to now.

        Returns:
            The created ChangeEntry.
        """
        ts = timestamp if timestamp is not None else now_ms()

        with self._store.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO changes (employee_id, record, operation, timestamp, synced)
                VALUES (?, ?, ?, ?, 0)
                """,
                (
                    employee.employee_id,
                    json.dumps(employee.to_dict()),
                    operation.value,
                    ts,
                ),
            )

        entry = ChangeEntry(
            id=cursor.lastrowid,
            employee=employee,
            operation=operation,
            timestamp=ts,
            synced=False,
        )
        logger.debug(
            f"Appended {operation.value} entry {entry.id} for record {employee.employee_id}"
        )
        return entry

    def list_unsynced(self, limit: int | None = None) -> list[ChangeEntry]:
        """Get entries that haven't been synced yet, in insertion order.

        Args:
            limit: Maximum entries to return, or None for all.
        """
        conn = self._store._ensure_connected()

        query = "SELECT * FROM changes WHERE synced = 0 ORDER BY id ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        return [self._row_to_entry(row) for row in conn.execute(query, params)]

    def mark_synced(self, entry_ids: list[int]) -> int:
        """Mark entries as synced.

        Only call this after the remote authority has accepted the document
        state that contains these entries.

        Args:
            entry_ids: List of entry IDs to mark.

        Returns:
            Number of entries updated.
        """
        if not entry_ids:
            return 0

        placeholders = ",".join("?" * len(entry_ids))
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE changes SET synced = 1 WHERE id IN ({placeholders}) AND synced = 0",
                tuple(entry_ids),
            )

        count = cursor.rowcount
        logger.debug(f"Marked {count} entries as synced")
        return count

    def discard(self, entry_ids: list[int]) -> int:
        """Remove entries that cancel each other out before ever syncing.

        Returns:
            Number of entries removed.
        """
        if not entry_ids:
            return 0

        placeholders = ",".join("?" * len(entry_ids))
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM changes WHERE id IN ({placeholders}) AND synced = 0",
                tuple(entry_ids),
            )

        logger.debug(f"Discarded {cursor.rowcount} cancelled entries")
        return cursor.rowcount

    def count_unsynced(self) -> int:
        conn = self._store._ensure_connected()
        return conn.execute("SELECT COUNT(*) FROM changes WHERE synced = 0").fetchone()[0]

    def clear_unsynced(self) -> int:
        """Drop every pending entry (manual reset).

        Returns:
            Number of entries removed.
        """
        with self._store.transaction() as conn:
            cursor = conn.execute("DELETE FROM changes WHERE synced = 0")

        if cursor.rowcount:
            logger.warning(f"Cleared {cursor.rowcount} unsynced changes")
        return cursor.rowcount

    def cleanup_synced(self, days: int = 7) -> int:
        """Delete synced entries older than the retention window.

        Args:
            days: Age threshold in days.

        Returns:
            Number of entries deleted.
        """
        cutoff = int((datetime.now() - timedelta(days=days)).timestamp() * 1000)

        with self._store.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM changes WHERE synced = 1 AND timestamp < ?",
                (cutoff,),
            )

        deleted = cursor.rowcount
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} synced changes older than {days} days")

        return deleted

    def get_stats(self) -> dict[str, Any]:
        """Get outbox statistics.

        Returns:
            Dictionary with entry counts by state and operation.
        """
        conn = self._store._ensure_connected()

        stats: dict[str, Any] = {
            "total_entries": conn.execute("SELECT COUNT(*) FROM changes").fetchone()[0],
            "unsynced_entries": self.count_unsynced(),
        }

        cursor = conn.execute(
            "SELECT operation, COUNT(*) FROM changes WHERE synced = 0 GROUP BY operation"
        )
        stats["unsynced_by_operation"] = {row[0]: row[1] for row in cursor}

        return stats
