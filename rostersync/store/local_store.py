"""Local SQLite storage for materialized employees, the outbox, and sync metadata."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..models import Employee, RecordStatus, SyncState

logger = logging.getLogger(__name__)

# SQL schema for the local database
SCHEMA = """
-- Materialized employees: projection of the replica plus optimistic local writes
CREATE TABLE IF NOT EXISTS employees (
    employee_id INTEGER PRIMARY KEY,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    department TEXT NOT NULL DEFAULT '',
    position TEXT NOT NULL DEFAULT '',
    hire_date TEXT NOT NULL DEFAULT '',
    birth_date TEXT NOT NULL DEFAULT '',
    gender TEXT NOT NULL DEFAULT '',
    email TEXT NOT NULL DEFAULT '',
    phone_number TEXT NOT NULL DEFAULT '',
    address TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'Active'
);

CREATE INDEX IF NOT EXISTS idx_employees_name ON employees(first_name, last_name);
CREATE INDEX IF NOT EXISTS idx_employees_department ON employees(department);

-- Outbox: append-only log of local mutations
CREATE TABLE IF NOT EXISTS changes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL,
    record TEXT NOT NULL,
    operation TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_changes_synced ON changes(synced, id);
CREATE INDEX IF NOT EXISTS idx_changes_employee ON changes(employee_id);

-- Ephemeral document keys that the remote authority has already promoted
CREATE TABLE IF NOT EXISTS identity_map (
    ephemeral_key TEXT PRIMARY KEY,
    employee_id INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

-- Single-row sync status
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_sync_timestamp INTEGER NOT NULL DEFAULT 0,
    is_online INTEGER NOT NULL DEFAULT 1,
    is_syncing INTEGER NOT NULL DEFAULT 0
);

-- Last saved replica snapshot so the document survives restarts
CREATE TABLE IF NOT EXISTS replica_snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    data BLOB NOT NULL,
    saved_at TEXT NOT NULL
);
"""

EMPLOYEE_COLUMNS = [
    "employee_id",
    "first_name",
    "last_name",
    "department",
    "position",
    "hire_date",
    "birth_date",
    "gender",
    "email",
    "phone_number",
    "address",
    "status",
]


class LocalStoreError(Exception):
    """Local storage failure surfaced from a sync cycle."""


class LocalStore:
    """SQLite-based local storage shared by the editor and the sync engine."""

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.execute("INSERT OR IGNORE INTO sync_state (id) VALUES (1)")
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing unit of work.

        Nested calls join the outermost transaction; only the outermost one
        commits or rolls back.
        """
        conn = self._ensure_connected()

        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield conn
            finally:
                self._tx_depth -= 1
            return

        self._tx_depth = 1
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._tx_depth = 0

    # ==================== Materialized Employees ====================

    @staticmethod
    def _row_to_employee(row: sqlite3.Row) -> Employee:
        return Employee(
            employee_id=row["employee_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            department=row["department"],
            position=row["position"],
            hire_date=row["hire_date"],
            birth_date=row["birth_date"],
            gender=row["gender"],
            email=row["email"],
            phone_number=row["phone_number"],
            address=row["address"],
            status=RecordStatus.parse(row["status"]),
        )

    @staticmethod
    def _employee_row(employee: Employee) -> tuple:
        return (
            employee.employee_id,
            employee.first_name,
            employee.last_name,
            employee.department,
            employee.position,
            employee.hire_date,
            employee.birth_date,
            employee.gender,
            employee.email,
            employee.phone_number,
            employee.address,
            employee.status.value,
        )

    def put_employee(self, employee: Employee) -> None:
        """Insert or replace a materialized employee row."""
        placeholders = ", ".join("?" * len(EMPLOYEE_COLUMNS))
        with self.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO employees ({', '.join(EMPLOYEE_COLUMNS)}) "
                f"VALUES ({placeholders})",
                self._employee_row(employee),
            )

    def delete_employee_row(self, employee_id: int) -> bool:
        """Remove a materialized row.

        Returns:
            True if a row was removed.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM employees WHERE employee_id = ?", (employee_id,)
            )
        return cursor.rowcount > 0

    def get_employee(self, employee_id: int) -> Employee | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT * FROM employees WHERE employee_id = ?", (employee_id,)
        ).fetchone()
        return self._row_to_employee(row) if row else None

    def list_employees(self) -> list[Employee]:
        """List materialized employees ordered by first then last name."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT * FROM employees ORDER BY first_name ASC, last_name ASC"
        )
        return [self._row_to_employee(row) for row in cursor]

    def search_employees(self, query: str, limit: int = 50) -> list[Employee]:
        """Case-insensitive substring search over names, email and department.

        Args:
            query: Text to look for.
            limit: Maximum rows to return.

        Returns:
            Matching employees ordered by name.
        """
        conn = self._ensure_connected()
        pattern = f"%{query.strip()}%"
        cursor = conn.execute(
            """
            SELECT * FROM employees
            WHERE first_name LIKE ? OR last_name LIKE ?
               OR email LIKE ? OR department LIKE ?
            ORDER BY first_name ASC, last_name ASC
            LIMIT ?
            """,
            (pattern, pattern, pattern, pattern, limit),
        )
        return [self._row_to_employee(row) for row in cursor]

    def replace_employees(self, employees: list[Employee]) -> int:
        """Clear the materialized table and repopulate it.

        Returns:
            Number of rows written.
        """
        placeholders = ", ".join("?" * len(EMPLOYEE_COLUMNS))
        with self.transaction() as conn:
            conn.execute("DELETE FROM employees")
            conn.executemany(
                f"INSERT INTO employees ({', '.join(EMPLOYEE_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [self._employee_row(e) for e in employees],
            )
        return len(employees)

    def count_employees(self) -> int:
        conn = self._ensure_connected()
        return conn.execute("SELECT COUNT(*) FROM employees").fetchone()[0]

    def min_employee_id(self) -> int:
        """Smallest materialized ID, or 0 for an empty table."""
        conn = self._ensure_connected()
        row = conn.execute("SELECT MIN(employee_id) FROM employees").fetchone()
        return row[0] if row[0] is not None else 0

    # ==================== Identity Map ====================

    def record_identity(self, ephemeral_key: str, employee_id: int) -> None:
        """Remember that an ephemeral key was promoted to a stable ID."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO identity_map (ephemeral_key, employee_id, created_at)
                VALUES (?, ?, ?)
                """,
                (ephemeral_key, employee_id, datetime.now().isoformat()),
            )

    def lookup_identity(self, ephemeral_key: str) -> int | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT employee_id FROM identity_map WHERE ephemeral_key = ?",
            (ephemeral_key,),
        ).fetchone()
        return row[0] if row else None

    # ==================== Sync State ====================

    def get_sync_state(self) -> SyncState:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT last_sync_timestamp, is_online, is_syncing FROM sync_state WHERE id = 1"
        ).fetchone()
        if row is None:
            return SyncState()
        return SyncState(
            last_sync_timestamp=row["last_sync_timestamp"],
            is_online=bool(row["is_online"]),
            is_syncing=bool(row["is_syncing"]),
        )

    def update_sync_state(
        self,
        last_sync_timestamp: int | None = None,
        is_online: bool | None = None,
        is_syncing: bool | None = None,
    ) -> SyncState:
        """Update only the fields that are given."""
        updates: dict[str, Any] = {}
        if last_sync_timestamp is not None:
            updates["last_sync_timestamp"] = last_sync_timestamp
        if is_online is not None:
            updates["is_online"] = int(is_online)
        if is_syncing is not None:
            updates["is_syncing"] = int(is_syncing)

        if updates:
            assignments = ", ".join(f"{column} = ?" for column in updates)
            with self.transaction() as conn:
                conn.execute(
                    f"UPDATE sync_state SET {assignments} WHERE id = 1",
                    tuple(updates.values()),
                )

        return self.get_sync_state()

    # ==================== Replica Snapshot ====================

    def save_replica(self, data: bytes) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO replica_snapshot (id, data, saved_at) VALUES (1, ?, ?)",
                (data, datetime.now().isoformat()),
            )

    def load_replica(self) -> bytes | None:
        conn = self._ensure_connected()
        row = conn.execute("SELECT data FROM replica_snapshot WHERE id = 1").fetchone()
        return bytes(row["data"]) if row else None

    # ==================== Statistics ====================

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics.

        Returns:
            Dictionary with row counts and database size.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {
            "employees_count": self.count_employees(),
            "changes_count": conn.execute("SELECT COUNT(*) FROM changes").fetchone()[0],
            "identity_map_count": conn.execute(
                "SELECT COUNT(*) FROM identity_map"
            ).fetchone()[0],
        }

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
