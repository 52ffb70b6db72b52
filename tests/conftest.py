"""Shared fixtures for rostersync tests."""

import pytest

from rostersync.editor import EmployeeEditor
from rostersync.models import Employee, StableKey
from rostersync.store import LocalStore
from rostersync.sync import (
    ChangeLog,
    IdentityReconciler,
    RemoteRejectedError,
    RemoteUnavailableError,
    ReplicaManager,
    SyncOrchestrator,
)
from rostersync.sync.tombstone import classify


class FakeAuthority:
    """In-memory stand-in for the remote sync service.

    Merges pushed snapshots into its own replica, hands out IDs on insert,
    and hard-deletes tombstoned records after each merge.
    """

    def __init__(self, next_id: int = 7):
        self.replica = ReplicaManager()
        self.next_id = next_id
        self.inserted: list[Employee] = []
        self.fetches = 0
        self.pushes = 0
        self.offline = False
        self.fail_next_fetch = False
        self.reject_last_names: set[str] = set()

    def seed(self, employee: Employee, timestamp: int = 1) -> None:
        """Put a record straight into the authority's document."""
        self.replica.apply_update(employee, timestamp)

    async def fetch_document(self) -> bytes:
        if self.offline:
            raise RemoteUnavailableError("GET /sync/document failed: connection refused")
        if self.fail_next_fetch:
            self.fail_next_fetch = False
            raise RemoteUnavailableError("GET /sync/document timed out")
        self.fetches += 1
        return self.replica.serialize()

    async def push_document(self, snapshot: bytes) -> bool:
        if self.offline:
            raise RemoteUnavailableError("POST /sync/document failed: connection refused")
        self.pushes += 1
        merged = self.replica.merge_foreign(snapshot)
        for key, record in self.replica.entries():
            if record.is_deleted and isinstance(classify(key), StableKey):
                self.replica.discard(key)
        return merged

    async def insert_record(self, employee: Employee) -> int:
        if self.offline:
            raise RemoteUnavailableError("POST /employees failed: connection refused")
        if employee.last_name in self.reject_last_names:
            raise RemoteRejectedError(500, "insert failed")
        employee_id = self.next_id
        self.next_id += 1
        self.inserted.append(employee.with_id(employee_id))
        return employee_id


@pytest.fixture
def store():
    """Create an in-memory local store."""
    s = LocalStore(":memory:")
    s.connect()
    yield s
    s.close()


@pytest.fixture
def change_log(store):
    return ChangeLog(store)


@pytest.fixture
def editor(store, change_log):
    return EmployeeEditor(store, change_log)


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def replica():
    return ReplicaManager()


@pytest.fixture
def orchestrator(store, change_log, replica, authority):
    reconciler = IdentityReconciler(authority, store)
    return SyncOrchestrator(store, change_log, replica, authority, reconciler)
