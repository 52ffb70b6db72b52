"""Tests for the outbox and the local editor."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from rostersync.models import Employee, Operation, RecordStatus


def ms_ago(days: int) -> int:
    return int((datetime.now() - timedelta(days=days)).timestamp() * 1000)


class TestChangeLogAppend:
    """Tests for appending entries."""

    def test_append_single_entry(self, change_log):
        entry = change_log.append(Employee(employee_id=5, first_name="Ada"), Operation.UPDATE)

        assert entry.id is not None
        assert entry.synced is False
        assert entry.timestamp > 0

    def test_append_keeps_snapshot(self, change_log):
        change_log.append(
            Employee(employee_id=5, first_name="Ada", hire_date="2020-01-02"),
            Operation.UPDATE,
            timestamp=1000,
        )

        [entry] = change_log.list_unsynced()

        assert entry.employee.first_name == "Ada"
        assert entry.employee.hire_date == "2020-01-02"
        assert entry.operation is Operation.UPDATE
        assert entry.timestamp == 1000

    def test_append_joins_open_transaction(self, store, change_log):
        with pytest.raises(RuntimeError):
            with store.transaction():
                change_log.append(Employee(employee_id=1), Operation.DELETE)
                raise RuntimeError("boom")

        assert change_log.count_unsynced() == 0


class TestChangeLogQueries:
    """Tests for reading and flagging entries."""

    def test_list_unsynced_in_insertion_order(self, change_log):
        for i in range(3):
            change_log.append(Employee(employee_id=i + 1), Operation.UPDATE)

        ids = [e.employee.employee_id for e in change_log.list_unsynced()]

        assert ids == [1, 2, 3]

    def test_list_unsynced_limit(self, change_log):
        for i in range(5):
            change_log.append(Employee(employee_id=i + 1), Operation.UPDATE)

        assert len(change_log.list_unsynced(limit=2)) == 2

    def test_mark_synced(self, change_log):
        e1 = change_log.append(Employee(employee_id=1), Operation.UPDATE)
        change_log.append(Employee(employee_id=2), Operation.UPDATE)

        assert change_log.mark_synced([e1.id]) == 1
        assert [e.employee.employee_id for e in change_log.list_unsynced()] == [2]

    def test_mark_synced_empty_list(self, change_log):
        assert change_log.mark_synced([]) == 0

    def test_discard(self, change_log):
        e1 = change_log.append(Employee(employee_id=-9), Operation.CREATE)
        e2 = change_log.append(Employee(employee_id=-9), Operation.DELETE)

        assert change_log.discard([e1.id, e2.id]) == 2
        assert change_log.count_unsynced() == 0

    def test_clear_unsynced(self, change_log):
        change_log.append(Employee(employee_id=1), Operation.UPDATE)
        change_log.append(Employee(employee_id=2), Operation.UPDATE)

        assert change_log.clear_unsynced() == 2
        assert change_log.list_unsynced() == []


class TestChangeLogMaintenance:
    """Tests for stats and retention."""

    def test_get_stats(self, change_log):
        change_log.append(Employee(employee_id=-1), Operation.CREATE)
        change_log.append(Employee(employee_id=2), Operation.UPDATE)
        e3 = change_log.append(Employee(employee_id=3), Operation.UPDATE)
        change_log.mark_synced([e3.id])

        stats = change_log.get_stats()

        assert stats["total_entries"] == 3
        assert stats["unsynced_entries"] == 2
        assert stats["unsynced_by_operation"] == {"create": 1, "update": 1}

    def test_cleanup_synced(self, change_log):
        old = change_log.append(Employee(employee_id=1), Operation.UPDATE, timestamp=ms_ago(10))
        recent = change_log.append(Employee(employee_id=2), Operation.UPDATE, timestamp=ms_ago(1))
        pending = change_log.append(Employee(employee_id=3), Operation.UPDATE, timestamp=ms_ago(10))
        change_log.mark_synced([old.id, recent.id])

        deleted = change_log.cleanup_synced(days=7)

        assert deleted == 1
        stats = change_log.get_stats()
        assert stats["total_entries"] == 2
        assert [e.id for e in change_log.list_unsynced()] == [pending.id]


class TestEmployeeEditor:
    """Tests for optimistic local edits."""

    def test_add_assigns_temporary_id(self, editor, store, change_log):
        record = editor.add_employee(Employee(first_name="A", last_name="B"))

        assert record.employee_id < 0
        assert store.get_employee(record.employee_id).first_name == "A"
        [entry] = change_log.list_unsynced()
        assert entry.operation is Operation.CREATE
        assert entry.employee.employee_id == record.employee_id

    def test_add_keeps_temporary_ids_unique(self, editor):
        with patch("rostersync.editor.now_ms", return_value=1000):
            first = editor.add_employee(Employee(first_name="A", last_name="B"))
            second = editor.add_employee(Employee(first_name="C", last_name="D"))

        assert first.employee_id == -1000
        assert second.employee_id == -1001

    def test_add_requires_names(self, editor, change_log):
        with pytest.raises(ValueError):
            editor.add_employee(Employee(first_name="A"))

        assert change_log.count_unsynced() == 0

    def test_update(self, editor, store, change_log):
        store.put_employee(Employee(employee_id=5, first_name="Ada", last_name="L"))

        editor.update_employee(Employee(employee_id=5, first_name="Ada", last_name="Lovelace"))

        assert store.get_employee(5).last_name == "Lovelace"
        [entry] = change_log.list_unsynced()
        assert entry.operation is Operation.UPDATE

    def test_delete_existing(self, editor, store, change_log):
        store.put_employee(Employee(employee_id=5, first_name="Ada", last_name="Lovelace"))

        snapshot = editor.delete_employee(5)

        assert store.get_employee(5) is None
        assert snapshot.first_name == "Ada"
        [entry] = change_log.list_unsynced()
        assert entry.operation is Operation.DELETE
        assert entry.employee.first_name == "Ada"

    def test_delete_without_row_queues_tombstone(self, editor, change_log):
        snapshot = editor.delete_employee(11)

        assert snapshot.employee_id == 11
        assert snapshot.status is RecordStatus.DELETED
        [entry] = change_log.list_unsynced()
        assert entry.operation is Operation.DELETE
        assert entry.employee.employee_id == 11

    def test_write_and_append_are_atomic(self, editor, store, change_log):
        with patch.object(change_log, "append", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                editor.add_employee(Employee(first_name="A", last_name="B"))

        assert store.count_employees() == 0
