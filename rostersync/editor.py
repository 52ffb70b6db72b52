"""Local edits: optimistic materialized write plus outbox append."""

import logging

from .models import Employee, Operation, RecordStatus, now_ms
from .store import LocalStore
from .sync.change_log import ChangeLog

logger = logging.getLogger(__name__)


class EmployeeEditor:
    """Applies user mutations while offline or online.

    Each mutation writes the materialized row and appends the outbox entry
    in one local transaction, so the UI sees the change immediately and the
    next sync cycle picks it up.
    """

    def __init__(self, store: LocalStore, change_log: ChangeLog):
        self._store = store
        self._log = change_log

    def _temporary_id(self) -> int:
        """Negative ID for a record the remote has not seen yet."""
        candidate = -now_ms()
        lowest = self._store.min_employee_id()
        if lowest < 0 and candidate >= lowest:
            candidate = lowest - 1
        return candidate

    def add_employee(self, employee: Employee) -> Employee:
        """Create a record locally.

        Args:
            employee: New record; a non-positive ID is replaced by a
                temporary negative one.

        Returns:
            The record as written to the materialized store.

        Raises:
            ValueError: If first or last name is missing.
        """
        if not employee.first_name.strip() or not employee.last_name.strip():
            raise ValueError("First name and last name are required")

        if not employee.has_stable_id:
            employee = employee.with_id(self._temporary_id())
        if employee.is_deleted:
            raise ValueError("Cannot add a deleted record")

        with self._store.transaction():
            self._store.put_employee(employee)
            self._log.append(employee, Operation.CREATE)

        logger.info(f"Added employee {employee.employee_id} ({employee.first_name} {employee.last_name})")
        return employee

    def update_employee(self, employee: Employee) -> Employee:
        """Overwrite a record locally.

        Raises:
            ValueError: If the record carries no ID at all.
        """
        if employee.employee_id == 0:
            raise ValueError("Cannot update a record without an ID")

        with self._store.transaction():
            self._store.put_employee(employee)
            self._log.append(employee, Operation.UPDATE)

        logger.info(f"Updated employee {employee.employee_id}")
        return employee

    def delete_employee(self, employee_id: int) -> Employee:
        """Delete a record locally.

        When no materialized row exists, a tombstone snapshot carrying only
        the ID is queued so the deletion still reaches the remote.

        Returns:
            The snapshot recorded in the outbox.
        """
        with self._store.transaction():
            existing = self._store.get_employee(employee_id)
            if existing is None:
                logger.warning(f"No local row for employee {employee_id}, queueing tombstone")
                snapshot = Employee(employee_id=employee_id, status=RecordStatus.DELETED)
            else:
                snapshot = existing
                self._store.delete_employee_row(employee_id)
            self._log.append(snapshot, Operation.DELETE)

        logger.info(f"Deleted employee {employee_id}")
        return snapshot
