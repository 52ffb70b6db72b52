"""Core data types for employee records, document keys, and the outbox."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Key prefixes used for records that have not been assigned a server ID yet
EPHEMERAL_PREFIX = "new"
LEGACY_EPHEMERAL_PREFIX = "temp"


class KeyFormatError(ValueError):
    """Raised when a document key is neither stable nor ephemeral."""


class InvalidTransitionError(ValueError):
    """Raised when a record status change is not allowed."""


class RecordStatus(Enum):
    """Lifecycle status of an employee record.

    ``DELETED`` is a tombstone marker, not a UI state: it is terminal.
    """

    ACTIVE = "Active"
    DELETED = "Deleted"

    @classmethod
    def parse(cls, value: Any) -> "RecordStatus":
        """Read a status from loosely-typed input (case-insensitive)."""
        if isinstance(value, RecordStatus):
            return value
        text = str(value or "").strip().lower()
        for status in cls:
            if status.value.lower() == text:
                return status
        if text:
            logger.debug(f"Unknown status {value!r}, reading as Active")
        return cls.ACTIVE

    def can_transition(self, target: "RecordStatus") -> bool:
        if self is target:
            return True
        return self is RecordStatus.ACTIVE and target is RecordStatus.DELETED


class Operation(Enum):
    """Kind of local mutation recorded in the change log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Attribute name -> wire name used in the replicated document and over HTTP
WIRE_FIELDS = {
    "employee_id": "EmployeeID",
    "first_name": "FirstName",
    "last_name": "LastName",
    "department": "Department",
    "position": "Position",
    "hire_date": "HireDate",
    "birth_date": "BirthDate",
    "gender": "Gender",
    "email": "Email",
    "phone_number": "PhoneNumber",
    "address": "Address",
    "status": "Status",
}


def _normalize_date(value: Any) -> str:
    """Normalize a date-ish value to YYYY-MM-DD, or "" when unparseable."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text[:10]).date().isoformat()
    except ValueError:
        return ""


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class Employee:
    """An employee record."""

    employee_id: int = 0
    first_name: str = ""
    last_name: str = ""
    department: str = ""
    position: str = ""
    hire_date: str = ""
    birth_date: str = ""
    gender: str = ""
    email: str = ""
    phone_number: str = ""
    address: str = ""
    status: RecordStatus = RecordStatus.ACTIVE

    @property
    def has_stable_id(self) -> bool:
        """Whether the ID was assigned by the remote authority."""
        return self.employee_id > 0

    @property
    def is_deleted(self) -> bool:
        return self.status is RecordStatus.DELETED

    def transition(self, status: RecordStatus) -> "Employee":
        """Return a copy with a new status.

        Raises:
            InvalidTransitionError: If the status change is not allowed.
        """
        if not self.status.can_transition(status):
            raise InvalidTransitionError(
                f"Cannot move record {self.employee_id} "
                f"from {self.status.value} to {status.value}"
            )
        return replace(self, status=status)

    def with_id(self, employee_id: int) -> "Employee":
        return replace(self, employee_id=employee_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {}
        for attr, wire in WIRE_FIELDS.items():
            value = getattr(self, attr)
            data[wire] = value.value if isinstance(value, RecordStatus) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Employee":
        """Create from a wire dictionary, normalizing missing or odd values."""
        return cls(
            employee_id=_to_int(data.get("EmployeeID", 0)),
            first_name=str(data.get("FirstName") or ""),
            last_name=str(data.get("LastName") or ""),
            department=str(data.get("Department") or ""),
            position=str(data.get("Position") or ""),
            hire_date=_normalize_date(data.get("HireDate")),
            birth_date=_normalize_date(data.get("BirthDate")),
            gender=str(data.get("Gender") or ""),
            email=str(data.get("Email") or ""),
            phone_number=str(data.get("PhoneNumber") or ""),
            address=str(data.get("Address") or ""),
            status=RecordStatus.parse(data.get("Status")),
        )


@dataclass(frozen=True)
class StableKey:
    """Document key for a record with a server-assigned ID."""

    employee_id: int

    def __post_init__(self) -> None:
        if self.employee_id <= 0:
            raise KeyFormatError(
                f"Stable keys need a positive ID, got {self.employee_id}"
            )

    def __str__(self) -> str:
        return str(self.employee_id)


@dataclass(frozen=True)
class EphemeralKey:
    """Locally generated key used before the server assigns an ID."""

    label: str
    created_at: int | None = None
    prefix: str = EPHEMERAL_PREFIX

    @classmethod
    def for_record(cls, employee: Employee, timestamp: int) -> "EphemeralKey":
        return cls(
            label=f"{employee.first_name}-{employee.last_name}",
            created_at=timestamp,
        )

    def __str__(self) -> str:
        if self.created_at is None:
            return f"{self.prefix}-{self.label}"
        return f"{self.prefix}-{self.label}-{self.created_at}"


RecordKey = StableKey | EphemeralKey


def parse_key(raw: str) -> RecordKey:
    """Classify a raw document key.

    Raises:
        KeyFormatError: If the key is neither a positive integer nor
            carries an ephemeral prefix.
    """
    for prefix in (EPHEMERAL_PREFIX, LEGACY_EPHEMERAL_PREFIX):
        marker = f"{prefix}-"
        if raw.startswith(marker):
            rest = raw[len(marker):]
            label, sep, tail = rest.rpartition("-")
            if sep and tail.isdigit():
                return EphemeralKey(label=label, created_at=int(tail), prefix=prefix)
            return EphemeralKey(label=rest, created_at=None, prefix=prefix)

    if raw.isdigit() and int(raw) > 0:
        return StableKey(int(raw))

    raise KeyFormatError(f"Unrecognized document key: {raw!r}")


@dataclass
class ChangeEntry:
    """A single local mutation waiting in the outbox."""

    id: int
    employee: Employee
    operation: Operation
    timestamp: int  # epoch milliseconds
    synced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "employee": self.employee.to_dict(),
            "operation": self.operation.value,
            "timestamp": self.timestamp,
            "synced": self.synced,
        }


@dataclass
class SyncState:
    """Process-wide sync status; not part of the replicated document."""

    last_sync_timestamp: int = 0
    is_online: bool = True
    is_syncing: bool = False


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(datetime.now().timestamp() * 1000)
