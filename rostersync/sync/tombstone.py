"""Deletion as a terminal status value inside the record.

Removing a key from the replica does not survive a merge with a replica that
still holds the entry; overwriting the entry with a ``Deleted`` copy does. The
helpers here decide how a tombstone is built and which entries are visible,
transient, or safe to prune.
"""

from dataclasses import fields

from ..models import (
    Employee,
    EphemeralKey,
    KeyFormatError,
    RecordStatus,
    StableKey,
    parse_key,
)


def tombstone(existing: Employee | None, snapshot: Employee) -> Employee:
    """Build the deleted copy of a record.

    Fields of the entry already in the replica win over the caller's
    snapshot, empty strings included; the snapshot is only used when the
    replica holds no entry or a field is missing.

    Args:
        existing: Entry currently stored in the replica, if any.
        snapshot: Record as the caller last saw it.
    """
    if existing is None:
        base = snapshot
    else:
        merged = {}
        for f in fields(Employee):
            current = getattr(existing, f.name)
            merged[f.name] = current if current is not None else getattr(snapshot, f.name)
        merged["status"] = existing.status
        base = Employee(**merged)

    return base.transition(RecordStatus.DELETED)


def is_tombstoned(record: Employee) -> bool:
    return record.status is RecordStatus.DELETED


def classify(raw_key: str) -> StableKey | EphemeralKey | None:
    """Parse a raw key, returning None for keys of unknown shape."""
    try:
        return parse_key(raw_key)
    except KeyFormatError:
        return None


def is_transient(raw_key: str, record: Employee) -> bool:
    """Whether an entry still waits for a server-assigned identity."""
    key = classify(raw_key)
    return not isinstance(key, StableKey) or not record.has_stable_id


def is_projectable(raw_key: str, record: Employee) -> bool:
    """Whether an entry belongs in the materialized store."""
    return not is_transient(raw_key, record) and not is_tombstoned(record)


def should_prune(raw_key: str, record: Employee) -> bool:
    """Whether an entry may be removed from the replica after a push."""
    return is_transient(raw_key, record) or is_tombstoned(record)
