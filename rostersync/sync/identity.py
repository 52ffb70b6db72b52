"""Promotes ephemeral document keys to server-assigned stable keys."""

import logging
from dataclasses import dataclass, field

from ..models import EphemeralKey, StableKey
from ..store import LocalStore
from .remote import RecordAuthority
from .replica import ReplicaManager
from .tombstone import is_tombstoned

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    promoted: dict[str, int] = field(default_factory=dict)  # ephemeral key -> ID
    failed: dict[str, str] = field(default_factory=dict)  # ephemeral key -> error

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)


class IdentityReconciler:
    """Maps ephemeral keys to authoritative keys.

    Every transient entry in the replica is sent to the record authority for
    an insert; the returned ID becomes the entry's new stable key. Promotions
    are remembered in the local store so a create that is re-applied after an
    aborted cycle lands on its stable key instead of being inserted again.
    """

    def __init__(self, authority: RecordAuthority, store: LocalStore):
        """Initialize the reconciler.

        Args:
            authority: Remote insert-and-return-ID operation.
            store: Local store holding the identity map.
        """
        self._authority = authority
        self._store = store

    def resolve(self, key: EphemeralKey | str) -> StableKey | None:
        """Look up the stable key an ephemeral key was promoted to."""
        employee_id = self._store.lookup_identity(str(key))
        return StableKey(employee_id) if employee_id else None

    async def reconcile(self, replica: ReplicaManager) -> ReconcileResult:
        """Promote every transient entry in the replica.

        A failure for one entry is logged and does not stop the others.

        Args:
            replica: Replica to scan and rewrite.

        Returns:
            ReconcileResult with promoted and failed keys.
        """
        result = ReconcileResult()
        pending = replica.transient_entries()
        if not pending:
            return result

        logger.info(f"Reconciling {len(pending)} transient entries")

        for key, record in pending:
            if is_tombstoned(record):
                logger.debug(f"Skipping tombstoned transient entry {key}")
                continue

            try:
                employee_id = await self._authority.insert_record(record)
            except Exception as e:
                logger.error(f"Identity assignment failed for {key}: {e}")
                result.failed[key] = str(e)
                continue

            if employee_id <= 0:
                logger.error(f"Authority returned invalid ID {employee_id} for {key}")
                result.failed[key] = f"invalid ID {employee_id}"
                continue

            replica.promote(key, employee_id)
            self._store.record_identity(key, employee_id)
            result.promoted[key] = employee_id

        logger.info(
            f"Reconciliation done: promoted={len(result.promoted)}, "
            f"failed={len(result.failed)}"
        )
        return result
