"""Local durable storage for rostersync.

Holds the materialized employee table, the change log (outbox), the identity
map of promoted ephemeral keys, sync status, and the saved replica snapshot.
"""

from .local_store import LocalStore, LocalStoreError

__all__ = ["LocalStore", "LocalStoreError"]
