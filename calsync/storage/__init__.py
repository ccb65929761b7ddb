"""SQLite-backed stores for sync state."""

from calsync.storage.database import SyncDatabase
from calsync.storage.ledger import LedgerStore
from calsync.storage.stores import (
    ConfigurationStore,
    CredentialStore,
    HistoryStore,
    OrganizationStore,
)

__all__ = [
    "ConfigurationStore",
    "CredentialStore",
    "HistoryStore",
    "LedgerStore",
    "OrganizationStore",
    "SyncDatabase",
]
