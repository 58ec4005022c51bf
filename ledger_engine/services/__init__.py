"""Services package."""

from ledger_engine.services.notifications import ChangeFeed, Subscription
from ledger_engine.services.storage import (
    AtomicityFailure,
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Change notification
    "ChangeFeed",
    "Subscription",
    # Storage services
    "AtomicityFailure",
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "StorageError",
]
