"""
Storage Services Package

Provides the abstract ledger store and its backends: in-memory for tests
and embedding, Google Sheets for a durable, owner-readable ledger.
"""

from ledger_engine.services.storage.interface import (
    AtomicityFailure,
    AuditStorageInterface,
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)
from ledger_engine.services.storage.documents import DocumentLedgerStore
from ledger_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from ledger_engine.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentLedgerStore",
    "LedgerStoreInterface",
    # Exceptions
    "AtomicityFailure",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
