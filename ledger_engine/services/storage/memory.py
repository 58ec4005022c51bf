"""
In-Memory Storage Implementation

Used by tests and by any embedding that does not need durability.

Collections live in one top-level dict. A committed batch replaces that
dict with a new one in a single assignment, so a reader holding the old
reference keeps a consistent pre-batch view and a reader arriving later
sees the whole batch.
"""

from typing import Iterable
from uuid import UUID

from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.records import RecordKind
from ledger_engine.services.storage.documents import (
    Collection,
    DocumentLedgerStore,
)
from ledger_engine.services.storage.interface import AuditStorageInterface


class InMemoryLedgerStore(DocumentLedgerStore):
    """Ledger store holding documents in process memory."""

    def __init__(self):
        super().__init__()
        self._collections: dict[RecordKind, Collection] = {
            kind: {} for kind in RecordKind
        }

    async def _load(self, kind: RecordKind) -> Collection:
        return self._collections[kind]

    async def _commit(self, staged: dict[RecordKind, Collection]) -> None:
        collections = dict(self._collections)
        collections.update(staged)
        self._collections = collections

    def load_documents(
        self,
        kind: RecordKind,
        documents: Iterable[tuple[str, dict]],
    ) -> None:
        """
        Seed raw documents, bypassing model validation.

        Used to import existing data as-is; rows that do not parse are
        kept and skipped on read, exactly like a document store would.
        """
        collections = dict(self._collections)
        collection = dict(collections[kind])
        for key, document in documents:
            collection[key] = dict(document)
        collections[kind] = collection
        self._collections = collections

    def document_count(self, kind: RecordKind) -> int:
        """Raw documents of a kind, valid or not."""
        return len(self._collections[kind])


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)
