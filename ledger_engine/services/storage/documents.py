"""
Document-backed store

Both concrete backends keep records as plain JSON-compatible documents
(dicts) grouped by record kind, and filter in Python. This module holds
what they share: document conversion, the query logic, and batch
staging. Backends only say how to load a collection and how to publish
a staged batch.

Staging never mutates what was loaded. A batch is applied to copies of
the touched collections, and the backend publishes the copies in one
step, so a failure anywhere before publishing leaves storage untouched.
"""

import asyncio
from abc import abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ledger_engine.errors import AtomicityFailure, StorageError
from ledger_engine.models.records import (
    RECORD_MODELS,
    BatchOp,
    CardExpense,
    CreditCard,
    LedgerRecord,
    PutOp,
    RecordKind,
    Transaction,
    TransactionType,
)
from ledger_engine.services.storage.interface import LedgerStoreInterface

Collection = dict[str, dict]

logger = structlog.get_logger(__name__)


def record_to_document(record: BaseModel) -> dict:
    """Serialize a record to a JSON-compatible document."""
    return record.model_dump(mode="json")


def document_to_record(
    kind: RecordKind,
    key: str,
    document: dict,
) -> Optional[LedgerRecord]:
    """
    Parse a stored document.

    Returns None (and logs) for documents that fail validation, e.g. a
    missing or malformed date. One bad row must not break a whole read.
    """
    try:
        return RECORD_MODELS[kind].model_validate(document)
    except SchemaError as e:
        logger.warning(
            "skipping_invalid_record",
            kind=kind.value,
            key=key,
            error_count=e.error_count(),
            fields=[".".join(str(p) for p in err["loc"]) for err in e.errors()],
        )
        return None


def stage_batch(
    loaded: dict[RecordKind, Collection],
    ops: list[BatchOp],
) -> dict[RecordKind, Collection]:
    """
    Apply ops to copies of the loaded collections.

    Args:
        loaded: Current contents of every collection the ops touch
        ops: Puts and deletes, applied in order

    Returns:
        New contents of the touched collections
    """
    staged = {kind: dict(collection) for kind, collection in loaded.items()}
    for op in ops:
        if isinstance(op, PutOp):
            staged[op.kind][op.key] = record_to_document(op.record)
        else:
            staged[op.kind].pop(op.key, None)
    return staged


def touched_kinds(ops: list[BatchOp]) -> list[RecordKind]:
    """Record kinds a batch writes to, in first-touch order."""
    kinds: list[RecordKind] = []
    for op in ops:
        if op.kind not in kinds:
            kinds.append(op.kind)
    return kinds


class DocumentLedgerStore(LedgerStoreInterface):
    """
    Ledger store over per-kind document collections.

    Writers are serialized by an asyncio lock; readers never take it.
    """

    def __init__(self):
        super().__init__()
        self._write_lock = asyncio.Lock()

    @abstractmethod
    async def _load(self, kind: RecordKind) -> Collection:
        """Current documents of one kind, keyed by record key."""
        pass

    @abstractmethod
    async def _commit(self, staged: dict[RecordKind, Collection]) -> None:
        """
        Publish the staged collections in one step.

        Must either publish all of them or raise and publish none.
        """
        pass

    async def _records(self, kind: RecordKind) -> list:
        documents = await self._load(kind)
        records = []
        for key, document in documents.items():
            record = document_to_record(kind, key, document)
            if record is not None:
                records.append(record)
        return records

    async def get_by_id(
        self,
        kind: RecordKind,
        record_id: UUID | str,
    ) -> Optional[LedgerRecord]:
        key = str(record_id)
        documents = await self._load(kind)
        document = documents.get(key)
        if document is None:
            return None
        return document_to_record(kind, key, document)

    async def query_by_series(
        self,
        kind: RecordKind,
        series_id: UUID,
    ) -> list[Transaction] | list[CardExpense]:
        if kind not in (RecordKind.TRANSACTION, RecordKind.CARD_EXPENSE):
            raise StorageError(f"{kind.value} records do not form series")
        members = [
            record for record in await self._records(kind)
            if record.series_id == series_id
        ]
        members.sort(key=lambda r: r.date)
        return members

    async def query_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
    ) -> list[Transaction]:
        transactions = []
        for tx in await self._records(RecordKind.TRANSACTION):
            if tx.owner_id != owner_id:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            if tx_type and tx.type != tx_type:
                continue
            if category is not None and tx.category != category:
                continue
            transactions.append(tx)

        # Newest first, like a bank statement
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions

    async def query_card_expenses(
        self,
        card_id: UUID,
        billing_cycle: Optional[str] = None,
    ) -> list[CardExpense]:
        expenses = [
            expense for expense in await self._records(RecordKind.CARD_EXPENSE)
            if expense.card_id == card_id
            and (billing_cycle is None or expense.billing_cycle == billing_cycle)
        ]
        expenses.sort(key=lambda e: e.date)
        return expenses

    async def query_cards_by_owner(self, owner_id: str) -> list[CreditCard]:
        cards = [
            card for card in await self._records(RecordKind.CREDIT_CARD)
            if card.owner_id == owner_id
        ]
        cards.sort(key=lambda c: c.name.lower())
        return cards

    async def batch_apply(self, ops: list[BatchOp]) -> None:
        if not ops:
            return

        async with self._write_lock:
            try:
                loaded = {kind: await self._load(kind) for kind in touched_kinds(ops)}
                staged = stage_batch(loaded, ops)
                await self._commit(staged)
            except AtomicityFailure:
                raise
            except Exception as e:
                raise AtomicityFailure(
                    f"Batch of {len(ops)} operation(s) was not committed: {e}"
                ) from e

        await self._notify_committed(ops)
