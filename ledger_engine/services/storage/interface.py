"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the whole engine in memory for tests
2. Keep Google Sheets (or a real document store later) swappable
3. Keep series and billing logic decoupled from persistence

The one hard requirement on any backend is batch_apply: a list of puts
and deletes that commits entirely or not at all. Every multi-record
operation of the engine goes through it.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from ledger_engine.errors import (
    AtomicityFailure,
    ConnectionError,
    NotFoundError,
    StorageError,
)
from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.records import (
    BatchOp,
    CardExpense,
    CategorySet,
    CreditCard,
    LedgerRecord,
    PutOp,
    RecordKind,
    Transaction,
    TransactionType,
)

CommitListener = Callable[[list[BatchOp]], Awaitable[None]]

logger = structlog.get_logger(__name__)


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (in-memory, Google Sheets, a document
    database) must implement the abstract methods. Reads return parsed
    records; stored rows that no longer parse are skipped and logged.
    """

    def __init__(self):
        self._commit_listeners: list[CommitListener] = []

    # -------------------------------------------------------------------------
    # Abstract operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_by_id(
        self,
        kind: RecordKind,
        record_id: UUID | str,
    ) -> Optional[LedgerRecord]:
        """
        Retrieve one record by its key.

        Args:
            kind: Collection to look in
            record_id: Record id (owner id for category sets)

        Returns:
            The record if found and valid, None otherwise
        """
        pass

    @abstractmethod
    async def query_by_series(
        self,
        kind: RecordKind,
        series_id: UUID,
    ) -> list[Transaction] | list[CardExpense]:
        """
        All members of a series, oldest first.

        Args:
            kind: TRANSACTION or CARD_EXPENSE
            series_id: The shared series identifier
        """
        pass

    @abstractmethod
    async def query_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
    ) -> list[Transaction]:
        """
        An owner's transactions with optional filters.

        Args:
            owner_id: Owner whose records to return
            date_from: Only records on or after this date
            date_to: Only records on or before this date
            tx_type: Only income or only expenses
            category: Exact category match

        Returns:
            Matching transactions, newest first
        """
        pass

    @abstractmethod
    async def query_card_expenses(
        self,
        card_id: UUID,
        billing_cycle: Optional[str] = None,
    ) -> list[CardExpense]:
        """
        Expenses of one card, optionally restricted to one cycle.

        Returns:
            Matching expenses, oldest first
        """
        pass

    @abstractmethod
    async def query_cards_by_owner(self, owner_id: str) -> list[CreditCard]:
        """All cards of an owner, by name."""
        pass

    @abstractmethod
    async def batch_apply(self, ops: list[BatchOp]) -> None:
        """
        Commit a list of puts and deletes atomically.

        Raises:
            AtomicityFailure: If the batch could not be committed.
                Nothing from the batch is visible afterwards.
        """
        pass

    # -------------------------------------------------------------------------
    # Conveniences built on the abstract operations
    # -------------------------------------------------------------------------

    async def put(self, record: LedgerRecord) -> None:
        """Insert or replace a single record."""
        await self.batch_apply([PutOp(record=record)])

    async def query_by_owner_and_date_range(
        self,
        owner_id: str,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> list[Transaction]:
        """Transactions of an owner within [date_from, date_to]."""
        return await self.query_transactions(
            owner_id,
            date_from=date_from,
            date_to=date_to,
        )

    async def query_by_card_and_cycle(
        self,
        card_id: UUID,
        billing_cycle: str,
    ) -> list[CardExpense]:
        return await self.query_card_expenses(card_id, billing_cycle)

    async def query_by_card(self, card_id: UUID) -> list[CardExpense]:
        return await self.query_card_expenses(card_id)

    async def get_category_set(self, owner_id: str) -> Optional[CategorySet]:
        return await self.get_by_id(RecordKind.CATEGORY_SET, owner_id)

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def add_commit_listener(self, listener: CommitListener) -> None:
        """Register a coroutine called with the ops of every committed batch."""
        self._commit_listeners.append(listener)

    def remove_commit_listener(self, listener: CommitListener) -> None:
        if listener in self._commit_listeners:
            self._commit_listeners.remove(listener)

    async def _notify_committed(self, ops: list[BatchOp]) -> None:
        """
        Run commit listeners.

        The batch is already durable at this point, so a failing listener
        is logged rather than reported as a failed write.
        """
        for listener in list(self._commit_listeners):
            try:
                await listener(ops)
            except Exception as e:
                logger.error(
                    "commit_listener_failed",
                    error=str(e),
                    op_count=len(ops),
                )


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one caller action, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


__all__ = [
    "AtomicityFailure",
    "AuditStorageInterface",
    "CommitListener",
    "ConnectionError",
    "LedgerStoreInterface",
    "NotFoundError",
    "StorageError",
]
