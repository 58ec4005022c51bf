"""
Main Orchestrator for the Ledger Engine

This module ties the components together behind one object, Ledger,
which is what a UI or API layer talks to.

DESIGN DECISION: The orchestrator owns the wiring, not the rules:
- Engines hold the series, billing and category logic
- The store holds the data and commits batches atomically
- The change feed turns commits into fresh snapshots for subscribers

Every call takes the owner explicitly. There is no ambient current user.
"""

from datetime import date
from typing import Literal, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, model_validator

from ledger_engine.audit import AuditLogger
from ledger_engine.config import Settings, get_settings
from ledger_engine.engine import CardEngine, CategoryRegistry, SeriesEngine
from ledger_engine.models.records import (
    CardExpense,
    Categories,
    CreditCard,
    Transaction,
)
from ledger_engine.queries import LedgerReports
from ledger_engine.services.notifications import ChangeFeed, Subscription
from ledger_engine.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
)
from ledger_engine.validation import (
    LedgerValidator,
    require_owner,
    validate_date_range,
)

logger = structlog.get_logger(__name__)


class SubscriptionFilter(BaseModel):
    """
    What a subscription watches.

    - transactions: an owner's transactions, optionally in a date range
    - card_expenses: one card's purchases, optionally of one cycle
    - cards: the owner's cards
    - categories: the owner's effective category lists
    """

    kind: Literal["transactions", "card_expenses", "cards", "categories"]
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    card_id: Optional[UUID] = None
    billing_cycle: Optional[str] = None

    @model_validator(mode='after')
    def validate_card_filter(self):
        if self.kind == "card_expenses" and self.card_id is None:
            raise ValueError("card_expenses subscriptions need a card_id")
        return self


class Ledger:
    """
    Facade over the engines, reports and change feed.

    Usage:
        ledger = create_ledger()
        await ledger.categories.ensure_initialized(owner_id)
        await ledger.series.create_transaction(owner_id, request)
        subscription = await ledger.subscribe(owner_id, SubscriptionFilter(kind="cards"))
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        ledger_settings = settings.ledger

        self._store = store
        self._audit_logger = audit_logger
        self._feed = ChangeFeed()
        store.add_commit_listener(self._feed.publish)

        validator = LedgerValidator(store, ledger_settings)
        engine_args = dict(
            validator=validator,
            audit_logger=audit_logger,
            settings=ledger_settings,
        )
        self.series = SeriesEngine(store, **engine_args)
        self.cards = CardEngine(store, **engine_args)
        self.categories = CategoryRegistry(store, **engine_args)
        self.reports = LedgerReports(store)

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    # -------------------------------------------------------------------------
    # Read surface
    # -------------------------------------------------------------------------

    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """An owner's transactions in [date_from, date_to], newest first."""
        require_owner(owner_id)
        if date_from and date_to:
            validate_date_range(date_from, date_to)
        return await self._store.query_by_owner_and_date_range(owner_id, date_from, date_to)

    async def list_card_expenses(
        self,
        owner_id: str,
        card_id: UUID,
        billing_cycle: Optional[str] = None,
    ) -> list[CardExpense]:
        return await self.cards.list_card_expenses(owner_id, card_id, billing_cycle)

    async def list_cards(self, owner_id: str) -> list[CreditCard]:
        return await self.cards.list_cards(owner_id)

    async def list_categories(self, owner_id: str) -> Categories:
        return await self.categories.list_categories(owner_id)

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        owner_id: str,
        subscription_filter: SubscriptionFilter,
    ) -> Subscription:
        """
        Watch part of an owner's ledger.

        The returned subscription yields the current snapshot first, then
        a new one after every committed batch that may touch this owner,
        until cancelled.

        Raises:
            AuthorizationError: If owner_id is blank
            ValidationError: If the date range is inverted
            NotFoundError: If a card filter names another owner's card
        """
        require_owner(owner_id)
        f = subscription_filter

        if f.kind == "transactions":
            if f.date_from and f.date_to:
                validate_date_range(f.date_from, f.date_to)

            async def loader():
                return await self.list_transactions(owner_id, f.date_from, f.date_to)
        elif f.kind == "card_expenses":
            # Fail now rather than on the first snapshot
            await self.cards.get_card(owner_id, f.card_id)

            async def loader():
                return await self.list_card_expenses(owner_id, f.card_id, f.billing_cycle)
        elif f.kind == "cards":
            async def loader():
                return await self.list_cards(owner_id)
        else:
            async def loader():
                return await self.list_categories(owner_id)

        subscription = await self._feed.subscribe(loader, owner_id)
        logger.info(
            "subscription_started",
            owner_id=owner_id,
            kind=f.kind,
            subscribers=self._feed.subscriber_count,
        )
        return subscription

    def close(self) -> None:
        """Detach from the store. Live subscriptions stop receiving snapshots."""
        self._store.remove_commit_listener(self._feed.publish)


def create_ledger(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> Ledger:
    """
    Factory function to build a Ledger from settings.

    Args:
        settings: Defaults to get_settings()
        store: Overrides the configured backend (used by tests)
        audit_storage: Overrides the configured audit sink

    Returns:
        A wired Ledger
    """
    settings = settings or get_settings()
    backend = settings.ledger.storage_backend

    if store is None:
        if backend == "google_sheets":
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            store = GoogleSheetsLedgerStore(sheets_client)
            if audit_storage is None:
                audit_storage = GoogleSheetsAuditStorage(sheets_client)
        else:
            store = InMemoryLedgerStore()

    if audit_storage is None:
        audit_storage = InMemoryAuditStorage()

    logger.info(
        "ledger_created",
        backend=type(store).__name__,
        audit=type(audit_storage).__name__,
        environment=settings.ledger.app_environment,
    )
    return Ledger(store, AuditLogger(audit_storage), settings)
