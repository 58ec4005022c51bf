"""
Tests for the audit logger and its in-memory sink.
"""

import asyncio
from datetime import date
from decimal import Decimal

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import Settings
from ledger_engine.models import (
    AuditEvent,
    AuditEventType,
    TransactionRequest,
    TransactionType,
)
from ledger_engine.orchestrator import Ledger
from ledger_engine.services.storage import InMemoryAuditStorage, InMemoryLedgerStore

OWNER = "owner-1"


class BrokenAuditStorage(InMemoryAuditStorage):
    """Refuses every append."""

    async def append_event(self, event):
        raise RuntimeError("audit sheet unavailable")


def groceries() -> TransactionRequest:
    return TransactionRequest(
        type=TransactionType.EXPENSE,
        amount=Decimal("80.00"),
        category="Alimentação",
        description="Mercado",
        date=date(2024, 4, 2),
    )


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_events_share_caller_correlation_id(self, ledger, audit_storage):
        correlation_id = create_correlation_id()

        async def scenario():
            await ledger.series.create_transaction(
                OWNER, groceries(), correlation_id=correlation_id
            )
            return await audit_storage.get_events_by_correlation_id(correlation_id)

        events = asyncio.run(scenario())
        assert [e.event_type for e in events] == [AuditEventType.TRANSACTION_CREATED]
        assert events[0].owner_id == OWNER

    def test_recent_events_newest_first(self, ledger, audit_storage):
        async def scenario():
            await ledger.series.create_transaction(OWNER, groceries())
            await ledger.categories.ensure_initialized(OWNER)
            return await audit_storage.get_recent_events(limit=1), audit_storage.events

        recent, everything = asyncio.run(scenario())
        assert len(everything) == 2
        assert len(recent) == 1
        assert recent[0].timestamp == max(e.timestamp for e in everything)

    def test_storage_failure_does_not_break_write(self):
        store = InMemoryLedgerStore()
        ledger = Ledger(store, AuditLogger(BrokenAuditStorage()), Settings())

        created = asyncio.run(ledger.series.create_transaction(OWNER, groceries()))
        assert len(created) == 1
        assert asyncio.run(ledger.list_transactions(OWNER)) == created

    def test_log_reports_storage_failure(self):
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEvent(event_type=AuditEventType.TRANSACTION_CREATED, description="Mercado")
        assert asyncio.run(logger.log(event)) is False

    def test_log_without_storage_succeeds(self):
        event = AuditEvent(event_type=AuditEventType.CARD_CREATED, description="Card")
        assert asyncio.run(AuditLogger().log(event)) is True
