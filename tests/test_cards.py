"""
Tests for cards, card purchases and bill closing.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.audit import AuditLogger
from ledger_engine.config import Settings
from ledger_engine.engine.cards import billing_cycle_for, due_date_for, parse_cycle
from ledger_engine.errors import (
    AtomicityFailure,
    FrozenRecordError,
    NothingToBillError,
    NotFoundError,
    ValidationError,
)
from ledger_engine.models import (
    CARD_BILL_CATEGORY,
    AuditEventType,
    BillClosing,
    CardExpenseRequest,
    CardExpenseUpdate,
    CreditCardRequest,
    EditScope,
    RecordKind,
    TransactionType,
)
from ledger_engine.orchestrator import Ledger
from ledger_engine.services.storage import InMemoryLedgerStore

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


class FlakyStore(InMemoryLedgerStore):
    """Refuses commits while fail is set."""

    fail = False

    async def _commit(self, staged):
        if self.fail:
            raise RuntimeError("unavailable")
        await super()._commit(staged)


def nubank() -> CreditCardRequest:
    return CreditCardRequest(
        name="Nubank",
        limit=Decimal("1000.00"),
        closing_day=10,
        due_day=20,
    )


def purchase(amount: str, day: date, recurring=False, occurrences=None) -> CardExpenseRequest:
    return CardExpenseRequest(
        amount=Decimal(amount),
        category="Compras",
        description="Compra",
        date=day,
        recurring=recurring,
        occurrences=occurrences,
    )


async def card_with_march_purchases(ledger):
    """Three purchases in cycle 2024-03 totalling 150.00, one in 2024-04."""
    card = await ledger.cards.add_card(OWNER, nubank())
    for amount, day in (
        ("50.00", date(2024, 3, 1)),
        ("60.00", date(2024, 3, 5)),
        ("40.00", date(2024, 3, 10)),
        ("30.00", date(2024, 3, 15)),
    ):
        await ledger.cards.add_card_expense(OWNER, card.id, purchase(amount, day))
    return card


class TestBillingCycle:
    """Tests for cycle assignment and due dates."""

    def test_purchase_before_closing_day(self):
        assert billing_cycle_for(date(2024, 3, 5), 10) == "2024-03"

    def test_purchase_on_closing_day(self):
        assert billing_cycle_for(date(2024, 3, 10), 10) == "2024-03"

    def test_purchase_after_closing_day(self):
        assert billing_cycle_for(date(2024, 3, 15), 10) == "2024-04"

    def test_december_rolls_year(self):
        assert billing_cycle_for(date(2024, 12, 15), 10) == "2025-01"

    def test_due_date_clamped(self):
        assert due_date_for("2024-02", 31) == date(2024, 2, 29)
        assert due_date_for("2024-03", 20) == date(2024, 3, 20)

    @pytest.mark.parametrize("cycle", ["2024-13", "2024-3", "March", ""])
    def test_malformed_cycle(self, cycle):
        with pytest.raises(ValidationError):
            parse_cycle(cycle)


class TestCards:
    """Tests for card CRUD."""

    def test_add_and_list(self, ledger):
        async def scenario():
            await ledger.cards.add_card(OWNER, nubank())
            await ledger.cards.add_card(OWNER, CreditCardRequest(
                name="Inter", limit=Decimal("500.00"), closing_day=1, due_day=8,
            ))
            await ledger.cards.add_card(OTHER_OWNER, nubank())
            return await ledger.list_cards(OWNER)

        cards = asyncio.run(scenario())
        assert [c.name for c in cards] == ["Inter", "Nubank"]

    def test_update_card_keeps_existing_cycles(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            expenses = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("10.00", date(2024, 3, 15))
            )
            request = nubank()
            request.closing_day = 20
            updated = await ledger.cards.update_card(OWNER, card.id, request)
            stored = await ledger.store.get_by_id(RecordKind.CARD_EXPENSE, expenses[0].id)
            return updated, stored

        updated, stored = asyncio.run(scenario())
        assert updated.closing_day == 20
        assert stored.billing_cycle == "2024-04"

    def test_delete_card_does_not_cascade(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("10.00", date(2024, 3, 1))
            )
            await ledger.cards.delete_card(OWNER, card.id)
            return card, await ledger.store.query_by_card(card.id)

        card, orphans = asyncio.run(scenario())
        assert len(orphans) == 1

    def test_other_owner_card_not_found(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            await ledger.cards.get_card(OTHER_OWNER, card.id)

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())


class TestCardExpenses:
    """Tests for purchases and subscriptions."""

    def test_cycle_assigned_from_closing_day(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            early = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("10.00", date(2024, 3, 5))
            )
            late = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("10.00", date(2024, 3, 15))
            )
            return early[0], late[0]

        early, late = asyncio.run(scenario())
        assert early.billing_cycle == "2024-03"
        assert late.billing_cycle == "2024-04"
        assert early.is_billed is False

    def test_subscription_gets_cycle_per_occurrence(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            return await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("29.90", date(2024, 11, 15), recurring=True, occurrences=3)
            )

        expenses = asyncio.run(scenario())
        assert [e.billing_cycle for e in expenses] == ["2024-12", "2025-01", "2025-02"]
        assert [e.installment_label for e in expenses] == ["1/3", "2/3", "3/3"]
        assert len({e.series_id for e in expenses}) == 1

    def test_card_bill_category_rejected(self, ledger, store):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            request = purchase("10.00", date(2024, 3, 1))
            request.category = CARD_BILL_CATEGORY
            await ledger.cards.add_card_expense(OWNER, card.id, request)

        with pytest.raises(ValidationError):
            asyncio.run(scenario())
        assert store.document_count(RecordKind.CARD_EXPENSE) == 0

    def test_single_date_change_recomputes_cycle(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            expenses = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("10.00", date(2024, 3, 5))
            )
            return await ledger.cards.update_card_expense(
                OWNER, expenses[0].id, CardExpenseUpdate(date=date(2024, 3, 25))
            )

        updated = asyncio.run(scenario())
        assert updated[0].billing_cycle == "2024-04"

    def test_list_card_expenses_by_cycle(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            return await ledger.list_card_expenses(OWNER, card.id, "2024-03")

        expenses = asyncio.run(scenario())
        assert [e.amount for e in expenses] == [
            Decimal("50.00"), Decimal("60.00"), Decimal("40.00"),
        ]


class TestBalances:
    """Tests for open balance and available limit."""

    def test_open_balance_and_limit(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            return (
                await ledger.cards.open_balance(OWNER, card.id, "2024-03"),
                await ledger.cards.open_balance(OWNER, card.id, "2024-04"),
                await ledger.cards.available_limit(OWNER, card.id),
            )

        march, april, available = asyncio.run(scenario())
        assert march == Decimal("150.00")
        assert april == Decimal("30.00")
        assert available == Decimal("820.00")


class TestCloseBill:
    """Tests for bill closing."""

    def test_close_bill(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            closing = await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            march = await ledger.list_card_expenses(OWNER, card.id, "2024-03")
            balance = await ledger.cards.open_balance(OWNER, card.id, "2024-03")
            available = await ledger.cards.available_limit(OWNER, card.id)
            statement = await ledger.list_transactions(OWNER)
            return closing, march, balance, available, statement

        closing, march, balance, available, statement = asyncio.run(scenario())
        assert isinstance(closing, BillClosing)
        assert closing.total == Decimal("150.00")
        assert len(closing.billed_expense_ids) == 3
        assert all(e.is_billed for e in march)
        assert balance == Decimal("0")
        assert available == Decimal("970.00")

        assert statement == [closing.transaction]
        bill = closing.transaction
        assert bill.type == TransactionType.EXPENSE
        assert bill.category == CARD_BILL_CATEGORY
        assert bill.amount == Decimal("150.00")
        assert bill.date == date(2024, 3, 20)
        assert bill.description == "Fatura Nubank (2024-03)"
        assert bill.is_paid is False
        assert bill.series_id is None

    def test_second_close_rejected(self, ledger, store):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            await ledger.cards.close_bill(OWNER, card.id, "2024-03")

        with pytest.raises(NothingToBillError):
            asyncio.run(scenario())
        assert store.document_count(RecordKind.TRANSACTION) == 1

    def test_empty_cycle_rejected(self, ledger, store):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            await ledger.cards.close_bill(OWNER, card.id, "2024-03")

        with pytest.raises(NothingToBillError):
            asyncio.run(scenario())
        assert store.document_count(RecordKind.TRANSACTION) == 0

    def test_concurrent_closes_bill_once(self, ledger, store):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            return await asyncio.gather(
                ledger.cards.close_bill(OWNER, card.id, "2024-03"),
                ledger.cards.close_bill(OWNER, card.id, "2024-03"),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())
        assert sum(isinstance(r, BillClosing) for r in results) == 1
        assert sum(isinstance(r, NothingToBillError) for r in results) == 1
        assert store.document_count(RecordKind.TRANSACTION) == 1

    def test_failed_close_leaves_cycle_open(self, audit_storage):
        """A refused batch bills nothing and creates no bill."""
        store = FlakyStore()
        ledger = Ledger(store, AuditLogger(audit_storage), Settings())

        async def scenario():
            card = await card_with_march_purchases(ledger)
            store.fail = True
            with pytest.raises(AtomicityFailure):
                await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            store.fail = False
            return (
                await ledger.list_card_expenses(OWNER, card.id, "2024-03"),
                await ledger.list_transactions(OWNER),
                await ledger.cards.open_balance(OWNER, card.id, "2024-03"),
            )

        march, statement, balance = asyncio.run(scenario())
        assert len(march) == 3
        assert not any(e.is_billed for e in march)
        assert not any(t.category == CARD_BILL_CATEGORY for t in statement)
        assert statement == []
        assert balance == Decimal("150.00")
        assert audit_storage.events[-1].event_type == AuditEventType.BATCH_FAILED

    def test_close_locks_released(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            with pytest.raises(NothingToBillError):
                await ledger.cards.close_bill(OWNER, card.id, "2024-05")

        asyncio.run(scenario())
        assert ledger.cards.pending_closings == 0

    def test_close_bill_audited(self, ledger, audit_storage):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            return await ledger.cards.close_bill(OWNER, card.id, "2024-03")

        closing = asyncio.run(scenario())
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.BILL_CLOSED
        assert event.details["total"] == "150.00"
        assert event.details["transaction_id"] == str(closing.transaction.id)

    def test_malformed_cycle_rejected(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            await ledger.cards.close_bill(OWNER, card.id, "2024-3")

        with pytest.raises(ValidationError):
            asyncio.run(scenario())


class TestFrozenExpenses:
    """Billed purchases cannot change."""

    def test_single_update_of_billed_expense_rejected(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            closing = await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            await ledger.cards.update_card_expense(
                OWNER,
                closing.billed_expense_ids[0],
                CardExpenseUpdate(amount=Decimal("1.00")),
            )

        with pytest.raises(FrozenRecordError):
            asyncio.run(scenario())

    def test_single_delete_of_billed_expense_rejected(self, ledger):
        async def scenario():
            card = await card_with_march_purchases(ledger)
            closing = await ledger.cards.close_bill(OWNER, card.id, "2024-03")
            await ledger.cards.delete_card_expense(OWNER, closing.billed_expense_ids[0])

        with pytest.raises(FrozenRecordError):
            asyncio.run(scenario())

    def test_scoped_update_skips_billed_members(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            expenses = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("29.90", date(2024, 3, 15), recurring=True, occurrences=3)
            )
            await ledger.cards.close_bill(OWNER, card.id, "2024-04")
            updated = await ledger.cards.update_card_expense(
                OWNER,
                expenses[0].id,
                CardExpenseUpdate(amount=Decimal("34.90")),
                EditScope.FUTURE,
            )
            members = await ledger.store.query_by_series(
                RecordKind.CARD_EXPENSE, expenses[0].series_id
            )
            return updated, members

        updated, members = asyncio.run(scenario())
        assert len(updated) == 2
        assert [m.amount for m in members] == [
            Decimal("29.90"), Decimal("34.90"), Decimal("34.90"),
        ]
        assert [m.is_billed for m in members] == [True, False, False]

    def test_scoped_delete_skips_billed_members(self, ledger):
        async def scenario():
            card = await ledger.cards.add_card(OWNER, nubank())
            expenses = await ledger.cards.add_card_expense(
                OWNER, card.id, purchase("29.90", date(2024, 3, 15), recurring=True, occurrences=3)
            )
            await ledger.cards.close_bill(OWNER, card.id, "2024-04")
            deleted = await ledger.cards.delete_card_expense(
                OWNER, expenses[0].id, EditScope.FUTURE
            )
            return deleted, await ledger.store.query_by_card(card.id)

        deleted, remaining = asyncio.run(scenario())
        assert deleted == 2
        assert len(remaining) == 1
        assert remaining[0].is_billed is True
