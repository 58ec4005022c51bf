"""
Tests for ledger reports.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.errors import ValidationError
from ledger_engine.models import TransactionRequest, TransactionType

OWNER = "owner-1"


async def seed(ledger):
    entries = [
        (TransactionType.INCOME, "100.00", "Freelance", date(2023, 12, 20), False),
        (TransactionType.INCOME, "1000.00", "Salário", date(2024, 1, 5), False),
        (TransactionType.EXPENSE, "200.00", "Moradia", date(2024, 1, 10), True),
        (TransactionType.EXPENSE, "50.00", "Alimentação", date(2024, 1, 20), False),
        (TransactionType.EXPENSE, "25.00", "Alimentação", date(2024, 3, 2), True),
    ]
    for tx_type, amount, category, day, paid in entries:
        await ledger.series.create_transaction(OWNER, TransactionRequest(
            description="Lançamento",
            type=tx_type,
            amount=Decimal(amount),
            category=category,
            date=day,
            is_paid=paid,
        ))


class TestPeriodSummary:
    """Tests for period totals."""

    def test_january_summary(self, ledger):
        async def scenario():
            await seed(ledger)
            return await ledger.reports.period_summary(
                OWNER, date(2024, 1, 1), date(2024, 1, 31)
            )

        summary = asyncio.run(scenario())
        assert summary.income == Decimal("1000.00")
        assert summary.expense == Decimal("250.00")
        assert summary.balance == Decimal("750.00")
        assert summary.paid_expense == Decimal("200.00")
        assert summary.unpaid_expense == Decimal("50.00")
        assert summary.record_count == 3

    def test_empty_period(self, ledger):
        summary = asyncio.run(ledger.reports.period_summary(
            OWNER, date(2030, 1, 1), date(2030, 1, 31)
        ))
        assert summary.record_count == 0
        assert summary.balance == Decimal("0")

    @pytest.mark.parametrize("date_to", [date(2024, 1, 1), date(2023, 12, 31)])
    def test_inverted_range_rejected(self, ledger, date_to):
        with pytest.raises(ValidationError):
            asyncio.run(ledger.reports.period_summary(OWNER, date(2024, 1, 1), date_to))


class TestCategoryTotals:
    """Tests for per-category totals."""

    def test_expense_totals_largest_first(self, ledger):
        async def scenario():
            await seed(ledger)
            return await ledger.reports.category_totals(OWNER, TransactionType.EXPENSE)

        totals = asyncio.run(scenario())
        assert [(t.category, t.total, t.record_count) for t in totals] == [
            ("Moradia", Decimal("200.00"), 1),
            ("Alimentação", Decimal("75.00"), 2),
        ]


class TestBalances:
    """Tests for carried-over balances."""

    def test_balance_before(self, ledger):
        async def scenario():
            await seed(ledger)
            return await ledger.reports.balance_before(OWNER, date(2024, 1, 20))

        # The expense on the 20th itself is excluded
        assert asyncio.run(scenario()) == Decimal("900.00")

    def test_monthly_balances(self, ledger):
        async def scenario():
            await seed(ledger)
            return await ledger.reports.monthly_balances(OWNER, 2024)

        months = asyncio.run(scenario())
        assert len(months) == 12
        assert months[0].month == "2024-01"
        assert months[0].income == Decimal("1000.00")
        assert months[0].expense == Decimal("250.00")
        assert months[0].balance == Decimal("850.00")
        assert months[1].balance == Decimal("850.00")
        assert months[2].expense == Decimal("25.00")
        assert months[2].balance == Decimal("825.00")
        assert months[11].balance == Decimal("825.00")
