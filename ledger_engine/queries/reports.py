"""
Ledger Reports

DESIGN DECISION: Reports are read-only and DETERMINISTIC.
Every figure is computed from the transactions actually stored; nothing
is estimated or cached. An owner with no data gets zero totals, never
an error.

Card purchases do not appear here directly: they reach the statement
through the bill transaction created when the bill is closed.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from ledger_engine.models.records import (
    CategoryTotal,
    MonthlyBalance,
    PeriodSummary,
    Transaction,
    TransactionType,
)
from ledger_engine.services.storage import LedgerStoreInterface
from ledger_engine.validation import require_owner, validate_date_range

ZERO = Decimal("0")


def _signed(tx: Transaction) -> Decimal:
    return tx.amount if tx.type == TransactionType.INCOME else -tx.amount


class LedgerReports:
    """
    Aggregates over an owner's transactions.

    GUARANTEES:
    - Only reads; never writes
    - Date bounds are inclusive
    """

    def __init__(self, store: LedgerStoreInterface):
        self._store = store

    async def period_summary(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> PeriodSummary:
        """Income, expense and paid/unpaid split over a range."""
        require_owner(owner_id)
        if date_from and date_to:
            validate_date_range(date_from, date_to)

        transactions = await self._store.query_by_owner_and_date_range(
            owner_id, date_from, date_to
        )

        summary = PeriodSummary(date_from=date_from, date_to=date_to)
        for tx in transactions:
            if tx.type == TransactionType.INCOME:
                summary.income += tx.amount
            else:
                summary.expense += tx.amount
                if tx.is_paid:
                    summary.paid_expense += tx.amount
                else:
                    summary.unpaid_expense += tx.amount
        summary.record_count = len(transactions)
        return summary

    async def category_totals(
        self,
        owner_id: str,
        tx_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[CategoryTotal]:
        """Per-category totals, largest first."""
        require_owner(owner_id)
        if date_from and date_to:
            validate_date_range(date_from, date_to)

        transactions = await self._store.query_transactions(
            owner_id,
            date_from=date_from,
            date_to=date_to,
            tx_type=tx_type,
        )

        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[str, int] = defaultdict(int)
        for tx in transactions:
            totals[tx.category] += tx.amount
            counts[tx.category] += 1

        rows = [
            CategoryTotal(category=name, total=total, record_count=counts[name])
            for name, total in totals.items()
        ]
        # Largest first, ties by name for a stable order
        rows.sort(key=lambda r: (-r.total, r.category))
        return rows

    async def balance_before(self, owner_id: str, day: date) -> Decimal:
        """Income minus expenses strictly before day."""
        require_owner(owner_id)
        transactions = await self._store.query_by_owner_and_date_range(
            owner_id, None, day - timedelta(days=1)
        )
        return sum((_signed(tx) for tx in transactions), ZERO)

    async def monthly_balances(self, owner_id: str, year: int) -> list[MonthlyBalance]:
        """
        Twelve rows for the year.

        balance is the running balance at the end of each month, starting
        from everything recorded before January 1st.
        """
        require_owner(owner_id)
        running = await self.balance_before(owner_id, date(year, 1, 1))
        transactions = await self._store.query_by_owner_and_date_range(
            owner_id, date(year, 1, 1), date(year, 12, 31)
        )

        by_month: dict[int, list[Transaction]] = defaultdict(list)
        for tx in transactions:
            by_month[tx.date.month].append(tx)

        rows = []
        for month in range(1, 13):
            income = sum(
                (tx.amount for tx in by_month[month] if tx.type == TransactionType.INCOME),
                ZERO,
            )
            expense = sum(
                (tx.amount for tx in by_month[month] if tx.type == TransactionType.EXPENSE),
                ZERO,
            )
            running += income - expense
            rows.append(MonthlyBalance(
                month=f"{year:04d}-{month:02d}",
                income=income,
                expense=expense,
                balance=running,
            ))
        return rows
