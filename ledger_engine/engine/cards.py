"""
Credit Card Engine

Cards, card purchases and bill closing.

BILLING CYCLES:
A purchase belongs to the cycle "YYYY-MM" of its own month, unless it
was made after the card's closing day, in which case it rolls into the
following month (December rolls into January of the next year). The
cycle is computed once and stored; changing a card's closing day later
never moves existing purchases.

CLOSING A BILL:
All unbilled purchases of a cycle are marked billed and one expense
transaction for their total is created, dated on the card's due day in
the cycle month. Both happen in a single batch. Billed purchases are
frozen history: single edits on them are refused and scoped edits pass
over them.
"""

import asyncio
import calendar
import re
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from ledger_engine.engine.base import EngineBase
from ledger_engine.engine.series import (
    apply_changes,
    expand_series,
    occurrences_for,
    select_from,
)
from ledger_engine.errors import (
    FrozenRecordError,
    NothingToBillError,
    NotFoundError,
    ValidationError,
)
from ledger_engine.models.records import (
    BillClosing,
    CardExpense,
    CardExpenseRequest,
    CardExpenseUpdate,
    CreditCard,
    CreditCardRequest,
    DeleteOp,
    EditScope,
    PutOp,
    RecordKind,
    Transaction,
    TransactionType,
)
from ledger_engine.validation import require_owner

CYCLE_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def billing_cycle_for(purchase_date: date, closing_day: int) -> str:
    """
    Cycle label a purchase falls into.

    >>> billing_cycle_for(date(2024, 3, 5), 10)
    '2024-03'
    >>> billing_cycle_for(date(2024, 12, 15), 10)
    '2025-01'
    """
    year, month = purchase_date.year, purchase_date.month
    if purchase_date.day > closing_day:
        month += 1
        if month > 12:
            month = 1
            year += 1
    return f"{year:04d}-{month:02d}"


def parse_cycle(cycle: str) -> tuple[int, int]:
    """
    Split a "YYYY-MM" label.

    Raises:
        ValidationError: If the label is malformed
    """
    match = CYCLE_PATTERN.match(cycle or "")
    if not match:
        raise ValidationError(f"Invalid billing cycle '{cycle}', expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def due_date_for(cycle: str, due_day: int) -> date:
    """Due day within the cycle month, clamped to the month's length."""
    year, month = parse_cycle(cycle)
    return date(year, month, min(due_day, calendar.monthrange(year, month)[1]))


def unbilled_total(expenses: list[CardExpense]) -> Decimal:
    return sum((e.amount for e in expenses if not e.is_billed), Decimal("0"))


class CardEngine(EngineBase):
    """
    Credit cards, their purchases and bill closing.

    Card ownership is the access boundary: a purchase is reachable only
    through a card of the calling owner.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # (card_id, cycle) -> [lock, callers holding or waiting on it]
        self._close_locks: dict[tuple[UUID, str], list] = {}

    @property
    def pending_closings(self) -> int:
        """Card cycles with a close in progress or waiting."""
        return len(self._close_locks)

    @asynccontextmanager
    async def _close_lock(self, card_id: UUID, cycle: str):
        """Serialize closes of one card cycle; the entry goes with its last user."""
        key = (card_id, cycle)
        entry = self._close_locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._close_locks[key]

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    async def get_card(self, owner_id: str, card_id: UUID) -> CreditCard:
        """
        Raises:
            NotFoundError: If the card does not exist for this owner
        """
        require_owner(owner_id)
        card = await self._store.get_by_id(RecordKind.CREDIT_CARD, card_id)
        if card is None or card.owner_id != owner_id:
            raise NotFoundError(f"Card {card_id} not found")
        return card

    async def list_cards(self, owner_id: str) -> list[CreditCard]:
        require_owner(owner_id)
        return await self._store.query_cards_by_owner(owner_id)

    async def add_card(
        self,
        owner_id: str,
        request: CreditCardRequest,
        correlation_id: Optional[UUID] = None,
    ) -> CreditCard:
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)

        card = CreditCard(owner_id=owner_id, **request.model_dump())
        await self._commit(owner_id, "add_card", [PutOp(record=card)], correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_card_changed(
                owner_id=owner_id,
                card_id=card.id,
                action="created",
                card_name=card.name,
                correlation_id=correlation_id,
            )
        return card

    async def update_card(
        self,
        owner_id: str,
        card_id: UUID,
        request: CreditCardRequest,
        correlation_id: Optional[UUID] = None,
    ) -> CreditCard:
        """Replace a card's settings. Existing purchases keep their cycles."""
        correlation_id = self._correlation(correlation_id)
        card = await self.get_card(owner_id, card_id)

        updated = apply_changes(card, request.model_dump())
        await self._commit(owner_id, "update_card", [PutOp(record=updated)], correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_card_changed(
                owner_id=owner_id,
                card_id=card.id,
                action="updated",
                card_name=updated.name,
                correlation_id=correlation_id,
            )
        return updated

    async def delete_card(
        self,
        owner_id: str,
        card_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a card. Its purchases are left in place."""
        correlation_id = self._correlation(correlation_id)
        card = await self.get_card(owner_id, card_id)

        await self._commit(
            owner_id,
            "delete_card",
            [DeleteOp(kind=RecordKind.CREDIT_CARD, key=str(card.id))],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_card_changed(
                owner_id=owner_id,
                card_id=card.id,
                action="deleted",
                card_name=card.name,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Card expenses
    # -------------------------------------------------------------------------

    async def _owned_expense(
        self,
        owner_id: str,
        expense_id: UUID,
    ) -> tuple[CardExpense, CreditCard]:
        require_owner(owner_id)
        expense = await self._store.get_by_id(RecordKind.CARD_EXPENSE, expense_id)
        if expense is None:
            raise NotFoundError(f"Card expense {expense_id} not found")
        try:
            card = await self.get_card(owner_id, expense.card_id)
        except NotFoundError:
            raise NotFoundError(f"Card expense {expense_id} not found") from None
        return expense, card

    async def _card_series(self, card: CreditCard, series_id: UUID) -> list[CardExpense]:
        return [
            e for e in await self._store.query_by_series(RecordKind.CARD_EXPENSE, series_id)
            if e.card_id == card.id
        ]

    async def list_card_expenses(
        self,
        owner_id: str,
        card_id: UUID,
        billing_cycle: Optional[str] = None,
    ) -> list[CardExpense]:
        """Purchases of a card, optionally of one cycle, oldest first."""
        card = await self.get_card(owner_id, card_id)
        if billing_cycle is not None:
            parse_cycle(billing_cycle)
            return await self._store.query_by_card_and_cycle(card.id, billing_cycle)
        return await self._store.query_by_card(card.id)

    async def add_card_expense(
        self,
        owner_id: str,
        card_id: UUID,
        request: CardExpenseRequest,
        correlation_id: Optional[UUID] = None,
    ) -> list[CardExpense]:
        """
        Record a purchase, or a monthly subscription when recurring.

        Each occurrence gets the cycle of its own date.

        Returns:
            The created purchases, oldest first
        """
        correlation_id = self._correlation(correlation_id)
        card = await self.get_card(owner_id, card_id)

        result = await self._validator.validate_card_expense_request(owner_id, request)
        try:
            self._validator.raise_for(result, "add_card_expense")
        except ValidationError as e:
            await self._rejected(owner_id, "add_card_expense", e, correlation_id)
            raise

        count = occurrences_for(request, self._settings.default_occurrences)
        base = dict(
            card_id=card.id,
            amount=request.amount,
            category=request.category,
            description=request.description,
        )
        if count == 1:
            expenses = [CardExpense(
                date=request.date,
                billing_cycle=billing_cycle_for(request.date, card.closing_day),
                **base,
            )]
        else:
            series_id = uuid4()
            expenses = [
                CardExpense(
                    date=when,
                    billing_cycle=billing_cycle_for(when, card.closing_day),
                    series_id=series_id,
                    installment_label=label,
                    **base,
                )
                for when, label in expand_series(request.date, count)
            ]

        await self._commit(
            owner_id,
            "add_card_expense",
            [PutOp(record=e) for e in expenses],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_created(
                owner_id=owner_id,
                entity_type="card_expense",
                entity_id=str(expenses[0].series_id or expenses[0].id),
                count=len(expenses),
                correlation_id=correlation_id,
                series=count > 1,
            )
        return expenses

    async def update_card_expense(
        self,
        owner_id: str,
        expense_id: UUID,
        update: CardExpenseUpdate,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> list[CardExpense]:
        """
        Edit one purchase, or it and the later unbilled ones of its series.

        Raises:
            FrozenRecordError: On a single edit of a billed purchase
        """
        correlation_id = self._correlation(correlation_id)
        expense, card = await self._owned_expense(owner_id, expense_id)
        changes = update.changes()

        try:
            if scope == EditScope.FUTURE and expense.is_series_member:
                if "date" in changes:
                    raise ValidationError(
                        "The date cannot be changed for future occurrences"
                    )
                patch = update.series_patch()
                targets = [
                    e for e in select_from(await self._card_series(card, expense.series_id), expense.date)
                    if not e.is_billed
                ]
            else:
                if expense.is_billed:
                    raise FrozenRecordError(
                        f"Card expense {expense.id} belongs to a closed bill and cannot be changed"
                    )
                patch = update.series_patch()
                targets = [expense]

            result = await self._validator.validate_patch(
                owner_id, TransactionType.EXPENSE, patch, card_expense=True
            )
            self._validator.raise_for(result, "update_card_expense")
        except ValidationError as e:
            await self._rejected(owner_id, "update_card_expense", e, correlation_id)
            raise

        if not targets or not changes:
            return targets

        updated = []
        for target in targets:
            target_changes = dict(changes)
            if "date" in target_changes:
                target_changes["billing_cycle"] = billing_cycle_for(
                    target_changes["date"], card.closing_day
                )
            updated.append(apply_changes(target, target_changes))

        await self._commit(
            owner_id,
            "update_card_expense",
            [PutOp(record=e) for e in updated],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_updated(
                owner_id=owner_id,
                entity_type="card_expense",
                entity_id=str(expense.id),
                scope=scope.value,
                changes=changes,
                count=len(updated),
                correlation_id=correlation_id,
            )
        return updated

    async def delete_card_expense(
        self,
        owner_id: str,
        expense_id: UUID,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete one purchase, or it and the later unbilled ones of its series.

        Returns:
            Number of purchases deleted
        """
        correlation_id = self._correlation(correlation_id)
        expense, card = await self._owned_expense(owner_id, expense_id)

        if scope == EditScope.FUTURE and expense.is_series_member:
            targets = [
                e for e in select_from(await self._card_series(card, expense.series_id), expense.date)
                if not e.is_billed
            ]
        else:
            if expense.is_billed:
                error = FrozenRecordError(
                    f"Card expense {expense.id} belongs to a closed bill and cannot be deleted"
                )
                await self._rejected(owner_id, "delete_card_expense", error, correlation_id)
                raise error
            targets = [expense]

        if not targets:
            return 0

        await self._commit(
            owner_id,
            "delete_card_expense",
            [DeleteOp(kind=RecordKind.CARD_EXPENSE, key=str(e.id)) for e in targets],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_deleted(
                owner_id=owner_id,
                entity_type="card_expense",
                entity_id=str(expense.id),
                scope=scope.value,
                count=len(targets),
                correlation_id=correlation_id,
            )
        return len(targets)

    # -------------------------------------------------------------------------
    # Balances and bills
    # -------------------------------------------------------------------------

    async def open_balance(self, owner_id: str, card_id: UUID, cycle: str) -> Decimal:
        """Sum of the unbilled purchases of one cycle."""
        card = await self.get_card(owner_id, card_id)
        parse_cycle(cycle)
        return unbilled_total(await self._store.query_by_card_and_cycle(card.id, cycle))

    async def available_limit(self, owner_id: str, card_id: UUID) -> Decimal:
        """Card limit minus every unbilled purchase, across all cycles."""
        card = await self.get_card(owner_id, card_id)
        return card.limit - unbilled_total(await self._store.query_by_card(card.id))

    async def close_bill(
        self,
        owner_id: str,
        card_id: UUID,
        cycle: str,
        correlation_id: Optional[UUID] = None,
    ) -> BillClosing:
        """
        Close a card's bill for one cycle.

        Marks every unbilled purchase of the cycle billed and creates one
        unpaid expense for their total, in a single batch.

        Raises:
            NothingToBillError: If the cycle has no open balance
            NotFoundError: If the card does not exist for this owner
        """
        correlation_id = self._correlation(correlation_id)
        card = await self.get_card(owner_id, card_id)
        try:
            parse_cycle(cycle)
        except ValidationError as e:
            await self._rejected(owner_id, "close_bill", e, correlation_id)
            raise

        async with self._close_lock(card.id, cycle):
            expenses = await self._store.query_by_card_and_cycle(card.id, cycle)
            unbilled = [e for e in expenses if not e.is_billed]
            total = unbilled_total(unbilled)
            if total <= 0:
                error = NothingToBillError(
                    f"Nothing to bill for {card.name} in {cycle}"
                )
                await self._rejected(owner_id, "close_bill", error, correlation_id)
                raise error

            bill = Transaction(
                owner_id=owner_id,
                type=TransactionType.EXPENSE,
                amount=total,
                category=self._settings.card_bill_category,
                description=f"Fatura {card.name} ({cycle})",
                date=due_date_for(cycle, card.due_day),
                is_paid=False,
            )
            ops = [PutOp(record=apply_changes(e, {"is_billed": True})) for e in unbilled]
            ops.append(PutOp(record=bill))
            await self._commit(owner_id, "close_bill", ops, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_bill_closed(
                owner_id=owner_id,
                card_id=card.id,
                billing_cycle=cycle,
                total=str(total),
                expense_count=len(unbilled),
                transaction_id=bill.id,
                correlation_id=correlation_id,
            )

        return BillClosing(
            card_id=card.id,
            billing_cycle=cycle,
            total=total,
            billed_expense_ids=[e.id for e in unbilled],
            transaction=bill,
        )


__all__ = [
    "CardEngine",
    "billing_cycle_for",
    "due_date_for",
    "parse_cycle",
    "unbilled_total",
]
