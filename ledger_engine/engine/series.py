"""
Recurring Series Engine

A recurring request becomes N independent monthly records that share a
series_id and carry an installment label "k/N". After creation each
member is an ordinary record; the series only matters for scoped edits.

SCOPES:
- SINGLE: exactly one record
- FUTURE: the pivot record and every later member of its series

CRITICAL: a FUTURE edit never touches a member dated before the pivot.
Labels are fixed at creation and never renumbered, so deleting the tail
of a 12-month series leaves "1/12".."5/12" behind.
"""

import calendar
from datetime import date
from typing import Optional, Sequence, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ledger_engine.errors import NotFoundError, ValidationError
from ledger_engine.models.records import (
    DeleteOp,
    EditScope,
    PutOp,
    RecordKind,
    Transaction,
    TransactionPatch,
    TransactionRequest,
    TransactionUpdate,
    ValidationIssue,
)
from ledger_engine.engine.base import EngineBase
from ledger_engine.validation import require_owner

RecordT = TypeVar("RecordT", bound=BaseModel)


# =============================================================================
# SERIES HELPERS (shared with card expenses)
# =============================================================================

def add_months(base: date, months: int) -> date:
    """
    Same day-of-month, `months` later, clamped to the month's last day.

    Always computed from the base date, so Jan 31 gives Feb 29 and then
    Mar 31 rather than drifting to the 29th.
    """
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def expand_series(base_date: date, occurrences: int) -> list[tuple[date, str]]:
    """Dates and installment labels for a monthly series."""
    return [
        (add_months(base_date, k), f"{k + 1}/{occurrences}")
        for k in range(occurrences)
    ]


def select_from(members: Sequence[RecordT], from_date: date) -> list[RecordT]:
    """Members dated on or after from_date."""
    return [m for m in members if m.date >= from_date]


def apply_changes(record: RecordT, changes: dict) -> RecordT:
    """
    Copy of record with changes applied, fully re-validated.

    Raises:
        ValidationError: If the result breaks a stored-record constraint
    """
    try:
        return type(record).model_validate({**record.model_dump(), **changes})
    except SchemaError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(p) for p in err["loc"]) or "record",
                issue_type="invalid_value",
                message=err["msg"],
            )
            for err in e.errors()
        ]
        summary = "; ".join(i.message for i in issues)
        raise ValidationError(f"Change rejected: {summary}", issues) from e


def occurrences_for(request, default: int) -> int:
    """How many records a request generates."""
    if not request.recurring:
        return 1
    return request.occurrences if request.occurrences is not None else default


class SeriesEngine(EngineBase):
    """
    Creates, edits and deletes transactions and transaction series.

    Every operation takes the owner explicitly and only ever sees that
    owner's records: a record of another owner is reported as not found.
    """

    async def _owned_transaction(self, owner_id: str, transaction_id: UUID) -> Transaction:
        tx = await self._store.get_by_id(RecordKind.TRANSACTION, transaction_id)
        if tx is None or tx.owner_id != owner_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return tx

    async def _owned_series(self, owner_id: str, series_id: UUID) -> list[Transaction]:
        members = [
            tx for tx in await self._store.query_by_series(RecordKind.TRANSACTION, series_id)
            if tx.owner_id == owner_id
        ]
        if not members:
            raise NotFoundError(f"Series {series_id} not found")
        return members

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        owner_id: str,
        request: TransactionRequest,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Record a transaction, or a whole monthly series when recurring.

        Returns:
            The created records, oldest first

        Raises:
            AuthorizationError: If owner_id is blank
            ValidationError: If the request fails validation
            AtomicityFailure: If the batch was not committed
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)

        result = await self._validator.validate_transaction_request(owner_id, request)
        try:
            self._validator.raise_for(result, "create_transaction")
        except ValidationError as e:
            await self._rejected(owner_id, "create_transaction", e, correlation_id)
            raise

        count = occurrences_for(request, self._settings.default_occurrences)
        base = dict(
            owner_id=owner_id,
            type=request.type,
            amount=request.amount,
            category=request.category,
            description=request.description,
            is_paid=request.is_paid,
        )
        if count == 1:
            records = [Transaction(date=request.date, **base)]
        else:
            series_id = uuid4()
            records = [
                Transaction(
                    date=when,
                    series_id=series_id,
                    installment_label=label,
                    **base,
                )
                for when, label in expand_series(request.date, count)
            ]

        await self._commit(
            owner_id,
            "create_transaction",
            [PutOp(record=tx) for tx in records],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_created(
                owner_id=owner_id,
                entity_type="transaction",
                entity_id=str(records[0].series_id or records[0].id),
                count=len(records),
                correlation_id=correlation_id,
                series=count > 1,
            )
        return records

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update_series(
        self,
        owner_id: str,
        series_id: UUID,
        from_date: date,
        patch: TransactionPatch,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Patch every member of a series dated on or after from_date.

        Returns:
            The updated members, oldest first (empty if none matched)
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)

        members = await self._owned_series(owner_id, series_id)
        result = await self._validator.validate_patch(owner_id, members[0].type, patch)
        try:
            self._validator.raise_for(result, "update_series")
        except ValidationError as e:
            await self._rejected(owner_id, "update_series", e, correlation_id)
            raise

        changes = patch.changes()
        tail = select_from(members, from_date)
        if not tail or not changes:
            return tail

        updated = [apply_changes(tx, changes) for tx in tail]
        await self._commit(
            owner_id,
            "update_series",
            [PutOp(record=tx) for tx in updated],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_updated(
                owner_id=owner_id,
                entity_type="transaction",
                entity_id=str(series_id),
                scope=EditScope.FUTURE.value,
                changes=changes,
                count=len(updated),
                correlation_id=correlation_id,
            )
        return updated

    async def update_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        update: TransactionUpdate,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Edit one transaction, or it and the rest of its series.

        FUTURE only accepts amount, description and category, and acts
        like SINGLE on a transaction that is not part of a series.
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)
        tx = await self._owned_transaction(owner_id, transaction_id)

        if scope == EditScope.FUTURE and tx.is_series_member:
            series_only = set(update.changes()) - set(TransactionPatch.model_fields)
            if series_only:
                error = ValidationError(
                    "Only amount, description and category can be changed "
                    f"for future occurrences (got: {', '.join(sorted(series_only))})"
                )
                await self._rejected(owner_id, "update_transaction", error, correlation_id)
                raise error
            return await self.update_series(
                owner_id,
                tx.series_id,
                tx.date,
                update.series_patch(),
                correlation_id=correlation_id,
            )

        changes = update.changes()
        new_type = changes.get("type", tx.type)
        check = update.series_patch()
        if new_type != tx.type and "category" not in changes:
            # The kept category must also exist for the new type
            check = TransactionPatch(category=tx.category, **check.changes())
        result = await self._validator.validate_patch(owner_id, new_type, check)
        try:
            self._validator.raise_for(result, "update_transaction")
        except ValidationError as e:
            await self._rejected(owner_id, "update_transaction", e, correlation_id)
            raise

        if not changes:
            return [tx]

        updated = apply_changes(tx, changes)
        await self._commit(owner_id, "update_transaction", [PutOp(record=updated)], correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_updated(
                owner_id=owner_id,
                entity_type="transaction",
                entity_id=str(tx.id),
                scope=EditScope.SINGLE.value,
                changes=changes,
                count=1,
                correlation_id=correlation_id,
            )
        return [updated]

    async def set_paid(
        self,
        owner_id: str,
        transaction_id: UUID,
        is_paid: bool = True,
    ) -> Transaction:
        """Mark a single transaction paid or unpaid."""
        updated = await self.update_transaction(
            owner_id,
            transaction_id,
            TransactionUpdate(is_paid=is_paid),
        )
        return updated[0]

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def delete_series(
        self,
        owner_id: str,
        series_id: UUID,
        from_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete every member dated on or after from_date.

        Returns:
            Number of records deleted
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)

        members = await self._owned_series(owner_id, series_id)
        tail = select_from(members, from_date)
        if not tail:
            return 0

        await self._commit(
            owner_id,
            "delete_series",
            [DeleteOp(kind=RecordKind.TRANSACTION, key=str(tx.id)) for tx in tail],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_deleted(
                owner_id=owner_id,
                entity_type="transaction",
                entity_id=str(series_id),
                scope=EditScope.FUTURE.value,
                count=len(tail),
                correlation_id=correlation_id,
            )
        return len(tail)

    async def delete_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Delete one transaction, or it and the rest of its series."""
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)
        tx = await self._owned_transaction(owner_id, transaction_id)

        if scope == EditScope.FUTURE and tx.is_series_member:
            return await self.delete_series(
                owner_id, tx.series_id, tx.date, correlation_id=correlation_id
            )

        await self._commit(
            owner_id,
            "delete_transaction",
            [DeleteOp(kind=RecordKind.TRANSACTION, key=str(tx.id))],
            correlation_id,
        )

        if self._audit_logger:
            await self._audit_logger.log_deleted(
                owner_id=owner_id,
                entity_type="transaction",
                entity_id=str(tx.id),
                scope=EditScope.SINGLE.value,
                count=1,
                correlation_id=correlation_id,
            )
        return 1


__all__ = [
    "SeriesEngine",
    "add_months",
    "apply_changes",
    "expand_series",
    "occurrences_for",
    "select_from",
]
