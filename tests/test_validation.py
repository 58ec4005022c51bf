"""
Tests for the two-stage request validator.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.config import LedgerSettings
from ledger_engine.errors import AuthorizationError, ValidationError
from ledger_engine.models import (
    CARD_BILL_CATEGORY,
    CATEGORY_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    CardExpenseRequest,
    CategorySet,
    TransactionPatch,
    TransactionRequest,
    TransactionType,
)
from ledger_engine.services.storage import InMemoryLedgerStore
from ledger_engine.validation import LedgerValidator, require_owner, validate_date_range

OWNER = "owner-1"


def validator(store=None, **settings) -> LedgerValidator:
    return LedgerValidator(store or InMemoryLedgerStore(), LedgerSettings(**settings))


class TestOwnerAndRanges:
    """Tests for the standalone checks."""

    def test_require_owner(self):
        assert require_owner(OWNER) == OWNER
        with pytest.raises(AuthorizationError):
            require_owner(" ")

    def test_date_range(self):
        validate_date_range(date(2024, 1, 1), date(2024, 1, 2))
        with pytest.raises(ValidationError) as exc_info:
            validate_date_range(date(2024, 1, 2), date(2024, 1, 2))
        assert exc_info.value.issues[0].issue_type == "invalid_range"


class TestTransactionRequests:
    """Tests for transaction request validation."""

    def test_valid_request(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest(
            description="Lançamento",
            type=TransactionType.EXPENSE,
            amount=Decimal("10.00"),
            category="Lazer",
            date=date(2024, 1, 1),
        )))
        assert result.is_valid is True
        assert result.issues == []

    def test_schema_failure_skips_semantic_stage(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest(
            description="Lançamento",
            type=TransactionType.EXPENSE,
            amount=Decimal("-1"),
            category="Não existe",
            date=date(2024, 1, 1),
        )))
        assert result.schema_valid is False
        assert result.semantic_valid is False
        assert [i.field for i in result.issues] == ["amount"]

    def test_unknown_category_is_semantic(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest(
            description="Lançamento",
            type=TransactionType.INCOME,
            amount=Decimal("10.00"),
            category="Lazer",
            date=date(2024, 1, 1),
        )))
        assert result.schema_valid is True
        assert result.semantic_valid is False
        assert result.issues[0].issue_type == "unknown_category"

    def test_user_category_accepted(self):
        store = InMemoryLedgerStore()
        asyncio.run(store.put(CategorySet(owner_id=OWNER, income=["Aluguéis"])))
        result = asyncio.run(validator(store).validate_transaction_request(OWNER, TransactionRequest(
            description="Lançamento",
            type=TransactionType.INCOME,
            amount=Decimal("10.00"),
            category="Aluguéis",
            date=date(2024, 1, 1),
        )))
        assert result.is_valid is True

    def test_configured_series_limit(self):
        result = asyncio.run(validator(max_occurrences=24).validate_transaction_request(
            OWNER,
            TransactionRequest(
                description="Lançamento",
                type=TransactionType.EXPENSE,
                amount=Decimal("10.00"),
                category="Lazer",
                date=date(2024, 1, 1),
                recurring=True,
                occurrences=25,
            ),
        ))
        assert [i.field for i in result.issues] == ["occurrences"]

    def test_trailing_zeros_accepted(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest(
            description="Lançamento",
            type=TransactionType.EXPENSE,
            amount=Decimal("10.000"),
            category="Lazer",
            date=date(2024, 1, 1),
        )))
        assert result.is_valid is True

    def test_overlong_fields_reported(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest(
            description="d" * (DESCRIPTION_MAX_LENGTH + 1),
            type=TransactionType.EXPENSE,
            amount=Decimal("10.00"),
            category="c" * (CATEGORY_MAX_LENGTH + 1),
            date=date(2024, 1, 1),
        )))
        assert result.schema_valid is False
        assert {(i.field, i.issue_type) for i in result.issues} == {
            ("category", "too_long"),
            ("description", "too_long"),
        }

    def test_raise_for_carries_issues(self):
        result = asyncio.run(validator().validate_transaction_request(OWNER, TransactionRequest()))
        with pytest.raises(ValidationError) as exc_info:
            LedgerValidator.raise_for(result, "create_transaction")
        assert exc_info.value.message.startswith("create_transaction rejected")
        assert len(exc_info.value.issues) == 5


class TestCardExpenseRequests:
    """Tests for card purchase validation."""

    def test_card_bill_category_reserved(self):
        result = asyncio.run(validator().validate_card_expense_request(OWNER, CardExpenseRequest(
            description="Lançamento",
            amount=Decimal("10.00"),
            category=CARD_BILL_CATEGORY,
            date=date(2024, 1, 1),
        )))
        assert [i.issue_type for i in result.issues] == ["reserved_category"]

    def test_income_category_rejected(self):
        result = asyncio.run(validator().validate_card_expense_request(OWNER, CardExpenseRequest(
            description="Lançamento",
            amount=Decimal("10.00"),
            category="Salário",
            date=date(2024, 1, 1),
        )))
        assert result.has_errors is True


class TestPatches:
    """Tests for update validation."""

    def test_empty_patch_is_valid(self):
        result = asyncio.run(validator().validate_patch(
            OWNER, TransactionType.EXPENSE, TransactionPatch()
        ))
        assert result.is_valid is True

    def test_blank_category_rejected(self):
        result = asyncio.run(validator().validate_patch(
            OWNER, TransactionType.EXPENSE, TransactionPatch(category="")
        ))
        assert result.schema_valid is False

    def test_overlong_description_in_patch(self):
        result = asyncio.run(validator().validate_patch(
            OWNER,
            TransactionType.EXPENSE,
            TransactionPatch(description="d" * (DESCRIPTION_MAX_LENGTH + 1)),
        ))
        assert [i.issue_type for i in result.issues] == ["too_long"]

    def test_amount_with_too_many_places(self):
        result = asyncio.run(validator().validate_patch(
            OWNER, TransactionType.EXPENSE, TransactionPatch(amount=Decimal("1.005"))
        ))
        assert result.issues[0].field == "amount"
