"""
Two-Stage Request Validation

DESIGN DECISION: Validation happens in two distinct stages, before any
record is built or written:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (type, amount, category, description, date)
- Positive amounts
- Series length within bounds for recurring requests
- Catches malformed form input

STAGE 2 - SEMANTIC VALIDATION:
- Category belongs to the owner's registry for that type
- Card purchases cannot use the card-bill category
- Needs the store, so it only runs when stage 1 passed

IMPORTANT: Validation NEVER silently fixes input.
It reports every issue at once; the engine then refuses the request.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.errors import AuthorizationError, ValidationError
from ledger_engine.models.records import (
    CATEGORY_MAX_LENGTH,
    CENT,
    DESCRIPTION_MAX_LENGTH,
    CardExpenseRequest,
    TransactionPatch,
    TransactionRequest,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    merge_categories,
)
from ledger_engine.services.storage import LedgerStoreInterface


def require_owner(owner_id: Optional[str]) -> str:
    """
    Check that the caller passed an owner identity.

    Raises:
        AuthorizationError: If owner_id is missing or blank
    """
    if owner_id is None or not str(owner_id).strip():
        raise AuthorizationError(
            "No authenticated owner. The operation was not performed."
        )
    return owner_id


def validate_date_range(date_from: date, date_to: date) -> None:
    """
    Reject ranges whose end is not after their start.

    Raises:
        ValidationError: If date_to <= date_from
    """
    if date_to <= date_from:
        issue = ValidationIssue(
            field="date_to",
            issue_type="invalid_range",
            message=f"End date ({date_to}) must be after start date ({date_from})",
        )
        raise ValidationError(issue.message, [issue])


class LedgerValidator:
    """
    Validates write requests through a two-stage pipeline.

    Stage 1: Schema validation (no storage access)
    Stage 2: Semantic validation (reads the owner's category registry)
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    def _check_amount(
        self,
        amount: Optional[Decimal],
        issues: list[ValidationIssue],
        required: bool = True,
    ) -> None:
        if amount is None:
            if required:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                ))
        elif amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
            ))
        elif amount.as_tuple().exponent < -2 and amount != amount.quantize(CENT):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount cannot have more than two decimal places",
            ))

    def _check_category(
        self,
        category: Optional[str],
        issues: list[ValidationIssue],
        required: bool = True,
    ) -> None:
        if category is None and not required:
            return
        if not category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
            ))
        elif len(category) > CATEGORY_MAX_LENGTH:
            issues.append(ValidationIssue(
                field="category",
                issue_type="too_long",
                message=f"Category cannot exceed {CATEGORY_MAX_LENGTH} characters",
            ))

    def _check_description(
        self,
        description: Optional[str],
        issues: list[ValidationIssue],
        required: bool = True,
    ) -> None:
        if description is None and not required:
            return
        if len((description or "").strip()) < 2:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required (at least 2 characters)",
            ))
        elif len(description.strip()) > DESCRIPTION_MAX_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters",
            ))

    def _check_occurrences(
        self,
        recurring: bool,
        occurrences: Optional[int],
        issues: list[ValidationIssue],
    ) -> None:
        if not recurring:
            return
        count = occurrences if occurrences is not None else self._settings.default_occurrences
        if count < 2:
            issues.append(ValidationIssue(
                field="occurrences",
                issue_type="invalid_value",
                message="A recurring entry needs at least 2 occurrences",
            ))
        elif count > self._settings.max_occurrences:
            issues.append(ValidationIssue(
                field="occurrences",
                issue_type="invalid_value",
                message=f"A series cannot have more than {self._settings.max_occurrences} occurrences",
            ))

    def _validate_transaction_schema(
        self,
        request: TransactionRequest,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if request.type is None:
            issues.append(ValidationIssue(
                field="type",
                issue_type="missing",
                message="Transaction type (income or expense) is required",
            ))
        self._check_amount(request.amount, issues)
        self._check_category(request.category, issues)
        self._check_description(request.description, issues)
        if request.date is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Date is required",
            ))
        self._check_occurrences(request.recurring, request.occurrences, issues)
        return issues

    def _validate_card_expense_schema(
        self,
        request: CardExpenseRequest,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        self._check_amount(request.amount, issues)
        self._check_category(request.category, issues)
        self._check_description(request.description, issues)
        if request.date is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Purchase date is required",
            ))
        self._check_occurrences(request.recurring, request.occurrences, issues)
        return issues

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    async def known_categories(
        self,
        owner_id: str,
        tx_type: TransactionType,
    ) -> list[str]:
        """Defaults plus the owner's additions for one type."""
        category_set = await self._store.get_category_set(owner_id)
        user_added = category_set.for_type(tx_type) if category_set else []
        return merge_categories(tx_type, user_added)

    async def _check_registry(
        self,
        owner_id: str,
        tx_type: TransactionType,
        category: str,
    ) -> list[ValidationIssue]:
        if category in await self.known_categories(owner_id, tx_type):
            return []
        return [ValidationIssue(
            field="category",
            issue_type="unknown_category",
            message=f"'{category}' is not a registered {tx_type.value} category",
        )]

    def _check_not_card_bill(self, category: Optional[str]) -> list[ValidationIssue]:
        if category == self._settings.card_bill_category:
            return [ValidationIssue(
                field="category",
                issue_type="reserved_category",
                message=f"'{category}' is reserved for closed card bills",
            )]
        return []

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    @staticmethod
    def _result(
        schema_issues: list[ValidationIssue],
        semantic_issues: list[ValidationIssue],
    ) -> ValidationResult:
        return ValidationResult(
            schema_valid=not any(i.severity == "error" for i in schema_issues),
            semantic_valid=(
                not schema_issues
                and not any(i.severity == "error" for i in semantic_issues)
            ),
            issues=schema_issues + semantic_issues,
        )

    async def validate_transaction_request(
        self,
        owner_id: str,
        request: TransactionRequest,
    ) -> ValidationResult:
        """Run both stages on a new transaction (or series) request."""
        schema_issues = self._validate_transaction_schema(request)
        semantic_issues: list[ValidationIssue] = []

        # Only run stage 2 if stage 1 passes
        if not schema_issues:
            semantic_issues = await self._check_registry(
                owner_id, request.type, request.category
            )
        return self._result(schema_issues, semantic_issues)

    async def validate_card_expense_request(
        self,
        owner_id: str,
        request: CardExpenseRequest,
    ) -> ValidationResult:
        """Run both stages on a new card purchase (or subscription)."""
        schema_issues = self._validate_card_expense_schema(request)
        semantic_issues: list[ValidationIssue] = []

        if not schema_issues:
            semantic_issues = self._check_not_card_bill(request.category)
            semantic_issues += await self._check_registry(
                owner_id, TransactionType.EXPENSE, request.category
            )
        return self._result(schema_issues, semantic_issues)

    async def validate_patch(
        self,
        owner_id: str,
        tx_type: TransactionType,
        patch: TransactionPatch,
        card_expense: bool = False,
    ) -> ValidationResult:
        """
        Validate the fields an update sets.

        Unset fields are not checked; set ones must be as valid as on
        creation. A category is only checked against the registry when
        it changes, so records carrying a removed category stay editable.
        """
        changes = patch.changes()
        schema_issues: list[ValidationIssue] = []
        self._check_amount(changes.get("amount"), schema_issues, required=False)
        if "category" in patch.model_fields_set:
            self._check_category(patch.category, schema_issues)
        if "description" in patch.model_fields_set:
            self._check_description(patch.description, schema_issues)

        semantic_issues: list[ValidationIssue] = []
        if not schema_issues and changes.get("category"):
            if card_expense:
                semantic_issues += self._check_not_card_bill(changes["category"])
            semantic_issues += await self._check_registry(
                owner_id, tx_type, changes["category"]
            )
        return self._result(schema_issues, semantic_issues)

    @staticmethod
    def raise_for(result: ValidationResult, operation: str) -> None:
        """
        Turn a failed result into a ValidationError.

        Raises:
            ValidationError: If the result holds any error-level issue
        """
        if result.has_errors:
            raise ValidationError(
                f"{operation} rejected: {result.summary()}",
                result.issues,
            )
