"""
Core Data Models for the Ledger Engine

These models define the strict schemas for every record the engine
stores, plus the lenient request/patch models callers submit.

DESIGN DECISION: Stored records (Transaction, CardExpense, CreditCard,
CategorySet) carry hard constraints, so a malformed row can never be
built from storage. Requests are deliberately lenient: the validator
inspects them and reports every problem at once instead of failing on
the first bad field.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS AND CONSTANTS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"


class EditScope(str, Enum):
    """
    How far an edit or delete reaches inside a series.

    SINGLE touches exactly one record. FUTURE touches the record and every
    later member of its series; earlier members are never touched.
    """
    SINGLE = "single"
    FUTURE = "future"


class RecordKind(str, Enum):
    """Collections the store keeps, one per record type."""
    TRANSACTION = "transaction"
    CARD_EXPENSE = "card_expense"
    CREDIT_CARD = "credit_card"
    CATEGORY_SET = "category_set"


CARD_BILL_CATEGORY = "Fatura do Cartão"

# System defaults are permanent: they can be neither renamed nor removed.
INCOME_CATEGORIES: tuple[str, ...] = (
    "Salário",
    "Freelance",
    "Investimentos",
    "Vendas",
    "Outras Receitas",
)

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Moradia",
    "Alimentação",
    "Transporte",
    "Saúde",
    "Educação",
    "Lazer",
    "Compras",
    "Contas",
    CARD_BILL_CATEGORY,
    "Outras Despesas",
)

DEFAULT_CATEGORIES: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.INCOME: INCOME_CATEGORIES,
    TransactionType.EXPENSE: EXPENSE_CATEGORIES,
}

CATEGORY_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 200

CENT = Decimal("0.01")


def to_cents(value):
    """Drop zeros past the cent, so 10.000 is stored as 10.00."""
    if (
        isinstance(value, Decimal)
        and value.is_finite()
        and value.as_tuple().exponent < -2
        and value == value.quantize(CENT)
    ):
        return value.quantize(CENT)
    return value


Money = Annotated[Decimal, BeforeValidator(to_cents), Field(gt=0, decimal_places=2)]
CardLimit = Annotated[Decimal, BeforeValidator(to_cents), Field(ge=0, decimal_places=2)]


def merge_categories(tx_type: TransactionType, user_added: list[str]) -> list[str]:
    """System defaults first, then user additions not already listed."""
    merged = list(DEFAULT_CATEGORIES[tx_type])
    for name in user_added:
        if name not in merged:
            merged.append(name)
    return merged


# =============================================================================
# STORED RECORDS
# =============================================================================

class _SeriesMember(BaseModel):
    """Fields shared by anything that can belong to a monthly series."""

    series_id: Optional[UUID] = Field(
        default=None,
        description="Shared by every occurrence generated from one request"
    )
    installment_label: Optional[str] = Field(
        default=None,
        pattern=r"^\d+/\d+$",
        description="Position in the series at creation time, e.g. '3/12'"
    )

    @model_validator(mode='after')
    def validate_series_fields(self):
        """series_id and installment_label come as a pair."""
        if (self.series_id is None) != (self.installment_label is None):
            raise ValueError(
                "series_id and installment_label must be set together"
            )
        return self

    @property
    def is_series_member(self) -> bool:
        return self.series_id is not None


class Transaction(_SeriesMember):
    """
    An income or expense entry on the owner's statement.

    Standalone when series_id is absent. Series members share type and
    are one calendar month apart from the first occurrence.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Money
    category: str = Field(..., min_length=1, max_length=CATEGORY_MAX_LENGTH)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    date: dt.date
    is_paid: bool = False


class CreditCard(BaseModel):
    """A credit card and the days that drive its billing cycle."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    limit: CardLimit
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)


class CardExpense(_SeriesMember):
    """
    A purchase on a credit card.

    CRITICAL: billing_cycle is fixed at creation from the purchase date
    and the card's closing day. Once is_billed is true the record is
    historical and must not change again.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    card_id: UUID
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    amount: Money
    category: str = Field(..., min_length=1, max_length=CATEGORY_MAX_LENGTH)
    date: dt.date
    is_billed: bool = False
    billing_cycle: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class CategorySet(BaseModel):
    """
    Categories an owner added on top of the system defaults.

    Keyed by owner_id: one document per owner.
    """

    owner_id: str = Field(..., min_length=1)
    income: list[str] = Field(default_factory=list)
    expense: list[str] = Field(default_factory=list)

    def for_type(self, tx_type: TransactionType) -> list[str]:
        return self.income if tx_type == TransactionType.INCOME else self.expense


LedgerRecord = Union[Transaction, CardExpense, CreditCard, CategorySet]

RECORD_MODELS: dict[RecordKind, type[BaseModel]] = {
    RecordKind.TRANSACTION: Transaction,
    RecordKind.CARD_EXPENSE: CardExpense,
    RecordKind.CREDIT_CARD: CreditCard,
    RecordKind.CATEGORY_SET: CategorySet,
}


def kind_of(record: BaseModel) -> RecordKind:
    """Map a record instance to the collection it lives in."""
    for kind, model in RECORD_MODELS.items():
        if isinstance(record, model):
            return kind
    raise TypeError(f"Not a ledger record: {type(record).__name__}")


def record_key(record: BaseModel) -> str:
    """Storage key of a record. Category sets are keyed by owner."""
    if isinstance(record, CategorySet):
        return record.owner_id
    return str(record.id)


# =============================================================================
# BATCH OPERATIONS
# =============================================================================

class PutOp(BaseModel):
    """Insert or fully replace one record."""

    op: Literal["put"] = "put"
    record: Union[Transaction, CardExpense, CreditCard, CategorySet]

    @property
    def kind(self) -> RecordKind:
        return kind_of(self.record)

    @property
    def key(self) -> str:
        return record_key(self.record)


class DeleteOp(BaseModel):
    """Remove one record. Deleting a missing record is a no-op."""

    op: Literal["delete"] = "delete"
    kind: RecordKind
    key: str


BatchOp = Union[PutOp, DeleteOp]


# =============================================================================
# REQUESTS AND PATCHES (lenient - checked by the validator)
# =============================================================================

class TransactionRequest(BaseModel):
    """
    What a form submits to record income or an expense.

    When recurring is set, occurrences monthly records are generated.
    occurrences defaults to the configured series length.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    description: str = ""
    date: Optional[dt.date] = None
    is_paid: bool = False
    recurring: bool = False
    occurrences: Optional[int] = None


class TransactionPatch(BaseModel):
    """
    Fields a "this and future" update may change.

    date, type, series_id and installment_label are immutable across a
    series and deliberately absent here.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    description: Optional[str] = None
    category: Optional[str] = None

    def changes(self) -> dict:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class TransactionUpdate(TransactionPatch):
    """Single-record update: the patch fields plus type, date and is_paid."""

    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    is_paid: Optional[bool] = None

    def series_patch(self) -> TransactionPatch:
        """Narrow to the fields allowed across a series."""
        return TransactionPatch(**{
            k: v for k, v in self.changes().items()
            if k in TransactionPatch.model_fields
        })


class CardExpenseRequest(BaseModel):
    """A purchase to record on a card, optionally a monthly subscription."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    category: Optional[str] = None
    description: str = ""
    date: Optional[dt.date] = None
    recurring: bool = False
    occurrences: Optional[int] = None


class CardExpensePatch(TransactionPatch):
    """Fields a scoped card-expense update may change."""
    pass


class CardExpenseUpdate(CardExpensePatch):
    """Single card-expense update. Changing the date moves the cycle."""

    date: Optional[dt.date] = None

    def series_patch(self) -> CardExpensePatch:
        return CardExpensePatch(**{
            k: v for k, v in self.changes().items()
            if k in CardExpensePatch.model_fields
        })


class CreditCardRequest(BaseModel):
    """Card creation/edit form values."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    limit: CardLimit
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)


# =============================================================================
# RESULTS
# =============================================================================

class Categories(BaseModel):
    """Effective category lists for an owner: defaults then user additions."""

    income: list[str] = Field(default_factory=list)
    expense: list[str] = Field(default_factory=list)

    def for_type(self, tx_type: TransactionType) -> list[str]:
        return self.income if tx_type == TransactionType.INCOME else self.expense


class BillClosing(BaseModel):
    """Outcome of closing one card's bill for one cycle."""

    card_id: UUID
    billing_cycle: str
    total: Decimal
    billed_expense_ids: list[UUID]
    transaction: Transaction


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_category')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (presence, ranges)
    Stage 2: Semantic validation (registry and card checks)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    def summary(self) -> str:
        """One line listing every error, for the exception message."""
        return "; ".join(i.message for i in self.issues if i.severity == "error")


# =============================================================================
# REPORTS
# =============================================================================

class PeriodSummary(BaseModel):
    """Totals of an owner's transactions over a date range."""

    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    paid_expense: Decimal = Decimal("0")
    unpaid_expense: Decimal = Decimal("0")
    record_count: int = 0

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


class CategoryTotal(BaseModel):
    category: str
    total: Decimal
    record_count: int


class MonthlyBalance(BaseModel):
    """One month of the yearly view. balance carries over from earlier months."""

    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
