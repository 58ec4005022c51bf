"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the engine must conform to these schemas.
"""

from ledger_engine.models.records import (
    CARD_BILL_CATEGORY,
    CATEGORY_MAX_LENGTH,
    DEFAULT_CATEGORIES,
    DESCRIPTION_MAX_LENGTH,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    RECORD_MODELS,
    BatchOp,
    BillClosing,
    CardExpense,
    CardExpensePatch,
    CardExpenseRequest,
    CardExpenseUpdate,
    Categories,
    CategorySet,
    CategoryTotal,
    CreditCard,
    CreditCardRequest,
    DeleteOp,
    EditScope,
    LedgerRecord,
    MonthlyBalance,
    PeriodSummary,
    PutOp,
    RecordKind,
    Transaction,
    TransactionPatch,
    TransactionRequest,
    TransactionType,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    kind_of,
    merge_categories,
    record_key,
)
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "CARD_BILL_CATEGORY",
    "CATEGORY_MAX_LENGTH",
    "DEFAULT_CATEGORIES",
    "DESCRIPTION_MAX_LENGTH",
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "RECORD_MODELS",
    "BatchOp",
    "BillClosing",
    "CardExpense",
    "CardExpensePatch",
    "CardExpenseRequest",
    "CardExpenseUpdate",
    "Categories",
    "CategorySet",
    "CreditCard",
    "CreditCardRequest",
    "DeleteOp",
    "EditScope",
    "LedgerRecord",
    "PutOp",
    "RecordKind",
    "Transaction",
    "TransactionPatch",
    "TransactionRequest",
    "TransactionType",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    "kind_of",
    "merge_categories",
    "record_key",
    # Reports
    "CategoryTotal",
    "MonthlyBalance",
    "PeriodSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
