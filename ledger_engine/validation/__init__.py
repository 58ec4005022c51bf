"""Validation package."""

from ledger_engine.validation.validator import (
    LedgerValidator,
    require_owner,
    validate_date_range,
)

__all__ = ["LedgerValidator", "require_owner", "validate_date_range"]
