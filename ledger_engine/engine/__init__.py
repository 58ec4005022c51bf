"""Ledger engines: series, cards and categories."""

from ledger_engine.engine.base import EngineBase
from ledger_engine.engine.cards import (
    CardEngine,
    billing_cycle_for,
    due_date_for,
    parse_cycle,
)
from ledger_engine.engine.categories import CategoryRegistry
from ledger_engine.engine.series import (
    SeriesEngine,
    add_months,
    expand_series,
    select_from,
)

__all__ = [
    "CardEngine",
    "CategoryRegistry",
    "EngineBase",
    "SeriesEngine",
    "add_months",
    "billing_cycle_for",
    "due_date_for",
    "expand_series",
    "parse_cycle",
    "select_from",
]
