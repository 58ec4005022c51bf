"""Query package."""

from ledger_engine.queries.reports import LedgerReports

__all__ = ["LedgerReports"]
