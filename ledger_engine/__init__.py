"""
Ledger Engine - Source Package

The recurring-series and billing-cycle engine behind a personal finance
ledger: income/expense transactions, monthly series, credit-card bills
and per-owner categories.

DESIGN PRINCIPLES:
1. Every multi-record change is one atomic batch
2. The past is never rewritten by a future-scoped edit
3. Billed card charges are frozen history
4. Fail early, fail visibly
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Engine Team"
