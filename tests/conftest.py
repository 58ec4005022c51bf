"""Shared fixtures: an in-memory ledger with an inspectable audit sink."""

import pytest

from ledger_engine.audit import AuditLogger
from ledger_engine.config import LedgerSettings, Settings
from ledger_engine.orchestrator import Ledger
from ledger_engine.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(store, audit_storage) -> Ledger:
    return Ledger(store, AuditLogger(audit_storage), Settings())
