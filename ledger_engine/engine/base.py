"""
Plumbing shared by the engines: commit a batch, audit the outcome.
"""

from typing import Optional
from uuid import UUID

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.errors import AtomicityFailure, LedgerError, ValidationError
from ledger_engine.models.records import BatchOp
from ledger_engine.services.storage import LedgerStoreInterface
from ledger_engine.validation import LedgerValidator


class EngineBase:
    """Holds the store, validator and audit logger every engine needs."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._validator = validator or LedgerValidator(store, self._settings)
        self._audit_logger = audit_logger

    @staticmethod
    def _correlation(correlation_id: Optional[UUID]) -> UUID:
        return correlation_id or create_correlation_id()

    async def _commit(
        self,
        owner_id: str,
        operation: str,
        ops: list[BatchOp],
        correlation_id: UUID,
    ) -> None:
        """
        Apply a batch, auditing it if the store refuses.

        Raises:
            AtomicityFailure: Re-raised after the failure is audited
        """
        try:
            await self._store.batch_apply(ops)
        except AtomicityFailure as e:
            if self._audit_logger:
                await self._audit_logger.log_batch_failed(
                    owner_id=owner_id,
                    operation=operation,
                    op_count=len(ops),
                    error_message=e.message,
                    correlation_id=correlation_id,
                )
            raise

    async def _rejected(
        self,
        owner_id: Optional[str],
        operation: str,
        error: LedgerError,
        correlation_id: UUID,
    ) -> None:
        """Audit a request refused before anything was written."""
        if not self._audit_logger:
            return
        issues = None
        if isinstance(error, ValidationError):
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in error.issues
            ]
        await self._audit_logger.log_rejected(
            owner_id=owner_id,
            operation=operation,
            reason=error.message,
            correlation_id=correlation_id,
            issues=issues,
        )
