"""
Audit Logger

DESIGN DECISION: Every committed write, and every rejected or failed
one, is logged. This provides:
1. A history of series edits and bill closings
2. Debugging capability when a batch fails
3. Owners can see what changed and when

The audit logger:
- Never blocks the operation it describes on the audit sink
- Gracefully handles failures (doesn't fail a committed write if logging fails)
- Supports correlation IDs to trace the events of one caller action
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_engine.models.audit import AuditEvent, AuditEventBuilder
from ledger_engine.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage sink, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_created(
        self,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        count: int,
        correlation_id: UUID,
        series: bool = False,
    ) -> None:
        """Log creation of a record or a whole series."""
        await self.log(AuditEventBuilder.records_created(
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            count=count,
            correlation_id=correlation_id,
            series=series,
        ))

    async def log_updated(
        self,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        scope: str,
        changes: dict,
        count: int,
        correlation_id: UUID,
    ) -> None:
        """Log a single or scoped update."""
        await self.log(AuditEventBuilder.records_updated(
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            scope=scope,
            changes=changes,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_deleted(
        self,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        scope: str,
        count: int,
        correlation_id: UUID,
    ) -> None:
        """Log a single or scoped delete."""
        await self.log(AuditEventBuilder.records_deleted(
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            scope=scope,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_card_changed(
        self,
        owner_id: str,
        card_id: UUID,
        action: str,
        card_name: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.card_changed(
            owner_id=owner_id,
            card_id=card_id,
            action=action,
            card_name=card_name,
            correlation_id=correlation_id,
        ))

    async def log_bill_closed(
        self,
        owner_id: str,
        card_id: UUID,
        billing_cycle: str,
        total: str,
        expense_count: int,
        transaction_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log a bill closing."""
        await self.log(AuditEventBuilder.bill_closed(
            owner_id=owner_id,
            card_id=card_id,
            billing_cycle=billing_cycle,
            total=total,
            expense_count=expense_count,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_category_changed(
        self,
        owner_id: str,
        action: str,
        category_type: str,
        name: str,
        correlation_id: UUID,
        new_name: Optional[str] = None,
        cascaded: int = 0,
    ) -> None:
        await self.log(AuditEventBuilder.category_changed(
            owner_id=owner_id,
            action=action,
            category_type=category_type,
            name=name,
            correlation_id=correlation_id,
            new_name=new_name,
            cascaded=cascaded,
        ))

    async def log_rejected(
        self,
        owner_id: Optional[str],
        operation: str,
        reason: str,
        correlation_id: UUID,
        issues: Optional[list[dict]] = None,
    ) -> None:
        """Log a request rejected before any write."""
        await self.log(AuditEventBuilder.request_rejected(
            owner_id=owner_id,
            operation=operation,
            reason=reason,
            correlation_id=correlation_id,
            issues=issues,
        ))

    async def log_batch_failed(
        self,
        owner_id: Optional[str],
        operation: str,
        op_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a batch the store refused to commit."""
        await self.log(AuditEventBuilder.batch_failed(
            owner_id=owner_id,
            operation=operation,
            op_count=op_count,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a caller action (e.g., closing a bill).
    Pass it through all subsequent operations.
    """
    return uuid4()
