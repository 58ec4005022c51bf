"""
Audit Models for the Ledger Engine

Every write the engine commits is logged for audit purposes.
This provides:
1. Traceability of series edits and bill closings
2. Debugging information when a batch fails
3. A history the owner can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    One event type per committed operation, plus the failure paths.
    """
    # Transactions and series
    TRANSACTION_CREATED = "transaction_created"
    SERIES_CREATED = "series_created"
    TRANSACTION_UPDATED = "transaction_updated"
    SERIES_UPDATED = "series_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    SERIES_DELETED = "series_deleted"

    # Credit cards
    CARD_CREATED = "card_created"
    CARD_UPDATED = "card_updated"
    CARD_DELETED = "card_deleted"
    CARD_EXPENSE_CREATED = "card_expense_created"
    CARD_EXPENSE_UPDATED = "card_expense_updated"
    CARD_EXPENSE_DELETED = "card_expense_deleted"
    BILL_CLOSED = "bill_closed"

    # Categories
    CATEGORIES_INITIALIZED = "categories_initialized"
    CATEGORY_ADDED = "category_added"
    CATEGORY_RENAMED = "category_renamed"
    CATEGORY_REMOVED = "category_removed"

    # Failures
    REQUEST_REJECTED = "request_rejected"
    BATCH_FAILED = "batch_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every committed operation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner the affected records belong to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'series', 'card')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one caller action"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.series_created(owner_id, series_id, 12, cid)
        event = AuditEventBuilder.bill_closed(owner_id, card_id, "2024-03", ...)
    """

    @staticmethod
    def records_created(
        owner_id: str,
        entity_type: str,
        entity_id: str,
        count: int,
        correlation_id: UUID,
        series: bool = False,
    ) -> AuditEvent:
        if entity_type == "transaction":
            event_type = (
                AuditEventType.SERIES_CREATED if series
                else AuditEventType.TRANSACTION_CREATED
            )
        else:
            event_type = AuditEventType.CARD_EXPENSE_CREATED
        noun = "series" if series else entity_type.replace("_", " ")
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="series" if series else entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Created {noun} with {count} record(s)",
            details={"record_count": count, "record_type": entity_type},
        )

    @staticmethod
    def records_updated(
        owner_id: str,
        entity_type: str,
        entity_id: str,
        scope: str,
        changes: dict,
        count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        if entity_type == "card_expense":
            event_type = AuditEventType.CARD_EXPENSE_UPDATED
        elif scope == "future":
            event_type = AuditEventType.SERIES_UPDATED
        else:
            event_type = AuditEventType.TRANSACTION_UPDATED
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Updated {count} {entity_type} record(s) ({scope})",
            details={
                "scope": scope,
                "changes": {k: str(v) for k, v in changes.items()},
                "record_count": count,
            },
        )

    @staticmethod
    def records_deleted(
        owner_id: str,
        entity_type: str,
        entity_id: str,
        scope: str,
        count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        if entity_type == "card_expense":
            event_type = AuditEventType.CARD_EXPENSE_DELETED
        elif scope == "future":
            event_type = AuditEventType.SERIES_DELETED
        else:
            event_type = AuditEventType.TRANSACTION_DELETED
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING if count > 1 else AuditSeverity.INFO,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Deleted {count} {entity_type} record(s) ({scope})",
            details={"scope": scope, "record_count": count},
        )

    @staticmethod
    def card_changed(
        owner_id: str,
        card_id: UUID,
        action: str,
        card_name: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        event_type = {
            "created": AuditEventType.CARD_CREATED,
            "updated": AuditEventType.CARD_UPDATED,
            "deleted": AuditEventType.CARD_DELETED,
        }[action]
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="card",
            entity_id=str(card_id),
            correlation_id=correlation_id,
            description=f"Card {action}: {card_name}",
            details={"card_name": card_name},
        )

    @staticmethod
    def bill_closed(
        owner_id: str,
        card_id: UUID,
        billing_cycle: str,
        total: str,
        expense_count: int,
        transaction_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_CLOSED,
            owner_id=owner_id,
            entity_type="card",
            entity_id=str(card_id),
            correlation_id=correlation_id,
            description=f"Bill {billing_cycle} closed: R${total} from {expense_count} expense(s)",
            details={
                "billing_cycle": billing_cycle,
                "total": total,
                "expense_count": expense_count,
                "transaction_id": str(transaction_id),
            },
        )

    @staticmethod
    def category_changed(
        owner_id: str,
        action: str,
        category_type: str,
        name: str,
        correlation_id: UUID,
        new_name: Optional[str] = None,
        cascaded: int = 0,
    ) -> AuditEvent:
        event_type = {
            "initialized": AuditEventType.CATEGORIES_INITIALIZED,
            "added": AuditEventType.CATEGORY_ADDED,
            "renamed": AuditEventType.CATEGORY_RENAMED,
            "removed": AuditEventType.CATEGORY_REMOVED,
        }[action]
        description = f"Category {action}: {name}"
        if new_name:
            description += f" -> {new_name}"
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="category",
            entity_id=name,
            correlation_id=correlation_id,
            description=description,
            details={
                "category_type": category_type,
                "new_name": new_name,
                "cascaded_records": cascaded,
            },
        )

    @staticmethod
    def request_rejected(
        owner_id: Optional[str],
        operation: str,
        reason: str,
        correlation_id: UUID,
        issues: Optional[list[dict]] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_message=reason,
            details={"operation": operation, "issues": issues or []},
        )

    @staticmethod
    def batch_failed(
        owner_id: Optional[str],
        operation: str,
        op_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} failed: batch of {op_count} not committed",
            error_message=error_message,
            details={"operation": operation, "op_count": op_count},
        )
