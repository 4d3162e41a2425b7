"""
Audit Models for Tax Ledger

Every scheduler decision is logged for audit purposes:
1. Which occurrences were materialized, and when
2. Which notifications were sent or suppressed as duplicates
3. What failed, so a later run can be explained

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the materialize-then-notify pipeline has its own event type.
    """
    # Pipeline
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_SKIPPED = "pipeline_skipped"

    # Materialization
    TRANSACTION_GENERATED = "transaction_generated"
    MATERIALIZATION_FAILED = "materialization_failed"
    CURSOR_RECONCILED = "cursor_reconciled"
    CATCH_UP_OVERFLOW = "catch_up_overflow"
    RULE_DEACTIVATED = "rule_deactivated"

    # Notifications
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_SUPPRESSED = "notification_suppressed"
    DELIVERY_FAILED = "delivery_failed"
    STANDING_REMINDERS_RESCHEDULED = "standing_reminders_rescheduled"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred (device local time)"
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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'recurring_rule', 'notification')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one pipeline run)"
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

    # Error information (if applicable)
    error_code: Optional[str] = None
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
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_events table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_generated(rule_id, tx_id, ...)
        event = AuditEventBuilder.notification_suppressed("budget_alert", budget_id)
    """

    @staticmethod
    def pipeline_started(reason: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIPELINE_STARTED,
            entity_type="pipeline",
            correlation_id=correlation_id,
            description=f"Scheduler pipeline started ({reason})",
            details={"reason": reason},
        )

    @staticmethod
    def pipeline_completed(
        generated: int,
        materialization_errors: int,
        notifications_sent: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIPELINE_COMPLETED,
            severity=AuditSeverity.WARNING if materialization_errors else AuditSeverity.INFO,
            entity_type="pipeline",
            correlation_id=correlation_id,
            description=(
                f"Scheduler pipeline completed: {generated} generated, "
                f"{notifications_sent} notified"
            ),
            details={
                "generated": generated,
                "materialization_errors": materialization_errors,
                "notifications_sent": notifications_sent,
            },
        )

    @staticmethod
    def pipeline_skipped(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIPELINE_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="pipeline",
            description=f"Scheduler pipeline already running; dropped trigger ({reason})",
            details={"reason": reason},
        )

    @staticmethod
    def transaction_generated(
        recurring_id: str,
        transaction_id: str,
        occurrence_date: date,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_GENERATED,
            entity_type="recurring_rule",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description=f"Generated transaction for occurrence {occurrence_date.isoformat()}",
            details={
                "transaction_id": transaction_id,
                "occurrence_date": occurrence_date.isoformat(),
                "amount": amount,
            },
        )

    @staticmethod
    def materialization_failed(
        recurring_id: Optional[str],
        kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MATERIALIZATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="recurring_rule",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description=f"Materialization failed: {kind}",
            error_code=kind,
            error_message=error_message,
        )

    @staticmethod
    def cursor_reconciled(
        recurring_id: str,
        stale_cursor: date,
        new_cursor: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURSOR_RECONCILED,
            severity=AuditSeverity.WARNING,
            entity_type="recurring_rule",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description="Cursor re-derived from latest materialized occurrence",
            details={
                "stale_cursor": stale_cursor.isoformat(),
                "new_cursor": new_cursor.isoformat(),
            },
        )

    @staticmethod
    def catch_up_overflow(
        recurring_id: str,
        limit: int,
        cursor: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATCH_UP_OVERFLOW,
            severity=AuditSeverity.ERROR,
            entity_type="recurring_rule",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description=f"Catch-up stopped after {limit} occurrences",
            details={"limit": limit, "cursor": cursor.isoformat()},
            error_code="catch_up_overflow",
        )

    @staticmethod
    def rule_deactivated(
        recurring_id: str,
        end_date: Optional[date],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DEACTIVATED,
            entity_type="recurring_rule",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description="Recurring rule deactivated after its end date",
            details={"end_date": end_date.isoformat() if end_date else None},
        )

    @staticmethod
    def notification_sent(
        notification_id: str,
        notification_type: str,
        related_id: Optional[str],
        delivery_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SENT,
            entity_type="notification",
            entity_id=notification_id,
            correlation_id=correlation_id,
            description=f"Notification sent: {notification_type}",
            details={
                "type": notification_type,
                "related_id": related_id,
                "delivery_id": delivery_id,
            },
        )

    @staticmethod
    def notification_suppressed(
        notification_type: str,
        related_id: Optional[str],
        window_start: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SUPPRESSED,
            severity=AuditSeverity.DEBUG,
            entity_type="notification",
            entity_id=related_id,
            correlation_id=correlation_id,
            description=f"Duplicate {notification_type} suppressed",
            details={
                "type": notification_type,
                "window_start": window_start.isoformat(),
            },
        )

    @staticmethod
    def delivery_failed(
        notification_type: str,
        related_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELIVERY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="notification",
            entity_id=related_id,
            correlation_id=correlation_id,
            description=f"Delivery failed: {notification_type}",
            details={"type": notification_type},
            error_message=error_message,
        )

    @staticmethod
    def standing_reminders_rescheduled(
        enabled: bool,
        weekdays: list[int],
        time: str,
        cancelled: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STANDING_REMINDERS_RESCHEDULED,
            entity_type="daily_reminder",
            description=(
                f"Daily reminder scheduled on {len(weekdays)} weekdays at {time}"
                if enabled else "Daily reminder disabled"
            ),
            details={
                "enabled": enabled,
                "weekdays": weekdays,
                "time": time,
                "cancelled": cancelled,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
