"""
Audit Logger

DESIGN DECISION: Every scheduler decision is logged.
This provides:
1. Traceability of generated transactions back to the run that made them
2. A record of every notification sent or suppressed as a duplicate
3. Diagnostics for background failures the user never sees

The audit logger:
- Is async to match the storage interface
- Gracefully handles failures (doesn't crash the scheduler if logging fails)
- Supports correlation IDs to trace one pipeline run end to end
"""

import logging
from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from taxledger.config import get_settings
from taxledger.models.audit import AuditEvent, AuditEventBuilder
from taxledger.services.storage import AuditStorageInterface


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

_app_settings = get_settings().app
logging.getLogger("taxledger").setLevel(
    "DEBUG" if _app_settings.debug_mode else _app_settings.log_level
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
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
        self._logger = structlog.get_logger("taxledger.audit")

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
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
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

    async def log_pipeline_started(self, reason: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.pipeline_started(reason, correlation_id))

    async def log_pipeline_completed(
        self,
        generated: int,
        materialization_errors: int,
        notifications_sent: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pipeline_completed(
            generated=generated,
            materialization_errors=materialization_errors,
            notifications_sent=notifications_sent,
            correlation_id=correlation_id,
        ))

    async def log_pipeline_skipped(self, reason: str) -> None:
        await self.log(AuditEventBuilder.pipeline_skipped(reason))

    async def log_transaction_generated(
        self,
        recurring_id: str,
        transaction_id: str,
        occurrence_date: date,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log one materialized occurrence."""
        await self.log(AuditEventBuilder.transaction_generated(
            recurring_id=recurring_id,
            transaction_id=transaction_id,
            occurrence_date=occurrence_date,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_materialization_failed(
        self,
        recurring_id: Optional[str],
        kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.materialization_failed(
            recurring_id=recurring_id,
            kind=kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_cursor_reconciled(
        self,
        recurring_id: str,
        stale_cursor: date,
        new_cursor: date,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cursor_reconciled(
            recurring_id=recurring_id,
            stale_cursor=stale_cursor,
            new_cursor=new_cursor,
            correlation_id=correlation_id,
        ))

    async def log_catch_up_overflow(
        self,
        recurring_id: str,
        limit: int,
        cursor: date,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.catch_up_overflow(
            recurring_id=recurring_id,
            limit=limit,
            cursor=cursor,
            correlation_id=correlation_id,
        ))

    async def log_rule_deactivated(
        self,
        recurring_id: str,
        end_date: Optional[date],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rule_deactivated(
            recurring_id=recurring_id,
            end_date=end_date,
            correlation_id=correlation_id,
        ))

    async def log_notification_sent(
        self,
        notification_id: str,
        notification_type: str,
        related_id: Optional[str],
        delivery_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notification_sent(
            notification_id=notification_id,
            notification_type=notification_type,
            related_id=related_id,
            delivery_id=delivery_id,
            correlation_id=correlation_id,
        ))

    async def log_notification_suppressed(
        self,
        notification_type: str,
        related_id: Optional[str],
        window_start: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notification_suppressed(
            notification_type=notification_type,
            related_id=related_id,
            window_start=window_start,
            correlation_id=correlation_id,
        ))

    async def log_delivery_failed(
        self,
        notification_type: str,
        related_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.delivery_failed(
            notification_type=notification_type,
            related_id=related_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_standing_reminders_rescheduled(
        self,
        enabled: bool,
        weekdays: list[int],
        time: str,
        cancelled: int,
    ) -> None:
        await self.log(AuditEventBuilder.standing_reminders_rescheduled(
            enabled=enabled,
            weekdays=weekdays,
            time=time,
            cancelled=cancelled,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of each pipeline run and pass it through
    every step of that run.
    """
    return uuid4()
