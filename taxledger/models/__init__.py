"""
Data Models Package

This package contains all Pydantic models used by the Tax Ledger scheduler.
All data flowing through the system must conform to these schemas.
"""

from taxledger.models.recurring import (
    GeneratedTransaction,
    MaterializationError,
    MaterializationErrorKind,
    RecurrenceFrequency,
    RecurringRule,
    RecurringSummary,
    SchedulerResult,
    TransactionRecord,
    TransactionTemplate,
    TransactionType,
    UpcomingOccurrence,
)
from taxledger.models.notification import (
    BudgetAlert,
    DailyCheckReport,
    DailyReminderConfig,
    NotificationLogEntry,
    NotificationPreferences,
    NotificationPriority,
    NotificationType,
    PipelineRun,
    StandingReminder,
    TaxDeadlineInfo,
    TaxYearProgress,
)
from taxledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Recurring models
    "GeneratedTransaction",
    "MaterializationError",
    "MaterializationErrorKind",
    "RecurrenceFrequency",
    "RecurringRule",
    "RecurringSummary",
    "SchedulerResult",
    "TransactionRecord",
    "TransactionTemplate",
    "TransactionType",
    "UpcomingOccurrence",
    # Notification models
    "BudgetAlert",
    "DailyCheckReport",
    "DailyReminderConfig",
    "NotificationLogEntry",
    "NotificationPreferences",
    "NotificationPriority",
    "NotificationType",
    "PipelineRun",
    "StandingReminder",
    "TaxDeadlineInfo",
    "TaxYearProgress",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
