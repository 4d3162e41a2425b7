"""
Notification Models

Covers the notification log (what was sent), the user's notification
preferences (read-only to the scheduler), budget alerts handed over by the
budget evaluator, and the derived tax deadline views.

DESIGN DECISION: The notification log is the dedup source of truth.
An entry is only written after the delivery channel accepted the
notification, so "there is a log entry" always means "the user was told".
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationType(str, Enum):
    """Closed set of notification classes."""
    DAILY_REMINDER = "daily_reminder"
    TAX_DEADLINE = "tax_deadline"
    BUDGET_ALERT = "budget_alert"
    RECURRING_DUE = "recurring_due"
    CUSTOM = "custom"


class NotificationPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class NotificationLogEntry(BaseModel):
    """
    A notification that was dispatched.

    After creation only is_read changes (through the UI).
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique notification ID"
    )
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., max_length=1000)
    priority: NotificationPriority = NotificationPriority.NORMAL

    # Related data
    related_id: Optional[str] = Field(
        default=None,
        description="Budget ID, rule ID, tax year etc. this notification is about"
    )
    action_route: Optional[str] = Field(
        default=None,
        description="Deep link route opened when the notification is tapped"
    )
    data: dict[str, Any] = Field(default_factory=dict)

    # Status
    delivery_id: Optional[str] = None
    is_read: bool = False
    is_sent: bool = True
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)


class DailyReminderConfig(BaseModel):
    """Standing daily reminder schedule."""

    enabled: bool = False
    time: str = Field(
        default="20:00",
        description="Time of day in HH:MM"
    )
    days_of_week: list[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5, 6, 0],
        description="Weekdays to remind on, 0 = Sunday"
    )

    @field_validator('time')
    @classmethod
    def validate_time(cls, v: str) -> str:
        parts = v.strip().split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Time must be HH:MM, got {v!r}")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Time out of range: {v!r}")
        return f"{hour:02d}:{minute:02d}"

    @field_validator('days_of_week')
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"Weekday must be 0-6 (0 = Sunday), got {day}")
        # Keep first-seen order, drop repeats
        return list(dict.fromkeys(v))

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


class NotificationPreferences(BaseModel):
    """Read-only view over the user's notification settings."""

    model_config = ConfigDict(frozen=True)

    daily_reminder: DailyReminderConfig = Field(default_factory=DailyReminderConfig)
    tax_deadline_reminder: bool = True
    budget_alerts: bool = True
    recurring_reminders: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True


class BudgetAlert(BaseModel):
    """A budget whose spend ratio crossed its alert threshold."""

    budget_id: str
    budget_name: str
    category_name: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    spent: Decimal = Field(..., ge=0)
    percent_used: float = Field(..., ge=0)
    alert_at_percent: float = Field(default=80.0, ge=0)

    @property
    def label(self) -> str:
        return self.category_name or self.budget_name or "Overall"


class TaxDeadlineInfo(BaseModel):
    """Filing deadlines for one tax year relative to a reference instant."""

    tax_year: int
    paper_filing_deadline: date
    e_filing_deadline: date
    days_until_paper_deadline: int
    days_until_e_deadline: int
    is_overdue: bool


class TaxYearProgress(BaseModel):
    """How far through the calendar tax year a reference instant is."""

    percent_complete: float = Field(..., ge=0, le=100)
    days_remaining: float = Field(..., ge=0)
    months_remaining: int = Field(..., ge=0)
    current_quarter: int = Field(..., ge=1, le=4)


class DailyCheckReport(BaseModel):
    """What one run_daily_checks pass did."""

    sent: list[NotificationLogEntry] = Field(default_factory=list)
    suppressed: int = Field(
        default=0,
        description="Notifications skipped because one was already sent in the window"
    )
    errors: list[str] = Field(default_factory=list)

    def sent_of_type(self, notification_type: NotificationType) -> list[NotificationLogEntry]:
        return [n for n in self.sent if n.type == notification_type]


class StandingReminder(BaseModel):
    """A standing trigger registered with the delivery channel."""

    handle: str
    weekday: int = Field(..., ge=0, le=6)
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    payload: dict[str, Any] = Field(default_factory=dict)


class PipelineRun(BaseModel):
    """One materialize-then-notify pass started by the scheduling trigger."""

    correlation_id: UUID = Field(default_factory=uuid4)
    reason: str
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    generated_count: int = 0
    materialization_errors: list[str] = Field(default_factory=list)
    notifications_sent: int = 0
    notification_errors: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(
        default=None,
        description="Pipeline-level failure that stopped the run early"
    )

    @property
    def succeeded(self) -> bool:
        return self.error is None
