"""
Deduplicated Notifier

Sends each logical notification at most once per dedup window.

DESIGN DECISION: The notification log is the dedup record.
1. Look for an entry of the same type (and related_id) created since
   the window start. Found -> suppressed, nothing dispatched.
2. Dispatch through the delivery channel.
3. Only after the channel accepted it, write the log entry.

A failed dispatch therefore leaves no entry behind and the next check
inside the window tries again. The check and the write are not atomic;
within one process the scheduling trigger never runs two passes at once,
which is what keeps this safe in practice.

Windows:
- tax_deadline, recurring_due, daily_reminder, custom: since local midnight
- budget_alert: rolling lookback (24h by default)
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from taxledger.audit import AuditLogger
from taxledger.config import get_settings
from taxledger.models.notification import (
    BudgetAlert,
    DailyCheckReport,
    DailyReminderConfig,
    NotificationLogEntry,
    NotificationPreferences,
    NotificationPriority,
    NotificationType,
)
from taxledger.services.budget import BudgetEvaluatorInterface, NoBudgetEvaluator
from taxledger.services.delivery import (
    DeliveryChannelInterface,
    DeliveryError,
    TransientDeliveryError,
)
from taxledger.services.storage import (
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
)
from taxledger.tax import get_tax_deadlines, pending_tax_year


DAILY_REMINDER_TITLE = "📝 Log Your Transactions"
DAILY_REMINDER_BODY = "Don't forget to record today's income and expenses!"

# Used when send_if_not_duplicate is called without a title or body
DEFAULT_CONTENT = {
    NotificationType.DAILY_REMINDER: (DAILY_REMINDER_TITLE, DAILY_REMINDER_BODY),
    NotificationType.TAX_DEADLINE: ("📅 Tax Deadline Reminder", "Check your upcoming tax filing deadline."),
    NotificationType.BUDGET_ALERT: ("💰 Budget Alert", "One of your budgets needs attention."),
    NotificationType.RECURRING_DUE: ("📌 Payment Due", "A recurring payment is due soon."),
    NotificationType.CUSTOM: ("Tax Ledger", "You have a new notification."),
}


class NotificationDeliveryError(Exception):
    """The delivery channel rejected a notification (after retries)."""

    def __init__(
        self,
        notification_type: NotificationType,
        related_id: Optional[str],
        message: str,
    ):
        self.notification_type = notification_type
        self.related_id = related_id
        super().__init__(
            f"Failed to deliver {notification_type.value} notification "
            f"({related_id or 'no related id'}): {message}"
        )


class DeduplicatedNotifier:
    """
    Dedup-checked notification dispatch plus the four notification classes.

    Time comes from `now_fn` so tests can pin it; everything is naive
    local time.
    """

    def __init__(
        self,
        log_storage: NotificationLogStorageInterface,
        delivery: DeliveryChannelInterface,
        settings_reader: SettingsReaderInterface,
        rule_storage: RuleStorageInterface,
        budget_evaluator: Optional[BudgetEvaluatorInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        self._log = log_storage
        self._delivery = delivery
        self._settings_reader = settings_reader
        self._rules = rule_storage
        self._budgets = budget_evaluator or NoBudgetEvaluator()
        self._audit_logger = audit_logger
        self._now = now_fn
        self._budget_window = timedelta(
            hours=get_settings().scheduler.budget_alert_window_hours
        )

    def window_start(
        self,
        notification_type: NotificationType,
        now: Optional[datetime] = None,
    ) -> datetime:
        """Earliest created_at that still counts as a duplicate."""
        now = now or self._now()
        if notification_type == NotificationType.BUDGET_ALERT:
            return now - self._budget_window
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    async def send_if_not_duplicate(
        self,
        notification_type: NotificationType,
        related_id: Optional[str] = None,
        window_start: Optional[datetime] = None,
        title: Optional[str] = None,
        body: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        data: Optional[dict[str, Any]] = None,
        action_route: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationLogEntry]:
        """
        Dispatch unless an equivalent notification is already logged.

        Title and body default to the generic text for the type. `now`
        stamps the new entry and, when window_start is omitted, picks the
        window.

        Returns:
            The new log entry, or None when suppressed as a duplicate

        Raises:
            NotificationDeliveryError: Dispatch failed; nothing was logged
        """
        now = now or self._now()
        if window_start is None:
            window_start = self.window_start(notification_type, now)
        default_title, default_body = DEFAULT_CONTENT[notification_type]
        title = title or default_title
        body = body or default_body

        existing = await self._log.find_recent(notification_type, related_id, window_start)
        if existing:
            if self._audit_logger:
                await self._audit_logger.log_notification_suppressed(
                    notification_type=notification_type.value,
                    related_id=related_id,
                    window_start=window_start,
                    correlation_id=correlation_id,
                )
            return None

        notification_id = str(uuid4())
        payload = {**(data or {}), "type": notification_type.value, "notificationId": notification_id}
        entry = NotificationLogEntry(
            id=notification_id,
            type=notification_type,
            title=title,
            body=body,
            priority=priority,
            related_id=related_id,
            action_route=action_route,
            data=payload,
        )

        try:
            delivery_id = await self._dispatch(title, body, priority, payload)
        except DeliveryError as e:
            if self._audit_logger:
                await self._audit_logger.log_delivery_failed(
                    notification_type=notification_type.value,
                    related_id=related_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise NotificationDeliveryError(notification_type, related_id, str(e)) from e

        entry = entry.model_copy(update={
            "delivery_id": delivery_id,
            "sent_at": now,
            "created_at": now,
        })
        await self._log.insert(entry)

        if self._audit_logger:
            await self._audit_logger.log_notification_sent(
                notification_id=entry.id,
                notification_type=notification_type.value,
                related_id=related_id,
                delivery_id=delivery_id,
                correlation_id=correlation_id,
            )
        return entry

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception_type(TransientDeliveryError),
        reraise=True,
    )
    async def _dispatch(
        self,
        title: str,
        body: str,
        priority: NotificationPriority,
        data: dict[str, Any],
    ) -> str:
        return await self._delivery.dispatch(title, body, priority, data)

    async def _send(
        self,
        report: DailyCheckReport,
        notification_type: NotificationType,
        related_id: Optional[str],
        now: datetime,
        correlation_id: Optional[UUID] = None,
        **content: Any,
    ) -> None:
        """
        Send one notification, recording the outcome in `report`.

        Failures stay with this notification so the caller's loop moves
        on to the next budget or rule.
        """
        try:
            entry = await self.send_if_not_duplicate(
                notification_type,
                related_id=related_id,
                correlation_id=correlation_id,
                now=now,
                **content,
            )
        except NotificationDeliveryError as e:
            report.errors.append(str(e))
            return
        except Exception as e:
            report.errors.append(
                f"{notification_type.value} notification "
                f"({related_id or 'no related id'}) failed: {e}"
            )
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"type": notification_type.value, "related_id": related_id},
                    correlation_id=correlation_id,
                )
            return

        if entry is None:
            report.suppressed += 1
        else:
            report.sent.append(entry)

    # =========================================================================
    # Notification classes
    # =========================================================================

    async def check_tax_deadline(
        self,
        tax_year: int,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DailyCheckReport:
        """Remind at 30, 7 and 1 days before e-filing, and daily once overdue."""
        now = now or self._now()
        report = DailyCheckReport()
        deadlines = get_tax_deadlines(tax_year, now)
        days_left = deadlines.days_until_e_deadline

        if deadlines.is_overdue:
            title = "⚠️ Tax Filing Overdue!"
            body = (
                f"Your tax filing for year {tax_year} is overdue. "
                "File immediately to minimize penalties."
            )
            priority = NotificationPriority.HIGH
        elif days_left == 1:
            title = "📅 Last Day for E-Filing!"
            body = (
                f"Tomorrow is the deadline for e-filing your {tax_year} tax return. "
                "Don't forget!"
            )
            priority = NotificationPriority.HIGH
        elif days_left == 7:
            title = "⏰ Tax Deadline in 1 Week"
            body = (
                f"E-filing deadline is in 7 days "
                f"({deadlines.e_filing_deadline.strftime('%d %b %Y')}). "
                "Prepare your documents!"
            )
            priority = NotificationPriority.NORMAL
        elif days_left == 30:
            title = "📊 Tax Season Reminder"
            body = f"Tax filing starts soon. Start organizing your documents for year {tax_year}."
            priority = NotificationPriority.NORMAL
        else:
            return report

        await self._send(
            report,
            NotificationType.TAX_DEADLINE,
            str(tax_year),
            now,
            correlation_id,
            title=title,
            body=body,
            priority=priority,
            data={"taxYear": tax_year, "daysLeft": days_left},
            action_route="tax",
        )
        return report

    async def check_budget_alerts(
        self,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DailyCheckReport:
        """One alert per budget per rolling window."""
        now = now or self._now()
        report = DailyCheckReport()
        alerts: list[BudgetAlert] = await self._budgets.check_and_trigger_alerts()

        for alert in alerts:
            await self._send(
                report,
                NotificationType.BUDGET_ALERT,
                alert.budget_id,
                now,
                correlation_id,
                title="💰 Budget Alert",
                body=(
                    f"{alert.label} budget is at {alert.percent_used:.0f}% "
                    f"({alert.spent:,} / {alert.amount:,} THB)"
                ),
                priority=NotificationPriority.NORMAL,
                data={"budgetId": alert.budget_id, "percentUsed": alert.percent_used},
                action_route="budgets",
            )
        return report

    async def check_recurring_due(
        self,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DailyCheckReport:
        """Remind about active rules whose next occurrence is today or tomorrow."""
        now = now or self._now()
        report = DailyCheckReport()
        today = now.date()
        tomorrow = today + timedelta(days=1)

        for rule in await self._rules.find_active_rules_due_between(today, tomorrow):
            is_today = rule.next_due_date == today
            await self._send(
                report,
                NotificationType.RECURRING_DUE,
                rule.id,
                now,
                correlation_id,
                title="📌 Payment Due Today" if is_today else "📅 Payment Due Tomorrow",
                body=f"{rule.display_name}: {rule.template.amount:,} THB",
                priority=NotificationPriority.NORMAL,
                data={"recurringId": rule.id},
                action_route="recurring",
            )
        return report

    async def schedule_daily_reminder(self, config: DailyReminderConfig) -> list[str]:
        """
        Replace the standing daily reminders with ones matching `config`.

        Disabled config cancels every standing trigger. Returns the new
        handles (empty when disabled).
        """
        if not config.enabled:
            cancelled = len(await self._delivery.list_standing())
            await self._delivery.cancel_all_standing()
            await self._log_rescheduled(config, cancelled)
            return []

        cancelled = 0
        for reminder in await self._delivery.list_standing():
            if reminder.payload.get("type") == NotificationType.DAILY_REMINDER.value:
                await self._delivery.cancel_standing(reminder.handle)
                cancelled += 1

        handles = []
        for weekday in config.days_of_week:
            handles.append(await self._delivery.schedule_standing(
                weekday=weekday,
                hour=config.hour,
                minute=config.minute,
                payload={
                    "type": NotificationType.DAILY_REMINDER.value,
                    "title": DAILY_REMINDER_TITLE,
                    "body": DAILY_REMINDER_BODY,
                },
            ))

        await self._log_rescheduled(config, cancelled)
        return handles

    async def _log_rescheduled(self, config: DailyReminderConfig, cancelled: int) -> None:
        if self._audit_logger:
            await self._audit_logger.log_standing_reminders_rescheduled(
                enabled=config.enabled,
                weekdays=config.days_of_week if config.enabled else [],
                time=config.time,
                cancelled=cancelled,
            )

    async def apply_preferences(
        self,
        previous: Optional[NotificationPreferences],
        current: NotificationPreferences,
    ) -> bool:
        """Reschedule standing reminders if the daily reminder config changed."""
        if previous is not None and previous.daily_reminder == current.daily_reminder:
            return False
        await self.schedule_daily_reminder(current.daily_reminder)
        return True

    async def run_daily_checks(
        self,
        tax_year: Optional[int] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DailyCheckReport:
        """
        Run the tax deadline, budget and recurring-due checks.

        Without a tax_year the pending filing year is checked (see
        pending_tax_year).

        Each class is gated by its preference and isolated from the others:
        a failure in one is recorded and the rest still run. Never raises.
        """
        now = now or self._now()
        if tax_year is None:
            tax_year = pending_tax_year(
                now, get_settings().notifications.tax_overdue_reminder_days
            )
        report = DailyCheckReport()

        try:
            prefs = await self._settings_reader.get_notification_preferences()
        except Exception as e:
            report.errors.append(f"Failed to read notification preferences: {e}")
            return report

        checks = []
        if prefs.tax_deadline_reminder:
            checks.append(("tax_deadline", lambda: self.check_tax_deadline(tax_year, now, correlation_id)))
        if prefs.budget_alerts:
            checks.append(("budget_alert", lambda: self.check_budget_alerts(now, correlation_id)))
        if prefs.recurring_reminders:
            checks.append(("recurring_due", lambda: self.check_recurring_due(now, correlation_id)))

        for name, check in checks:
            try:
                partial = await check()
            except Exception as e:
                report.errors.append(f"{name} check failed: {e}")
                if self._audit_logger:
                    await self._audit_logger.log_error(
                        error_type="NotificationCheckError",
                        error_message=str(e),
                        details={"check": name},
                        correlation_id=correlation_id,
                    )
                continue
            report.sent.extend(partial.sent)
            report.suppressed += partial.suppressed
            report.errors.extend(partial.errors)

        return report

    # =========================================================================
    # History
    # =========================================================================

    async def get_history(
        self,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationLogEntry]:
        """Newest first."""
        return await self._log.list_entries(unread_only=unread_only, limit=limit)

    async def mark_as_read(self, notification_id: str) -> None:
        await self._log.mark_read(notification_id)

    async def mark_all_as_read(self) -> int:
        return await self._log.mark_all_read()

    async def get_unread_count(self) -> int:
        return await self._log.count_unread()

    async def delete(self, notification_id: str) -> None:
        await self._log.delete(notification_id)
