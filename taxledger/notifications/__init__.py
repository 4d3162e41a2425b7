"""Deduplicated notification pipeline."""

from taxledger.notifications.notifier import (
    DAILY_REMINDER_BODY,
    DAILY_REMINDER_TITLE,
    DeduplicatedNotifier,
    NotificationDeliveryError,
)

__all__ = [
    "DAILY_REMINDER_BODY",
    "DAILY_REMINDER_TITLE",
    "DeduplicatedNotifier",
    "NotificationDeliveryError",
]
