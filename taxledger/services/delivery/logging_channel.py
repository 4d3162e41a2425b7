"""
Structured-Log Delivery Channel

Used when no platform channel is wired in (headless runs, diagnostics).
Every dispatch becomes a structured log line, and standing reminders are
kept in memory so reschedules can be inspected.
"""

from typing import Any
from uuid import uuid4

import structlog

from taxledger.models.notification import NotificationPriority, StandingReminder
from taxledger.services.delivery.interface import DeliveryChannelInterface


class LoggingDeliveryChannel(DeliveryChannelInterface):
    """Delivers notifications to the local structured log."""

    def __init__(self, channel_id: str = "taxledger-default"):
        self._channel_id = channel_id
        self._logger = structlog.get_logger(__name__)
        self._standing: dict[str, StandingReminder] = {}
        self.dispatched: list[dict[str, Any]] = []

    async def dispatch(
        self,
        title: str,
        body: str,
        priority: NotificationPriority,
        data: dict[str, Any],
    ) -> str:
        delivery_id = str(uuid4())
        record = {
            "delivery_id": delivery_id,
            "channel_id": self._channel_id,
            "title": title,
            "body": body,
            "priority": priority.value,
            "data": data,
        }
        self.dispatched.append(record)
        self._logger.info("notification_dispatched", **record)
        return delivery_id

    async def schedule_standing(
        self,
        weekday: int,
        hour: int,
        minute: int,
        payload: dict[str, Any],
    ) -> str:
        handle = str(uuid4())
        self._standing[handle] = StandingReminder(
            handle=handle,
            weekday=weekday,
            hour=hour,
            minute=minute,
            payload=dict(payload),
        )
        self._logger.info(
            "standing_reminder_scheduled",
            handle=handle,
            weekday=weekday,
            time=f"{hour:02d}:{minute:02d}",
        )
        return handle

    async def cancel_standing(self, handle: str) -> None:
        self._standing.pop(handle, None)

    async def cancel_all_standing(self) -> None:
        self._standing.clear()

    async def list_standing(self) -> list[StandingReminder]:
        return list(self._standing.values())
