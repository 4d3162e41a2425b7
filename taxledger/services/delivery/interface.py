"""
Abstract Delivery Channel

The boundary to the platform's notification system. Permission prompts,
channels and OS scheduling APIs all live behind this interface; the
scheduler only asks for "show this now" and "show this every <weekday>
at <time>".
"""

from abc import ABC, abstractmethod
from typing import Any

from taxledger.models.notification import NotificationPriority, StandingReminder


class DeliveryChannelInterface(ABC):
    """Abstract interface for notification delivery."""

    @abstractmethod
    async def dispatch(
        self,
        title: str,
        body: str,
        priority: NotificationPriority,
        data: dict[str, Any],
    ) -> str:
        """
        Show a notification immediately.

        Returns:
            Delivery ID assigned by the platform

        Raises:
            TransientDeliveryError: Temporary failure, safe to retry
            DeliveryError: Permanent failure
        """
        pass

    @abstractmethod
    async def schedule_standing(
        self,
        weekday: int,
        hour: int,
        minute: int,
        payload: dict[str, Any],
    ) -> str:
        """
        Register a weekly repeating notification.

        Args:
            weekday: 0 = Sunday .. 6 = Saturday
            payload: Content plus a "type" key identifying the notification class

        Returns:
            Handle used to cancel it
        """
        pass

    @abstractmethod
    async def cancel_standing(self, handle: str) -> None:
        pass

    @abstractmethod
    async def cancel_all_standing(self) -> None:
        pass

    @abstractmethod
    async def list_standing(self) -> list[StandingReminder]:
        pass


class DeliveryError(Exception):
    """Notification could not be delivered."""
    pass


class TransientDeliveryError(DeliveryError):
    """Temporary delivery failure (platform busy, rate limited)."""
    pass
