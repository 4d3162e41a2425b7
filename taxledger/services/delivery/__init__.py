"""Notification delivery channels."""

from taxledger.services.delivery.interface import (
    DeliveryChannelInterface,
    DeliveryError,
    TransientDeliveryError,
)
from taxledger.services.delivery.logging_channel import LoggingDeliveryChannel

__all__ = [
    "DeliveryChannelInterface",
    "DeliveryError",
    "LoggingDeliveryChannel",
    "TransientDeliveryError",
]
