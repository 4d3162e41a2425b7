"""Services package."""

from taxledger.services.budget import (
    BudgetEvaluatorInterface,
    NoBudgetEvaluator,
)
from taxledger.services.delivery import (
    DeliveryChannelInterface,
    DeliveryError,
    LoggingDeliveryChannel,
    TransientDeliveryError,
)
from taxledger.services.storage import (
    AuditStorageInterface,
    CursorAdvanceError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryNotificationLogStorage,
    InMemoryRuleStorage,
    NotFoundError,
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteNotificationLogStorage,
    SqliteRuleStorage,
    SqliteSettingsReader,
    StaticSettingsReader,
    StorageError,
    StorageUnavailableError,
)

__all__ = [
    # Budget
    "BudgetEvaluatorInterface",
    "NoBudgetEvaluator",
    # Delivery
    "DeliveryChannelInterface",
    "DeliveryError",
    "LoggingDeliveryChannel",
    "TransientDeliveryError",
    # Storage
    "AuditStorageInterface",
    "CursorAdvanceError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryNotificationLogStorage",
    "InMemoryRuleStorage",
    "NotFoundError",
    "NotificationLogStorageInterface",
    "RuleStorageInterface",
    "SettingsReaderInterface",
    "SqliteAuditStorage",
    "SqliteDatabase",
    "SqliteNotificationLogStorage",
    "SqliteRuleStorage",
    "SqliteSettingsReader",
    "StaticSettingsReader",
    "StorageError",
    "StorageUnavailableError",
]
