"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLite is the production backend; the in-memory backend backs the tests.
"""

from taxledger.services.storage.interface import (
    AuditStorageInterface,
    CursorAdvanceError,
    DuplicateError,
    NotFoundError,
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
    StorageError,
    StorageUnavailableError,
)
from taxledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryNotificationLogStorage,
    InMemoryRuleStorage,
    StaticSettingsReader,
)
from taxledger.services.storage.sqlite import (
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteNotificationLogStorage,
    SqliteRuleStorage,
    SqliteSettingsReader,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "NotificationLogStorageInterface",
    "RuleStorageInterface",
    "SettingsReaderInterface",
    # Exceptions
    "CursorAdvanceError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "StorageUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryNotificationLogStorage",
    "InMemoryRuleStorage",
    "StaticSettingsReader",
    # SQLite implementation
    "SqliteAuditStorage",
    "SqliteDatabase",
    "SqliteNotificationLogStorage",
    "SqliteRuleStorage",
    "SqliteSettingsReader",
]
