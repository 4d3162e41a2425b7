"""
Abstract Storage Interface

DESIGN DECISION: The scheduler never talks to a database directly.
It only sees the operations defined here. This allows us to:
1. Run on the app's local SQLite database
2. Use in-memory storage for testing
3. Keep scheduling logic decoupled from the query layer

The interface is intentionally small - the CRUD layer owns everything else.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from taxledger.models.audit import AuditEvent
from taxledger.models.notification import (
    NotificationLogEntry,
    NotificationPreferences,
    NotificationType,
)
from taxledger.models.recurring import RecurringRule, TransactionRecord


class RuleStorageInterface(ABC):
    """
    Abstract interface for recurring rules and the transactions they produce.
    """

    @abstractmethod
    async def find_active_due_rules(self, as_of: date) -> list[RecurringRule]:
        """
        Get active rules whose cursor is on or before as_of.

        Returns:
            Rules ordered by next_due_date (earliest first)

        Raises:
            StorageUnavailableError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def find_active_rules_due_between(
        self,
        start: date,
        end: date,
    ) -> list[RecurringRule]:
        """Get active rules whose cursor falls in [start, end]."""
        pass

    @abstractmethod
    async def list_active_rules(self) -> list[RecurringRule]:
        """Get every active rule."""
        pass

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        """
        Retrieve a rule by ID.

        Returns:
            The rule if found, None otherwise
        """
        pass

    @abstractmethod
    async def create_transaction(self, transaction: TransactionRecord) -> str:
        """
        Persist a generated transaction.

        Returns:
            The stored transaction's ID

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def advance_rule(
        self,
        rule_id: str,
        next_due_date: date,
        last_generated_date: Optional[date] = None,
    ) -> None:
        """
        Move a rule's cursor forward.

        Raises:
            NotFoundError: If the rule doesn't exist
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def find_latest_occurrence(self, rule_id: str) -> Optional[date]:
        """
        Date of the newest transaction generated from this rule.

        Used to repair a cursor that was not advanced after its
        transaction was written.
        """
        pass

    @abstractmethod
    async def deactivate_rule(self, rule_id: str) -> None:
        """Mark a rule inactive. Rules are never deleted by the scheduler."""
        pass

    async def materialize_occurrence(
        self,
        transaction: TransactionRecord,
        next_due_date: date,
    ) -> str:
        """
        Write one occurrence: create the transaction, then advance the cursor.

        Backends that support transactions should override this and do both
        writes atomically. The default is two separate writes; a failure
        between them is repaired by find_latest_occurrence on the next run.

        Raises:
            CursorAdvanceError: If the transaction was written but the
                                cursor could not be advanced
        """
        transaction_id = await self.create_transaction(transaction)
        try:
            await self.advance_rule(
                transaction.recurring_id,
                next_due_date,
                last_generated_date=transaction.transaction_date,
            )
        except Exception as e:
            raise CursorAdvanceError(transaction_id, str(e)) from e
        return transaction_id


class NotificationLogStorageInterface(ABC):
    """
    Abstract interface for the notification log.

    The log is the dedup source of truth.
    """

    @abstractmethod
    async def find_recent(
        self,
        notification_type: NotificationType,
        related_id: Optional[str],
        since: datetime,
    ) -> list[NotificationLogEntry]:
        """
        Get entries of a type created at or after `since`.

        Args:
            notification_type: Notification class to match
            related_id: If given, only entries with this related ID match
            since: Inclusive lower bound on created_at
        """
        pass

    @abstractmethod
    async def insert(self, entry: NotificationLogEntry) -> None:
        """Append an entry to the log."""
        pass

    @abstractmethod
    async def mark_read(self, notification_id: str) -> None:
        """Set is_read on one entry."""
        pass

    @abstractmethod
    async def mark_all_read(self) -> int:
        """Set is_read on every unread entry. Returns how many changed."""
        pass

    @abstractmethod
    async def list_entries(
        self,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationLogEntry]:
        """Get entries newest first."""
        pass

    @abstractmethod
    async def count_unread(self) -> int:
        pass

    @abstractmethod
    async def delete(self, notification_id: str) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one pipeline run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class SettingsReaderInterface(ABC):
    """Read-only access to the user's notification settings."""

    @abstractmethod
    async def get_notification_preferences(self) -> NotificationPreferences:
        """
        Current notification preferences.

        Implementations return defaults when nothing is stored yet.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageUnavailableError(StorageError):
    """Could not reach the storage backend at all."""
    pass


class CursorAdvanceError(StorageError):
    """A transaction was written but its rule's cursor was not advanced."""

    def __init__(self, transaction_id: str, message: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction {transaction_id} created but cursor not advanced: {message}"
        )
