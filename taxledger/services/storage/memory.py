"""
In-Memory Storage Implementation

Keeps everything in plain Python containers. Used by the test suite and
by callers that embed the scheduler without a database (e.g. previews).

Returned models are copies, so callers can't mutate stored state by
accident - the same guarantee a real database gives.
"""

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
from taxledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
)


class InMemoryRuleStorage(RuleStorageInterface):
    """Rules and generated transactions held in dictionaries."""

    def __init__(self, rules: Optional[list[RecurringRule]] = None):
        self._rules: dict[str, RecurringRule] = {}
        self._transactions: dict[str, TransactionRecord] = {}
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: RecurringRule) -> None:
        """Seed a rule (stands in for the app's CRUD layer)."""
        self._rules[rule.id] = rule.model_copy(deep=True)

    @property
    def transactions(self) -> list[TransactionRecord]:
        return sorted(
            self._transactions.values(),
            key=lambda t: (t.transaction_date, t.created_at),
        )

    def transactions_for(self, rule_id: str) -> list[TransactionRecord]:
        return [t for t in self.transactions if t.recurring_id == rule_id]

    async def find_active_due_rules(self, as_of: date) -> list[RecurringRule]:
        due = [
            r for r in self._rules.values()
            if r.is_active and r.next_due_date <= as_of
        ]
        return [r.model_copy(deep=True) for r in sorted(due, key=lambda r: r.next_due_date)]

    async def find_active_rules_due_between(
        self,
        start: date,
        end: date,
    ) -> list[RecurringRule]:
        due = [
            r for r in self._rules.values()
            if r.is_active and start <= r.next_due_date <= end
        ]
        return [r.model_copy(deep=True) for r in sorted(due, key=lambda r: r.next_due_date)]

    async def list_active_rules(self) -> list[RecurringRule]:
        return [r.model_copy(deep=True) for r in self._rules.values() if r.is_active]

    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def create_transaction(self, transaction: TransactionRecord) -> str:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.id

    async def advance_rule(
        self,
        rule_id: str,
        next_due_date: date,
        last_generated_date: Optional[date] = None,
    ) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        update = {"next_due_date": next_due_date, "updated_at": datetime.now()}
        if last_generated_date is not None:
            update["last_generated_date"] = last_generated_date
        self._rules[rule_id] = rule.model_copy(update=update)

    async def find_latest_occurrence(self, rule_id: str) -> Optional[date]:
        dates = [
            t.transaction_date for t in self._transactions.values()
            if t.recurring_id == rule_id
        ]
        return max(dates) if dates else None

    async def deactivate_rule(self, rule_id: str) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        self._rules[rule_id] = rule.model_copy(
            update={"is_active": False, "updated_at": datetime.now()}
        )


class InMemoryNotificationLogStorage(NotificationLogStorageInterface):
    """Notification log held in a dictionary keyed by entry ID."""

    def __init__(self):
        self._entries: dict[str, NotificationLogEntry] = {}

    @property
    def entries(self) -> list[NotificationLogEntry]:
        return sorted(self._entries.values(), key=lambda e: e.created_at)

    async def find_recent(
        self,
        notification_type: NotificationType,
        related_id: Optional[str],
        since: datetime,
    ) -> list[NotificationLogEntry]:
        return [
            e.model_copy() for e in self.entries
            if e.type == notification_type
            and (related_id is None or e.related_id == related_id)
            and e.created_at >= since
        ]

    async def insert(self, entry: NotificationLogEntry) -> None:
        if entry.id in self._entries:
            raise DuplicateError(f"Notification already logged: {entry.id}")
        self._entries[entry.id] = entry.model_copy(deep=True)

    async def mark_read(self, notification_id: str) -> None:
        entry = self._entries.get(notification_id)
        if entry is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        self._entries[notification_id] = entry.model_copy(update={"is_read": True})

    async def mark_all_read(self) -> int:
        changed = 0
        for entry_id, entry in list(self._entries.items()):
            if not entry.is_read:
                self._entries[entry_id] = entry.model_copy(update={"is_read": True})
                changed += 1
        return changed

    async def list_entries(
        self,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationLogEntry]:
        entries = [e for e in reversed(self.entries) if not (unread_only and e.is_read)]
        return [e.model_copy() for e in entries[:limit]]

    async def count_unread(self) -> int:
        return sum(1 for e in self._entries.values() if not e.is_read)

    async def delete(self, notification_id: str) -> None:
        self._entries.pop(notification_id, None)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]


class StaticSettingsReader(SettingsReaderInterface):
    """Serves a fixed set of preferences; swap them with `preferences = ...`."""

    def __init__(self, preferences: Optional[NotificationPreferences] = None):
        self.preferences = preferences or NotificationPreferences()

    async def get_notification_preferences(self) -> NotificationPreferences:
        return self.preferences
