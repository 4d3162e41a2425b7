"""
SQLite Storage Implementation

DESIGN DECISION: The app keeps all of its state in one local SQLite file.
The scheduler reads and writes the same file through these classes:
1. No server, works offline
2. Real transactions, so an occurrence and its cursor move together
3. Schema creation is idempotent and safe to run on every start

Amounts are stored as TEXT so Decimal values round-trip exactly.
Dates and timestamps are stored as ISO 8601 strings, which sort
chronologically as plain text.
"""

import json
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from taxledger.config import get_settings
from taxledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from taxledger.models.notification import (
    DailyReminderConfig,
    NotificationLogEntry,
    NotificationPreferences,
    NotificationPriority,
    NotificationType,
)
from taxledger.models.recurring import (
    RecurrenceFrequency,
    RecurringRule,
    TransactionRecord,
    TransactionTemplate,
    TransactionType,
)
from taxledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
    StorageError,
    StorageUnavailableError,
)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS recurring_transactions (
        id                  TEXT PRIMARY KEY,
        amount              TEXT NOT NULL,
        type                TEXT NOT NULL CHECK(type IN ('income','expense')),
        category_id         TEXT NOT NULL,
        sub_category_id     TEXT,
        description         TEXT,
        is_tax_deductible   INTEGER NOT NULL DEFAULT 0,
        deductible_amount   TEXT,
        section_40_type     INTEGER,
        frequency           TEXT NOT NULL CHECK(frequency IN ('daily','weekly','monthly','yearly')),
        interval_count      INTEGER NOT NULL DEFAULT 1,
        start_date          TEXT NOT NULL,
        end_date            TEXT,
        next_due_date       TEXT NOT NULL,
        anchor_day          INTEGER,
        is_active           INTEGER NOT NULL DEFAULT 1,
        last_generated_date TEXT,
        created_at          TEXT NOT NULL,
        updated_at          TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS transactions (
        id                TEXT PRIMARY KEY,
        amount            TEXT NOT NULL,
        type              TEXT NOT NULL CHECK(type IN ('income','expense')),
        category_id       TEXT NOT NULL,
        sub_category_id   TEXT,
        description       TEXT NOT NULL DEFAULT '',
        transaction_date  TEXT NOT NULL,
        recurring_id      TEXT REFERENCES recurring_transactions(id) ON DELETE SET NULL,
        is_tax_deductible INTEGER NOT NULL DEFAULT 0,
        deductible_amount TEXT,
        section_40_type   INTEGER,
        created_at        TEXT NOT NULL,
        updated_at        TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS notification_logs (
        id           TEXT PRIMARY KEY,
        type         TEXT NOT NULL CHECK(type IN
                        ('daily_reminder','tax_deadline','budget_alert','recurring_due','custom')),
        title        TEXT NOT NULL,
        body         TEXT NOT NULL,
        priority     TEXT NOT NULL DEFAULT 'normal',
        related_id   TEXT,
        action_route TEXT,
        data_json    TEXT,
        delivery_id  TEXT,
        is_read      INTEGER NOT NULL DEFAULT 0,
        is_sent      INTEGER NOT NULL DEFAULT 0,
        sent_at      TEXT,
        created_at   TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS app_settings (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS audit_events (
        event_id       TEXT PRIMARY KEY,
        timestamp      TEXT NOT NULL,
        event_type     TEXT NOT NULL,
        severity       TEXT NOT NULL,
        entity_type    TEXT,
        entity_id      TEXT,
        correlation_id TEXT,
        description    TEXT NOT NULL,
        details_json   TEXT,
        error_code     TEXT,
        error_message  TEXT
    );

    CREATE INDEX IF NOT EXISTS recurring_next_due_idx ON recurring_transactions(next_due_date);
    CREATE INDEX IF NOT EXISTS recurring_active_idx   ON recurring_transactions(is_active);
    CREATE INDEX IF NOT EXISTS transactions_recurring_idx ON transactions(recurring_id, transaction_date);
    CREATE INDEX IF NOT EXISTS notification_type_idx  ON notification_logs(type, related_id, created_at);
    CREATE INDEX IF NOT EXISTS notification_read_idx  ON notification_logs(is_read);
    CREATE INDEX IF NOT EXISTS audit_correlation_idx  ON audit_events(correlation_id);
"""


def _ts(value: datetime) -> str:
    # Fixed width so text comparison matches chronological order
    return value.isoformat(timespec="microseconds")


def _opt_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _opt_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class SqliteDatabase:
    """
    Low-level SQLite wrapper.

    Owns the single connection and creates the schema. Connection setup is
    retried because the file may be briefly locked by the app's own writer.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        busy_timeout: Optional[float] = None,
    ):
        settings = get_settings().storage
        self.db_path = db_path or settings.database_path
        self._busy_timeout = busy_timeout or settings.busy_timeout_seconds
        self._conn: Optional[sqlite3.Connection] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(StorageUnavailableError),
        reraise=True,
    )
    def connect(self) -> sqlite3.Connection:
        """Open (once) and return the connection."""
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    timeout=self._busy_timeout,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                raise StorageUnavailableError(f"Failed to open database {self.db_path}: {e}")
            self._conn = conn
        return self._conn

    def initialize(self) -> "SqliteDatabase":
        """Create schema. Safe to call on every start."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.commit()
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.connect().execute(
            "SELECT value FROM app_settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else default

    def set_setting(self, key: str, value: str) -> None:
        conn = self.connect()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO app_settings(key, value) VALUES (?, ?)",
                (key, value),
            )


class SqliteRuleStorage(RuleStorageInterface):
    """
    Recurring rules and generated transactions in SQLite.

    materialize_occurrence writes the transaction and the cursor in one
    database transaction, so a crash can't leave one without the other.
    """

    def __init__(self, db: SqliteDatabase):
        self._db = db

    def _row_to_rule(self, row: sqlite3.Row) -> RecurringRule:
        return RecurringRule(
            id=row["id"],
            template=TransactionTemplate(
                amount=Decimal(row["amount"]),
                type=TransactionType(row["type"]),
                category_id=row["category_id"],
                sub_category_id=row["sub_category_id"],
                description=row["description"],
                is_tax_deductible=bool(row["is_tax_deductible"]),
                deductible_amount=_opt_decimal(row["deductible_amount"]),
                section_40_type=row["section_40_type"],
            ),
            frequency=RecurrenceFrequency(row["frequency"]),
            interval=row["interval_count"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=_opt_date(row["end_date"]),
            next_due_date=date.fromisoformat(row["next_due_date"]),
            anchor_day=row["anchor_day"],
            is_active=bool(row["is_active"]),
            last_generated_date=_opt_date(row["last_generated_date"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _query_rules(self, where: str, params: tuple) -> list[RecurringRule]:
        try:
            rows = self._db.connect().execute(
                f"SELECT * FROM recurring_transactions WHERE {where} ORDER BY next_due_date",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to read recurring rules: {e}")
        return [self._row_to_rule(r) for r in rows]

    def save_rule(self, rule: RecurringRule) -> None:
        """Insert or replace a rule (stands in for the app's CRUD layer)."""
        t = rule.template
        conn = self._db.connect()
        with conn:
            conn.execute(
                """INSERT OR REPLACE INTO recurring_transactions
                   (id, amount, type, category_id, sub_category_id, description,
                    is_tax_deductible, deductible_amount, section_40_type,
                    frequency, interval_count, start_date, end_date, next_due_date,
                    anchor_day, is_active, last_generated_date, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rule.id, str(t.amount), t.type.value, t.category_id,
                    t.sub_category_id, t.description, int(t.is_tax_deductible),
                    str(t.deductible_amount) if t.deductible_amount is not None else None,
                    t.section_40_type, rule.frequency.value, rule.interval,
                    rule.start_date.isoformat(),
                    rule.end_date.isoformat() if rule.end_date else None,
                    rule.next_due_date.isoformat(), rule.anchor_day,
                    int(rule.is_active),
                    rule.last_generated_date.isoformat() if rule.last_generated_date else None,
                    _ts(rule.created_at), _ts(rule.updated_at),
                ),
            )

    async def find_active_due_rules(self, as_of: date) -> list[RecurringRule]:
        return self._query_rules(
            "is_active = 1 AND next_due_date <= ?", (as_of.isoformat(),)
        )

    async def find_active_rules_due_between(
        self,
        start: date,
        end: date,
    ) -> list[RecurringRule]:
        return self._query_rules(
            "is_active = 1 AND next_due_date >= ? AND next_due_date <= ?",
            (start.isoformat(), end.isoformat()),
        )

    async def list_active_rules(self) -> list[RecurringRule]:
        return self._query_rules("is_active = 1", ())

    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        rules = self._query_rules("id = ?", (rule_id,))
        return rules[0] if rules else None

    def _insert_transaction(self, conn: sqlite3.Connection, tx: TransactionRecord) -> None:
        now = _ts(datetime.now())
        try:
            conn.execute(
                """INSERT INTO transactions
                   (id, amount, type, category_id, sub_category_id, description,
                    transaction_date, recurring_id, is_tax_deductible,
                    deductible_amount, section_40_type, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    tx.id, str(tx.amount), tx.type.value, tx.category_id,
                    tx.sub_category_id, tx.description,
                    tx.transaction_date.isoformat(), tx.recurring_id,
                    int(tx.is_tax_deductible),
                    str(tx.deductible_amount) if tx.deductible_amount is not None else None,
                    tx.section_40_type, _ts(tx.created_at), now,
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateError(f"Transaction already exists: {tx.id} ({e})")
            raise StorageError(f"Failed to insert transaction {tx.id}: {e}")

    def _update_cursor(
        self,
        conn: sqlite3.Connection,
        rule_id: str,
        next_due_date: date,
        last_generated_date: Optional[date],
    ) -> None:
        cursor = conn.execute(
            """UPDATE recurring_transactions
               SET next_due_date = ?,
                   last_generated_date = COALESCE(?, last_generated_date),
                   updated_at = ?
               WHERE id = ?""",
            (
                next_due_date.isoformat(),
                last_generated_date.isoformat() if last_generated_date else None,
                _ts(datetime.now()),
                rule_id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")

    async def create_transaction(self, transaction: TransactionRecord) -> str:
        conn = self._db.connect()
        try:
            with conn:
                self._insert_transaction(conn, transaction)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create transaction: {e}")
        return transaction.id

    async def advance_rule(
        self,
        rule_id: str,
        next_due_date: date,
        last_generated_date: Optional[date] = None,
    ) -> None:
        conn = self._db.connect()
        try:
            with conn:
                self._update_cursor(conn, rule_id, next_due_date, last_generated_date)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to advance rule {rule_id}: {e}")

    async def materialize_occurrence(
        self,
        transaction: TransactionRecord,
        next_due_date: date,
    ) -> str:
        conn = self._db.connect()
        try:
            with conn:
                self._insert_transaction(conn, transaction)
                self._update_cursor(
                    conn,
                    transaction.recurring_id,
                    next_due_date,
                    transaction.transaction_date,
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to materialize occurrence: {e}")
        return transaction.id

    async def find_latest_occurrence(self, rule_id: str) -> Optional[date]:
        row = self._db.connect().execute(
            "SELECT MAX(transaction_date) AS latest FROM transactions WHERE recurring_id = ?",
            (rule_id,),
        ).fetchone()
        return _opt_date(row["latest"]) if row else None

    async def deactivate_rule(self, rule_id: str) -> None:
        conn = self._db.connect()
        with conn:
            cursor = conn.execute(
                "UPDATE recurring_transactions SET is_active = 0, updated_at = ? WHERE id = ?",
                (_ts(datetime.now()), rule_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")

    def count_transactions(self, rule_id: str) -> int:
        row = self._db.connect().execute(
            "SELECT COUNT(*) AS n FROM transactions WHERE recurring_id = ?", (rule_id,)
        ).fetchone()
        return row["n"]


class SqliteNotificationLogStorage(NotificationLogStorageInterface):
    """Notification log table."""

    def __init__(self, db: SqliteDatabase):
        self._db = db

    def _row_to_entry(self, row: sqlite3.Row) -> NotificationLogEntry:
        return NotificationLogEntry(
            id=row["id"],
            type=NotificationType(row["type"]),
            title=row["title"],
            body=row["body"],
            priority=NotificationPriority(row["priority"]),
            related_id=row["related_id"],
            action_route=row["action_route"],
            data=json.loads(row["data_json"]) if row["data_json"] else {},
            delivery_id=row["delivery_id"],
            is_read=bool(row["is_read"]),
            is_sent=bool(row["is_sent"]),
            sent_at=datetime.fromisoformat(row["sent_at"]) if row["sent_at"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def find_recent(
        self,
        notification_type: NotificationType,
        related_id: Optional[str],
        since: datetime,
    ) -> list[NotificationLogEntry]:
        sql = "SELECT * FROM notification_logs WHERE type = ? AND created_at >= ?"
        params: list = [notification_type.value, _ts(since)]
        if related_id is not None:
            sql += " AND related_id = ?"
            params.append(related_id)
        try:
            rows = self._db.connect().execute(sql + " ORDER BY created_at", params).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to read notification log: {e}")
        return [self._row_to_entry(r) for r in rows]

    async def insert(self, entry: NotificationLogEntry) -> None:
        conn = self._db.connect()
        try:
            with conn:
                conn.execute(
                    """INSERT INTO notification_logs
                       (id, type, title, body, priority, related_id, action_route,
                        data_json, delivery_id, is_read, is_sent, sent_at, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        entry.id, entry.type.value, entry.title, entry.body,
                        entry.priority.value, entry.related_id, entry.action_route,
                        json.dumps(entry.data, default=str) if entry.data else None,
                        entry.delivery_id, int(entry.is_read), int(entry.is_sent),
                        _ts(entry.sent_at) if entry.sent_at else None,
                        _ts(entry.created_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Notification already logged: {entry.id} ({e})")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write notification log: {e}")

    async def mark_read(self, notification_id: str) -> None:
        conn = self._db.connect()
        with conn:
            cursor = conn.execute(
                "UPDATE notification_logs SET is_read = 1 WHERE id = ?", (notification_id,)
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Notification not found: {notification_id}")

    async def mark_all_read(self) -> int:
        conn = self._db.connect()
        with conn:
            cursor = conn.execute("UPDATE notification_logs SET is_read = 1 WHERE is_read = 0")
        return cursor.rowcount

    async def list_entries(
        self,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationLogEntry]:
        sql = "SELECT * FROM notification_logs"
        if unread_only:
            sql += " WHERE is_read = 0"
        rows = self._db.connect().execute(
            sql + " ORDER BY created_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    async def count_unread(self) -> int:
        row = self._db.connect().execute(
            "SELECT COUNT(*) AS n FROM notification_logs WHERE is_read = 0"
        ).fetchone()
        return row["n"]

    async def delete(self, notification_id: str) -> None:
        conn = self._db.connect()
        with conn:
            conn.execute("DELETE FROM notification_logs WHERE id = ?", (notification_id,))


class SqliteAuditStorage(AuditStorageInterface):
    """Append-only audit_events table."""

    def __init__(self, db: SqliteDatabase):
        self._db = db

    def _row_to_event(self, row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
        )

    async def append_event(self, event: AuditEvent) -> bool:
        conn = self._db.connect()
        try:
            with conn:
                conn.execute(
                    """INSERT INTO audit_events
                       (event_id, timestamp, event_type, severity, entity_type,
                        entity_id, correlation_id, description, details_json,
                        error_code, error_message)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    event.to_row(),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append audit event: {e}")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = self._db.connect().execute(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp",
            (str(correlation_id),),
        ).fetchall()
        return [self._row_to_event(r) for r in rows]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        rows = self._db.connect().execute(
            "SELECT * FROM audit_events ORDER BY timestamp DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._row_to_event(r) for r in rows]


class SqliteSettingsReader(SettingsReaderInterface):
    """
    Reads notification preferences from the app_settings key/value table.

    Missing keys fall back to defaults; this class never writes.
    """

    def __init__(self, db: SqliteDatabase):
        self._db = db

    def _flag(self, key: str, default: bool) -> bool:
        value = self._db.get_setting(key)
        if value is None:
            return default
        return value.strip().lower() in ("1", "true", "yes", "on")

    async def get_notification_preferences(self) -> NotificationPreferences:
        days_raw = self._db.get_setting("daily_reminder_days")
        days = (
            [int(d) for d in days_raw.split(",") if d.strip()]
            if days_raw else [1, 2, 3, 4, 5, 6, 0]
        )
        return NotificationPreferences(
            daily_reminder=DailyReminderConfig(
                enabled=self._flag("daily_reminder_enabled", False),
                time=self._db.get_setting(
                    "daily_reminder_time",
                    get_settings().notifications.default_reminder_time,
                ),
                days_of_week=days,
            ),
            tax_deadline_reminder=self._flag("tax_deadline_reminder", True),
            budget_alerts=self._flag("budget_alerts", True),
            recurring_reminders=self._flag("recurring_reminders", True),
            sound_enabled=self._flag("sound_enabled", True),
            vibration_enabled=self._flag("vibration_enabled", True),
        )
