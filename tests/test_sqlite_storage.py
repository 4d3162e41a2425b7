"""
Tests for the SQLite backend.

Each test gets its own database file under tmp_path.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from taxledger.audit import AuditLogger, create_correlation_id
from taxledger.models.audit import AuditEventType
from taxledger.models.notification import NotificationType
from taxledger.models.recurring import TransactionRecord, TransactionType
from taxledger.notifications import DeduplicatedNotifier
from taxledger.scheduling import RecurringMaterializer
from taxledger.services.delivery import LoggingDeliveryChannel
from taxledger.services.storage import (
    DuplicateError,
    NotFoundError,
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteNotificationLogStorage,
    SqliteRuleStorage,
    SqliteSettingsReader,
)


class CursorlessRuleStorage(SqliteRuleStorage):
    """Fails every cursor update, inside the same database transaction."""

    def _update_cursor(self, conn, rule_id, next_due_date, last_generated_date):
        raise NotFoundError("simulated cursor failure")


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "taxledger.db")


@pytest.fixture
def db(db_path):
    database = SqliteDatabase(db_path).initialize()
    yield database
    database.close()


class TestSqliteDatabase:
    """Tests for connection and schema setup."""

    def test_initialize_is_idempotent(self, db):
        """Test schema creation can run on every start."""
        db.initialize()
        db.initialize()
        tables = {
            row["name"] for row in db.connect().execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
        }
        assert {"recurring_transactions", "transactions", "notification_logs",
                "app_settings", "audit_events"} <= tables

    def test_settings_key_value(self, db):
        """Test app_settings get/set."""
        assert db.get_setting("missing", "fallback") == "fallback"
        db.set_setting("budget_alerts", "false")
        db.set_setting("budget_alerts", "true")
        assert db.get_setting("budget_alerts") == "true"


class TestSqliteRuleStorage:
    """Tests for rules and generated transactions."""

    @pytest.mark.asyncio
    async def test_rule_fields_survive_storage(self, db, make_rule):
        """Test decimals, anchors and optional dates are stored faithfully."""
        storage = SqliteRuleStorage(db)
        rule = make_rule(
            date(2026, 2, 28),
            start=date(2026, 1, 31),
            end=date(2026, 12, 31),
            amount="1234.56",
            anchor_day=31,
        )
        storage.save_rule(rule)

        loaded = await storage.get_rule(rule.id)

        assert loaded.template.amount == Decimal("1234.56")
        assert loaded.anchor_day == 31
        assert loaded.end_date == date(2026, 12, 31)
        assert loaded.next_due_date == date(2026, 2, 28)
        assert await storage.get_rule("missing") is None

    @pytest.mark.asyncio
    async def test_due_queries(self, db, make_rule):
        """Test due and due-between filters."""
        storage = SqliteRuleStorage(db)
        due = make_rule(date(2026, 10, 1))
        tomorrow = make_rule(date(2026, 10, 16))
        inactive = make_rule(date(2026, 10, 1), is_active=False)
        for rule in (due, tomorrow, inactive):
            storage.save_rule(rule)

        assert [r.id for r in await storage.find_active_due_rules(date(2026, 10, 15))] == [due.id]
        between = await storage.find_active_rules_due_between(date(2026, 10, 15), date(2026, 10, 16))
        assert [r.id for r in between] == [tomorrow.id]
        assert len(await storage.list_active_rules()) == 2

    @pytest.mark.asyncio
    async def test_materializer_catch_up(self, db, make_rule):
        """Test a full catch-up run against SQLite."""
        storage = SqliteRuleStorage(db)
        rule = make_rule(date(2026, 7, 20))
        storage.save_rule(rule)
        materializer = RecurringMaterializer(storage)

        result = await materializer.process_due(date(2026, 10, 15))
        again = await materializer.process_due(date(2026, 10, 15))

        assert len(result.generated) == 3
        assert again.generated == []
        assert storage.count_transactions(rule.id) == 3
        assert await storage.find_latest_occurrence(rule.id) == date(2026, 9, 20)
        assert (await storage.get_rule(rule.id)).next_due_date == date(2026, 10, 20)

    @pytest.mark.asyncio
    async def test_materialize_occurrence_is_atomic(self, db, make_rule):
        """Test a failed cursor update rolls back the transaction insert."""
        storage = CursorlessRuleStorage(db)
        rule = make_rule(date(2026, 10, 1))
        storage.save_rule(rule)
        tx = RecurringMaterializer(storage).build_transaction(rule, date(2026, 10, 1))

        with pytest.raises(NotFoundError):
            await storage.materialize_occurrence(tx, date(2026, 11, 1))

        assert storage.count_transactions(rule.id) == 0

    @pytest.mark.asyncio
    async def test_duplicate_transaction_rejected(self, db, make_rule):
        """Test inserting the same transaction twice fails."""
        storage = SqliteRuleStorage(db)
        rule = make_rule(date(2026, 10, 1))
        storage.save_rule(rule)
        tx = TransactionRecord(
            amount=Decimal("100"),
            type=TransactionType.EXPENSE,
            category_id="housing",
            description="Rent",
            transaction_date=date(2026, 10, 1),
            recurring_id=rule.id,
        )

        await storage.create_transaction(tx)
        with pytest.raises(DuplicateError):
            await storage.create_transaction(tx)

    @pytest.mark.asyncio
    async def test_reconciles_crash_between_writes(self, db, make_rule):
        """Test a transaction written without its cursor is not duplicated."""
        storage = SqliteRuleStorage(db)
        rule = make_rule(date(2026, 10, 1))
        storage.save_rule(rule)
        materializer = RecurringMaterializer(storage)
        # Simulate a crash right after the insert
        await storage.create_transaction(materializer.build_transaction(rule, date(2026, 10, 1)))

        result = await materializer.process_due(date(2026, 10, 15))

        assert result.reconciled == 1
        assert result.generated == []
        assert storage.count_transactions(rule.id) == 1
        assert (await storage.get_rule(rule.id)).next_due_date == date(2026, 11, 1)

    @pytest.mark.asyncio
    async def test_deactivate(self, db, make_rule):
        """Test deactivation and the missing-rule error."""
        storage = SqliteRuleStorage(db)
        rule = make_rule(date(2026, 10, 1))
        storage.save_rule(rule)

        await storage.deactivate_rule(rule.id)

        assert not (await storage.get_rule(rule.id)).is_active
        with pytest.raises(NotFoundError):
            await storage.deactivate_rule("missing")


class TestSqliteNotificationLog:
    """Tests for notification log persistence."""

    @pytest.mark.asyncio
    async def test_dedup_survives_restart(self, db_path, make_rule):
        """Test a reminder sent before a restart is not sent again after it."""
        now = datetime(2026, 10, 15, 9, 0)

        first_db = SqliteDatabase(db_path).initialize()
        rules = SqliteRuleStorage(first_db)
        rules.save_rule(make_rule(date(2026, 10, 15)))
        first_channel = LoggingDeliveryChannel()
        first = DeduplicatedNotifier(
            SqliteNotificationLogStorage(first_db),
            first_channel,
            SqliteSettingsReader(first_db),
            rules,
            now_fn=lambda: now,
        )
        await first.check_recurring_due()
        first_db.close()

        second_db = SqliteDatabase(db_path).initialize()
        second_channel = LoggingDeliveryChannel()
        second = DeduplicatedNotifier(
            SqliteNotificationLogStorage(second_db),
            second_channel,
            SqliteSettingsReader(second_db),
            SqliteRuleStorage(second_db),
            now_fn=lambda: datetime(2026, 10, 15, 18, 30),
        )
        report = await second.check_recurring_due()
        second_db.close()

        assert len(first_channel.dispatched) == 1
        assert second_channel.dispatched == []
        assert report.suppressed == 1

    @pytest.mark.asyncio
    async def test_history_operations(self, db):
        """Test read state, listing and deletion."""
        log = SqliteNotificationLogStorage(db)
        notifier = DeduplicatedNotifier(
            log,
            LoggingDeliveryChannel(),
            SqliteSettingsReader(db),
            SqliteRuleStorage(db),
            now_fn=lambda: datetime(2026, 10, 15, 9, 0),
        )
        entry = await notifier.send_if_not_duplicate(
            NotificationType.CUSTOM, "x", title="Hello", body="World", data={"k": 1}
        )

        stored = (await log.find_recent(NotificationType.CUSTOM, "x", datetime(2026, 10, 15)))[0]
        assert stored.id == entry.id
        assert stored.data["k"] == 1
        assert stored.delivery_id == entry.delivery_id

        assert await notifier.get_unread_count() == 1
        await notifier.mark_as_read(entry.id)
        assert await notifier.get_history(unread_only=True) == []
        await notifier.delete(entry.id)
        assert await notifier.get_history() == []

    @pytest.mark.asyncio
    async def test_find_recent_window_boundary(self, db):
        """Test entries before the window start are ignored."""
        log = SqliteNotificationLogStorage(db)
        notifier = DeduplicatedNotifier(
            log,
            LoggingDeliveryChannel(),
            SqliteSettingsReader(db),
            SqliteRuleStorage(db),
            now_fn=lambda: datetime(2026, 10, 14, 23, 59, 59),
        )
        await notifier.send_if_not_duplicate(NotificationType.TAX_DEADLINE, "2025", title="Tax", body="Soon")

        assert await log.find_recent(NotificationType.TAX_DEADLINE, "2025", datetime(2026, 10, 15)) == []
        assert len(await log.find_recent(NotificationType.TAX_DEADLINE, None, datetime(2026, 10, 14))) == 1


class TestSqliteAuditAndSettings:
    """Tests for audit persistence and the preferences reader."""

    @pytest.mark.asyncio
    async def test_audit_events_by_correlation(self, db):
        """Test events are stored and found by correlation ID."""
        logger = AuditLogger(SqliteAuditStorage(db))
        correlation_id = create_correlation_id()

        await logger.log_pipeline_started("startup", correlation_id)
        await logger.log_pipeline_skipped("manual_refresh")

        events = await SqliteAuditStorage(db).get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.PIPELINE_STARTED]
        assert len(await SqliteAuditStorage(db).get_recent_events()) == 2

    @pytest.mark.asyncio
    async def test_preferences_defaults(self, db):
        """Test defaults when nothing is stored."""
        prefs = await SqliteSettingsReader(db).get_notification_preferences()
        assert not prefs.daily_reminder.enabled
        assert prefs.daily_reminder.time == "20:00"
        assert prefs.tax_deadline_reminder and prefs.budget_alerts and prefs.recurring_reminders

    @pytest.mark.asyncio
    async def test_preferences_from_settings_table(self, db):
        """Test stored preferences are parsed."""
        db.set_setting("daily_reminder_enabled", "true")
        db.set_setting("daily_reminder_time", "07:45")
        db.set_setting("daily_reminder_days", "1,3,5")
        db.set_setting("budget_alerts", "0")

        prefs = await SqliteSettingsReader(db).get_notification_preferences()

        assert prefs.daily_reminder.enabled
        assert (prefs.daily_reminder.hour, prefs.daily_reminder.minute) == (7, 45)
        assert prefs.daily_reminder.days_of_week == [1, 3, 5]
        assert not prefs.budget_alerts
