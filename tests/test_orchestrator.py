"""Tests for component wiring in the orchestrator."""

import pytest
from datetime import date, datetime

from taxledger.models.notification import NotificationType
from taxledger.orchestrator import TaxLedgerScheduler, create_app_components
from taxledger.scheduling import AppState, ManualLifecycleSource
from taxledger.services.delivery import LoggingDeliveryChannel
from taxledger.services.storage import SqliteDatabase, SqliteRuleStorage


NOW = datetime(2026, 10, 15, 9, 0)


class TestCreateAppComponents:
    """Test the factory in both storage modes."""

    @pytest.mark.asyncio
    async def test_in_memory(self):
        """Test in-memory wiring runs end to end."""
        channel = LoggingDeliveryChannel()
        scheduler, database = create_app_components(
            use_storage=False,
            delivery=channel,
            now_fn=lambda: NOW,
        )

        assert isinstance(scheduler, TaxLedgerScheduler)
        assert database is None

        result = await scheduler.process_due_recurring_transactions(date(2026, 10, 15))
        report = await scheduler.run_daily_checks(2025)

        assert result.generated == []
        assert [n.type for n in report.sent] == [NotificationType.TAX_DEADLINE]
        assert len(channel.dispatched) == 1

    @pytest.mark.asyncio
    async def test_sqlite(self, tmp_path, make_rule):
        """Test SQLite wiring materializes rules stored by the app."""
        db_path = str(tmp_path / "app.db")
        scheduler, database = create_app_components(
            database_path=db_path,
            delivery=LoggingDeliveryChannel(),
            now_fn=lambda: NOW,
        )
        assert database is not None

        seed = SqliteDatabase(db_path).initialize()
        rule = make_rule(date(2026, 9, 1))
        SqliteRuleStorage(seed).save_rule(rule)
        seed.close()

        result = await scheduler.process_due_recurring_transactions(date(2026, 10, 15))
        database.close()

        assert [g.occurrence_date for g in result.generated] == [date(2026, 9, 1), date(2026, 10, 1)]

    def test_tax_calculators_exposed(self):
        """Test the facade forwards to the deadline calculators."""
        scheduler, _ = create_app_components(use_storage=False)

        info = scheduler.get_tax_deadlines(2025, NOW)
        progress = scheduler.get_tax_year_progress(2026, NOW)

        assert info.is_overdue
        assert progress.current_quarter == 4

    @pytest.mark.asyncio
    async def test_install_runs_on_startup(self):
        """Test install mounts the trigger and runs the startup pass."""
        scheduler, _ = create_app_components(
            use_storage=False,
            delivery=LoggingDeliveryChannel(),
            now_fn=lambda: NOW,
        )
        source = ManualLifecycleSource()

        handle = scheduler.install(source)
        await handle.wait_idle()
        source.emit(AppState.BACKGROUND)
        await handle.wait_idle()

        assert source.listener_count == 1
        assert not scheduler.trigger.in_flight
        handle.remove()
        assert source.listener_count == 0
