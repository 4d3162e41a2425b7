"""
Tests for the scheduling trigger and the lifecycle hook.

Overlap is simulated with a materializer that blocks on an asyncio.Event.
"""

import asyncio

import pytest
from datetime import date, datetime

from taxledger.audit import AuditLogger
from taxledger.models.audit import AuditEventType
from taxledger.models.notification import NotificationType
from taxledger.models.recurring import SchedulerResult
from taxledger.notifications import DeduplicatedNotifier
from taxledger.scheduling import (
    AppState,
    LifecycleEdgeDetector,
    ManualLifecycleSource,
    RecurringMaterializer,
    SchedulingTrigger,
    install_scheduler,
)
from taxledger.services.delivery import LoggingDeliveryChannel
from taxledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryNotificationLogStorage,
    InMemoryRuleStorage,
    StaticSettingsReader,
)


NOW = datetime(2026, 10, 15, 9, 0)


class BlockingMaterializer(RecurringMaterializer):
    """Waits on `release` inside process_due and counts calls."""

    def __init__(self):
        super().__init__(InMemoryRuleStorage())
        self.release = asyncio.Event()
        self.calls = 0

    async def process_due(self, as_of=None, correlation_id=None):
        self.calls += 1
        await self.release.wait()
        return SchedulerResult()


class ExplodingMaterializer(RecurringMaterializer):
    def __init__(self):
        super().__init__(InMemoryRuleStorage())

    async def process_due(self, as_of=None, correlation_id=None):
        raise RuntimeError("unexpected")


class TestLifecycleEdgeDetector:
    """Tests for foreground edge detection."""

    @pytest.mark.parametrize("previous, expected", [
        (AppState.BACKGROUND, True),
        (AppState.INACTIVE, True),
        (AppState.ACTIVE, False),
    ])
    def test_edge_to_active(self, previous, expected):
        """Test only inactive/background -> active fires."""
        detector = LifecycleEdgeDetector(previous)
        assert detector.observe(AppState.ACTIVE) is expected
        assert detector.state == AppState.ACTIVE

    def test_leaving_active_never_fires(self):
        """Test transitions away from active don't fire."""
        detector = LifecycleEdgeDetector()
        assert not detector.observe(AppState.INACTIVE)
        assert not detector.observe(AppState.BACKGROUND)
        assert detector.observe(AppState.ACTIVE)


class TestSchedulingTrigger:
    """Tests for the in-flight guard and pipeline."""

    @pytest.mark.asyncio
    async def test_pipeline_materializes_then_notifies(self, make_rule):
        """Test one run generates transactions and sends reminders."""
        rule_storage = InMemoryRuleStorage([make_rule(date(2026, 10, 1)), make_rule(date(2026, 10, 16))])
        channel = LoggingDeliveryChannel()
        notifier = DeduplicatedNotifier(
            InMemoryNotificationLogStorage(),
            channel,
            StaticSettingsReader(),
            rule_storage,
            now_fn=lambda: NOW,
        )
        trigger = SchedulingTrigger(
            RecurringMaterializer(rule_storage),
            notifier,
            now_fn=lambda: NOW,
        )

        run = await trigger.start()

        assert run.succeeded
        assert run.reason == "startup"
        assert run.generated_count == 1
        # The generated rule moved to Nov 1; only the Oct 16 rule is due tomorrow
        assert run.notifications_sent == 1
        assert run.finished_at is not None
        assert not trigger.in_flight

    @pytest.mark.asyncio
    async def test_pipeline_sends_pending_tax_reminder(self):
        """Test the lifecycle pipeline reminds about last year's return in April."""
        now = datetime(2026, 4, 7, 10, 0)
        rule_storage = InMemoryRuleStorage()
        log_storage = InMemoryNotificationLogStorage()
        notifier = DeduplicatedNotifier(
            log_storage,
            LoggingDeliveryChannel(),
            StaticSettingsReader(),
            rule_storage,
            now_fn=lambda: now,
        )
        trigger = SchedulingTrigger(RecurringMaterializer(rule_storage), notifier, now_fn=lambda: now)

        run = await trigger.start()

        assert run.notifications_sent == 1
        assert [(e.type, e.related_id) for e in log_storage.entries] == [
            (NotificationType.TAX_DEADLINE, "2025")
        ]

    @pytest.mark.asyncio
    async def test_overlapping_call_dropped(self):
        """Test a call while a run is in flight returns None immediately."""
        materializer = BlockingMaterializer()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        first = asyncio.create_task(trigger.start())
        await asyncio.sleep(0)
        assert trigger.in_flight

        assert await trigger.refresh() is None

        materializer.release.set()
        run = await first
        assert run is not None
        assert materializer.calls == 1
        assert not trigger.in_flight

    @pytest.mark.asyncio
    async def test_concurrent_starts_collapse(self):
        """Test many simultaneous invocations run the pipeline once."""
        materializer = BlockingMaterializer()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        tasks = [asyncio.create_task(trigger.refresh()) for _ in range(5)]
        await asyncio.sleep(0)
        materializer.release.set()
        runs = await asyncio.gather(*tasks)

        assert materializer.calls == 1
        assert sum(run is not None for run in runs) == 1

    @pytest.mark.asyncio
    async def test_runs_again_after_completion(self):
        """Test the flag is cleared so later calls run."""
        materializer = BlockingMaterializer()
        materializer.release.set()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        assert await trigger.start() is not None
        assert await trigger.refresh() is not None
        assert materializer.calls == 2

    @pytest.mark.asyncio
    async def test_state_change_runs_only_on_edge(self):
        """Test on_state_change runs the pipeline only on return to foreground."""
        materializer = BlockingMaterializer()
        materializer.release.set()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        assert await trigger.on_state_change(AppState.ACTIVE) is None
        assert await trigger.on_state_change(AppState.BACKGROUND) is None
        run = await trigger.on_state_change(AppState.ACTIVE)

        assert run.reason == "foreground"
        assert materializer.calls == 1

    @pytest.mark.asyncio
    async def test_errors_never_escape(self):
        """Test a failing pipeline is reported on the run and audited."""
        audit_storage = InMemoryAuditStorage()
        trigger = SchedulingTrigger(
            ExplodingMaterializer(),
            audit_logger=AuditLogger(audit_storage),
            now_fn=lambda: NOW,
        )

        run = await trigger.refresh()

        assert not run.succeeded
        assert run.error == "unexpected"
        assert not trigger.in_flight
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.SYSTEM_ERROR in types
        assert types[0] == AuditEventType.PIPELINE_STARTED
        assert types[-1] == AuditEventType.PIPELINE_COMPLETED

    @pytest.mark.asyncio
    async def test_dropped_call_audited(self):
        """Test dropped invocations leave a pipeline_skipped event."""
        audit_storage = InMemoryAuditStorage()
        materializer = BlockingMaterializer()
        trigger = SchedulingTrigger(materializer, audit_logger=AuditLogger(audit_storage), now_fn=lambda: NOW)

        first = asyncio.create_task(trigger.start())
        await asyncio.sleep(0)
        await trigger.refresh()
        materializer.release.set()
        await first

        assert AuditEventType.PIPELINE_SKIPPED in [e.event_type for e in audit_storage.events]


class TestInstallScheduler:
    """Tests for the lifecycle hook."""

    @pytest.mark.asyncio
    async def test_startup_run_and_foreground_runs(self):
        """Test install runs once, then again on each return to foreground."""
        materializer = BlockingMaterializer()
        materializer.release.set()
        source = ManualLifecycleSource()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        handle = install_scheduler(source, trigger)
        await handle.wait_idle()
        assert materializer.calls == 1

        source.emit(AppState.BACKGROUND)
        source.emit(AppState.ACTIVE)
        await handle.wait_idle()
        assert materializer.calls == 2

    @pytest.mark.asyncio
    async def test_remove_unsubscribes(self):
        """Test remove() stops reacting to state changes."""
        materializer = BlockingMaterializer()
        materializer.release.set()
        source = ManualLifecycleSource()
        trigger = SchedulingTrigger(materializer, now_fn=lambda: NOW)

        handle = install_scheduler(source, trigger)
        await handle.wait_idle()
        handle.remove()

        assert source.listener_count == 0
        source.emit(AppState.BACKGROUND)
        source.emit(AppState.ACTIVE)
        await handle.wait_idle()
        assert materializer.calls == 1

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self):
        """Test a disabled hook neither runs nor subscribes."""
        materializer = BlockingMaterializer()
        source = ManualLifecycleSource()

        handle = install_scheduler(source, SchedulingTrigger(materializer), enabled=False)
        await handle.wait_idle()

        assert materializer.calls == 0
        assert source.listener_count == 0
