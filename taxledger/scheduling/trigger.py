"""
Scheduling Trigger

Decides when the materialize-then-notify pipeline runs:
- once at startup
- on every return to the foreground (inactive/background -> active)
- on a manual refresh

DESIGN DECISION: Overlapping runs are dropped, not queued.
A single in-flight flag is set before the first await of a run. Any
invocation that finds it set returns None immediately. Whatever it would
have done is picked up by the next lifecycle event, because materialization
and notification are both idempotent over their cursors and dedup windows.

The flag guards re-entrancy within one event loop only. It is not a lock
on the data.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import structlog

from taxledger.audit import AuditLogger
from taxledger.models.notification import PipelineRun
from taxledger.notifications import DeduplicatedNotifier
from taxledger.scheduling.materializer import RecurringMaterializer


class AppState(str, Enum):
    """Application lifecycle states reported by the UI shell."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class LifecycleEdgeDetector:
    """Tracks the last app state and reports foreground transitions."""

    def __init__(self, initial_state: AppState = AppState.ACTIVE):
        self._state = initial_state

    @property
    def state(self) -> AppState:
        return self._state

    def observe(self, next_state: AppState) -> bool:
        """Record `next_state`; True only on inactive/background -> active."""
        fired = (
            self._state in (AppState.INACTIVE, AppState.BACKGROUND)
            and next_state == AppState.ACTIVE
        )
        self._state = next_state
        return fired


class SchedulingTrigger:
    """
    Runs the background pipeline at most once at a time.

    Errors never escape: every public method returns the PipelineRun
    (with `error` set on failure) or None when the call was dropped.
    """

    def __init__(
        self,
        materializer: RecurringMaterializer,
        notifier: Optional[DeduplicatedNotifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        initial_state: AppState = AppState.ACTIVE,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        self._materializer = materializer
        self._notifier = notifier
        self._audit_logger = audit_logger
        self._detector = LifecycleEdgeDetector(initial_state)
        self._now = now_fn
        self._in_flight = False
        self._logger = structlog.get_logger(__name__)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def state(self) -> AppState:
        return self._detector.state

    async def start(self) -> Optional[PipelineRun]:
        return await self._run("startup")

    async def on_state_change(self, state: AppState) -> Optional[PipelineRun]:
        if not self._detector.observe(AppState(state)):
            return None
        return await self._run("foreground")

    async def refresh(self) -> Optional[PipelineRun]:
        return await self._run("manual_refresh")

    async def _run(self, reason: str) -> Optional[PipelineRun]:
        if self._in_flight:
            self._logger.info("pipeline_dropped", reason=reason)
            if self._audit_logger:
                await self._audit_logger.log_pipeline_skipped(reason)
            return None

        # Must be set before any await
        self._in_flight = True
        try:
            return await self._pipeline(reason)
        finally:
            self._in_flight = False

    async def _pipeline(self, reason: str) -> PipelineRun:
        run = PipelineRun(reason=reason)
        try:
            if self._audit_logger:
                await self._audit_logger.log_pipeline_started(reason, run.correlation_id)

            now = self._now()
            result = await self._materializer.process_due(now, run.correlation_id)
            run.generated_count = len(result.generated)
            run.materialization_errors = [str(e) for e in result.errors]

            if result.generated:
                self._logger.info(
                    "recurring_transactions_generated",
                    count=len(result.generated),
                    correlation_id=str(run.correlation_id),
                )
            if result.errors:
                self._logger.error(
                    "recurring_materialization_errors",
                    errors=run.materialization_errors,
                    correlation_id=str(run.correlation_id),
                )

            if self._notifier:
                report = await self._notifier.run_daily_checks(
                    now=now,
                    correlation_id=run.correlation_id,
                )
                run.notifications_sent = len(report.sent)
                run.notification_errors = list(report.errors)

        except Exception as e:
            run.error = str(e)
            self._logger.error(
                "pipeline_failed",
                reason=reason,
                error=str(e),
                correlation_id=str(run.correlation_id),
            )
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"reason": reason},
                    correlation_id=run.correlation_id,
                )

        run.finished_at = datetime.now()
        if self._audit_logger:
            await self._audit_logger.log_pipeline_completed(
                generated=run.generated_count,
                materialization_errors=len(run.materialization_errors),
                notifications_sent=run.notifications_sent,
                correlation_id=run.correlation_id,
            )
        return run


# =============================================================================
# Lifecycle hook
# =============================================================================

StateListener = Callable[[AppState], None]


class LifecycleSource(ABC):
    """Where app state changes come from (the UI shell)."""

    @abstractmethod
    def add_listener(self, callback: StateListener) -> Callable[[], None]:
        """
        Subscribe to state changes.

        Returns:
            A function that unsubscribes the callback
        """
        pass


class ManualLifecycleSource(LifecycleSource):
    """Lifecycle source driven by explicit emit() calls."""

    def __init__(self):
        self._listeners: list[StateListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, callback: StateListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def emit(self, state: AppState) -> None:
        for listener in list(self._listeners):
            listener(state)


class SchedulerHandle:
    """Returned by install_scheduler; call remove() on teardown."""

    def __init__(self):
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: set[asyncio.Task] = set()

    def attach(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe

    def track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every pipeline run started through this handle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def remove(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None


def install_scheduler(
    source: LifecycleSource,
    trigger: SchedulingTrigger,
    enabled: bool = True,
) -> SchedulerHandle:
    """
    Mount the trigger: run it once now and on every foreground transition.

    Must be called from inside a running event loop.
    """
    handle = SchedulerHandle()
    if not enabled:
        return handle

    loop = asyncio.get_running_loop()
    handle.track(loop.create_task(trigger.start()))

    def on_change(state: AppState) -> None:
        handle.track(loop.create_task(trigger.on_state_change(state)))

    handle.attach(source.add_listener(on_change))
    return handle
