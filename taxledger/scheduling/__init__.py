"""Recurring rule scheduling: recurrence arithmetic, materialization, triggers."""

from taxledger.scheduling import recurrence
from taxledger.scheduling.materializer import (
    MalformedTemplateError,
    RecurringMaterializer,
    RuleNotFoundError,
)
from taxledger.scheduling.trigger import (
    AppState,
    LifecycleEdgeDetector,
    LifecycleSource,
    ManualLifecycleSource,
    SchedulerHandle,
    SchedulingTrigger,
    install_scheduler,
)

__all__ = [
    "AppState",
    "LifecycleEdgeDetector",
    "LifecycleSource",
    "MalformedTemplateError",
    "ManualLifecycleSource",
    "RecurringMaterializer",
    "RuleNotFoundError",
    "SchedulerHandle",
    "SchedulingTrigger",
    "install_scheduler",
    "recurrence",
]
