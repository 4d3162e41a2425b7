"""
Main Orchestrator for Tax Ledger

This module ties together all the components and exposes the entry
points the rest of the app calls:
1. process_due_recurring_transactions(as_of) - materialize due occurrences
2. run_daily_checks(tax_year) - deduplicated notification checks
3. install(source) - mount the scheduling trigger on the app lifecycle

DESIGN DECISION: The orchestrator enforces the boundaries:
- Background work never raises into the UI
- Every pipeline pass carries one correlation ID
- Every step is audited

Wiring happens once, in create_app_components().
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from taxledger.audit import AuditLogger, create_correlation_id
from taxledger.config import get_settings
from taxledger.models.notification import DailyCheckReport, TaxDeadlineInfo, TaxYearProgress
from taxledger.models.recurring import SchedulerResult
from taxledger.notifications import DeduplicatedNotifier
from taxledger.scheduling import (
    LifecycleSource,
    RecurringMaterializer,
    SchedulerHandle,
    SchedulingTrigger,
    install_scheduler,
)
from taxledger.scheduling.recurrence import DateLike
from taxledger.services.budget import BudgetEvaluatorInterface
from taxledger.services.delivery import DeliveryChannelInterface, LoggingDeliveryChannel
from taxledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryNotificationLogStorage,
    InMemoryRuleStorage,
    NotificationLogStorageInterface,
    RuleStorageInterface,
    SettingsReaderInterface,
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteNotificationLogStorage,
    SqliteRuleStorage,
    SqliteSettingsReader,
    StaticSettingsReader,
)
from taxledger.tax import get_tax_deadlines, get_tax_year_progress


logger = structlog.get_logger(__name__)


class TaxLedgerScheduler:
    """
    Facade over the scheduler components.

    Flow of one pipeline pass:
    1. Materialize due recurring occurrences (catching up missed ones)
    2. Run the notification checks against the fresh state
    """

    def __init__(
        self,
        materializer: RecurringMaterializer,
        notifier: DeduplicatedNotifier,
        trigger: SchedulingTrigger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.materializer = materializer
        self.notifier = notifier
        self.trigger = trigger
        self._audit_logger = audit_logger

    async def process_due_recurring_transactions(
        self,
        as_of: Optional[DateLike] = None,
    ) -> SchedulerResult:
        """Materialize everything due on or before as_of. Never raises."""
        correlation_id = create_correlation_id()
        result = await self.materializer.process_due(as_of or datetime.now(), correlation_id)

        for generated in result.generated:
            logger.info(
                "recurring_transaction_generated",
                description=generated.description,
                amount=str(generated.amount),
                occurrence_date=generated.occurrence_date.isoformat(),
            )
        if result.errors:
            logger.error(
                "recurring_transaction_errors",
                errors=[str(e) for e in result.errors],
            )
        return result

    async def run_daily_checks(self, tax_year: Optional[int] = None) -> DailyCheckReport:
        """Tax deadline, budget and recurring-due notifications. Never raises."""
        return await self.notifier.run_daily_checks(
            tax_year=tax_year,
            correlation_id=create_correlation_id(),
        )

    def get_tax_deadlines(
        self,
        tax_year: int,
        now: Optional[datetime] = None,
    ) -> TaxDeadlineInfo:
        return get_tax_deadlines(tax_year, now)

    def get_tax_year_progress(
        self,
        tax_year: int,
        now: Optional[datetime] = None,
    ) -> TaxYearProgress:
        return get_tax_year_progress(tax_year, now)

    def install(self, source: LifecycleSource, enabled: bool = True) -> SchedulerHandle:
        """Mount the trigger on the app lifecycle (call once, from the event loop)."""
        return install_scheduler(source, self.trigger, enabled=enabled)


def create_app_components(
    use_storage: bool = True,
    database_path: Optional[str] = None,
    delivery: Optional[DeliveryChannelInterface] = None,
    budget_evaluator: Optional[BudgetEvaluatorInterface] = None,
    now_fn: Callable[[], datetime] = datetime.now,
) -> tuple[TaxLedgerScheduler, Optional[SqliteDatabase]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to open the SQLite database.
                    Set to False for in-memory storage (tests, previews).
        database_path: Overrides TAXLEDGER_STORAGE_DATABASE_PATH
        delivery: Platform delivery channel; defaults to the log channel
        budget_evaluator: Source of budget alerts; defaults to none

    Returns:
        (scheduler, database) - database is None when running in memory
    """
    database: Optional[SqliteDatabase] = None
    rule_storage: RuleStorageInterface
    log_storage: NotificationLogStorageInterface
    settings_reader: SettingsReaderInterface

    if use_storage:
        try:
            database = SqliteDatabase(database_path).initialize()
            rule_storage = SqliteRuleStorage(database)
            log_storage = SqliteNotificationLogStorage(database)
            settings_reader = SqliteSettingsReader(database)
            audit_logger = AuditLogger(SqliteAuditStorage(database))
        except Exception as e:
            # Storage not available - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            database = None

    if database is None:
        rule_storage = InMemoryRuleStorage()
        log_storage = InMemoryNotificationLogStorage()
        settings_reader = StaticSettingsReader()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    materializer = RecurringMaterializer(rule_storage, audit_logger=audit_logger)
    notifier = DeduplicatedNotifier(
        log_storage=log_storage,
        delivery=delivery or LoggingDeliveryChannel(get_settings().notifications.channel_id),
        settings_reader=settings_reader,
        rule_storage=rule_storage,
        budget_evaluator=budget_evaluator,
        audit_logger=audit_logger,
        now_fn=now_fn,
    )
    trigger = SchedulingTrigger(
        materializer,
        notifier=notifier,
        audit_logger=audit_logger,
        now_fn=now_fn,
    )

    return TaxLedgerScheduler(materializer, notifier, trigger, audit_logger), database
