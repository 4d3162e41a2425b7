"""
Recurring Materializer

Turns due occurrences of recurring rules into real transactions.

GUARANTEES:
- At most one transaction per occurrence. The rule cursor (next_due_date)
  moves forward with every transaction written, and a cursor left behind
  by a crash is repaired from the newest generated transaction instead of
  writing that transaction again.
- One broken rule never stops the others. Failures are collected in
  SchedulerResult.errors and the batch carries on.
- Nothing raises past process_due. If the store can't be read at all the
  result is empty with a store_unavailable error, and the next lifecycle
  event simply tries again.

Catch-up: a rule missed for several periods (app not opened) gets one
transaction per missed occurrence in a single run, bounded by
max_catch_up_occurrences.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from taxledger.audit import AuditLogger
from taxledger.config import get_settings
from taxledger.models.recurring import (
    GeneratedTransaction,
    MaterializationError,
    MaterializationErrorKind,
    RecurringRule,
    RecurringSummary,
    SchedulerResult,
    TransactionRecord,
    TransactionType,
    UpcomingOccurrence,
)
from taxledger.scheduling import recurrence
from taxledger.scheduling.recurrence import DateLike, as_date
from taxledger.services.storage import CursorAdvanceError, RuleStorageInterface


class MalformedTemplateError(Exception):
    """A rule's template can't produce a valid transaction."""

    def __init__(self, recurring_id: str, message: str):
        self.recurring_id = recurring_id
        super().__init__(f"Rule {recurring_id} has an invalid template: {message}")


class RuleNotFoundError(Exception):
    """Rule doesn't exist or is no longer active."""
    pass


class RecurringMaterializer:
    """
    Materializes due recurring rules.

    All date arithmetic is delegated to the recurrence engine; this class
    only sequences reads and writes.
    """

    def __init__(
        self,
        rule_storage: RuleStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_catch_up: Optional[int] = None,
    ):
        self._storage = rule_storage
        self._audit_logger = audit_logger
        self._max_catch_up = max_catch_up or get_settings().scheduler.max_catch_up_occurrences

    @property
    def max_catch_up(self) -> int:
        return self._max_catch_up

    async def process_due(
        self,
        as_of: Optional[DateLike] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SchedulerResult:
        """
        Materialize every occurrence due on or before as_of.

        After a successful run every processed rule has next_due_date > as_of,
        except rules reported in result.errors.
        """
        as_of_d = as_date(as_of or datetime.now())
        result = SchedulerResult()

        try:
            rules = await self._storage.find_active_due_rules(as_of_d)
        except Exception as e:
            await self._record_error(
                result,
                None,
                MaterializationErrorKind.STORE_UNAVAILABLE,
                f"Failed to fetch due rules: {e}",
                correlation_id,
            )
            return result

        for rule in rules:
            try:
                await self._process_rule(rule, as_of_d, result, correlation_id)
            except Exception as e:
                await self._record_error(
                    result,
                    rule.id,
                    MaterializationErrorKind.STORE_WRITE_FAILED,
                    str(e),
                    correlation_id,
                )

        return result

    async def _process_rule(
        self,
        rule: RecurringRule,
        as_of: date,
        result: SchedulerResult,
        correlation_id: Optional[UUID],
    ) -> None:
        rule = await self._reconcile(rule, result, correlation_id)
        generated = 0

        while rule.next_due_date <= as_of:
            occurrence = rule.next_due_date

            if rule.end_date and occurrence > rule.end_date:
                break

            if generated >= self._max_catch_up:
                await self._record_error(
                    result,
                    rule.id,
                    MaterializationErrorKind.CATCH_UP_OVERFLOW,
                    f"More than {self._max_catch_up} occurrences due; "
                    f"stopped at {occurrence.isoformat()}",
                    correlation_id,
                )
                if self._audit_logger:
                    await self._audit_logger.log_catch_up_overflow(
                        recurring_id=rule.id,
                        limit=self._max_catch_up,
                        cursor=occurrence,
                        correlation_id=correlation_id,
                    )
                return

            try:
                transaction = self.build_transaction(rule, occurrence)
            except MalformedTemplateError as e:
                await self._record_error(
                    result,
                    rule.id,
                    MaterializationErrorKind.TEMPLATE_INVALID,
                    str(e),
                    correlation_id,
                )
                return

            next_due = recurrence.advance(rule)
            try:
                transaction_id = await self._storage.materialize_occurrence(transaction, next_due)
            except CursorAdvanceError as e:
                # Transaction exists; the next run re-derives the cursor from it
                await self._record_error(
                    result,
                    rule.id,
                    MaterializationErrorKind.CURSOR_WRITE_FAILED,
                    str(e),
                    correlation_id,
                )
                return
            except Exception as e:
                await self._record_error(
                    result,
                    rule.id,
                    MaterializationErrorKind.STORE_WRITE_FAILED,
                    f"Failed to write occurrence {occurrence.isoformat()}: {e}",
                    correlation_id,
                )
                return

            result.generated.append(self._to_generated(rule, transaction, transaction_id))
            if self._audit_logger:
                await self._audit_logger.log_transaction_generated(
                    recurring_id=rule.id,
                    transaction_id=transaction_id,
                    occurrence_date=occurrence,
                    amount=str(transaction.amount),
                    correlation_id=correlation_id,
                )

            rule = rule.model_copy(update={
                "next_due_date": next_due,
                "last_generated_date": occurrence,
            })
            generated += 1

        if rule.end_date and rule.next_due_date > rule.end_date:
            await self._storage.deactivate_rule(rule.id)
            result.skipped += 1
            if self._audit_logger:
                await self._audit_logger.log_rule_deactivated(
                    recurring_id=rule.id,
                    end_date=rule.end_date,
                    correlation_id=correlation_id,
                )

    async def _reconcile(
        self,
        rule: RecurringRule,
        result: SchedulerResult,
        correlation_id: Optional[UUID],
    ) -> RecurringRule:
        """
        Repair a cursor that lags behind the transactions already written.

        Happens when a previous run created a transaction and then failed
        to advance the cursor. The cursor moves past the newest written
        occurrence; that occurrence is never generated again.
        """
        latest = await self._storage.find_latest_occurrence(rule.id)
        if latest is None or latest < rule.next_due_date:
            return rule

        new_cursor = recurrence.advance_from(rule, latest)
        await self._storage.advance_rule(rule.id, new_cursor, last_generated_date=latest)
        result.reconciled += 1

        if self._audit_logger:
            await self._audit_logger.log_cursor_reconciled(
                recurring_id=rule.id,
                stale_cursor=rule.next_due_date,
                new_cursor=new_cursor,
                correlation_id=correlation_id,
            )

        return rule.model_copy(update={
            "next_due_date": new_cursor,
            "last_generated_date": latest,
        })

    def build_transaction(self, rule: RecurringRule, occurrence: date) -> TransactionRecord:
        """
        Build the concrete transaction for one occurrence.

        Raises:
            MalformedTemplateError: If the template fails transaction validation
        """
        template = rule.template
        try:
            return TransactionRecord(
                amount=template.amount,
                type=template.type,
                category_id=template.category_id,
                sub_category_id=template.sub_category_id,
                description=rule.display_name,
                transaction_date=occurrence,
                recurring_id=rule.id,
                is_tax_deductible=template.is_tax_deductible,
                deductible_amount=template.deductible_amount,
                section_40_type=template.section_40_type,
            )
        except ValidationError as e:
            raise MalformedTemplateError(rule.id, str(e)) from e

    def _to_generated(
        self,
        rule: RecurringRule,
        transaction: TransactionRecord,
        transaction_id: str,
    ) -> GeneratedTransaction:
        return GeneratedTransaction(
            recurring_id=rule.id,
            transaction_id=transaction_id,
            description=transaction.description,
            amount=transaction.amount,
            type=transaction.type,
            category_id=transaction.category_id,
            occurrence_date=transaction.transaction_date,
        )

    async def _record_error(
        self,
        result: SchedulerResult,
        recurring_id: Optional[str],
        kind: MaterializationErrorKind,
        message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        result.errors.append(MaterializationError(
            recurring_id=recurring_id,
            kind=kind,
            message=message,
        ))
        if self._audit_logger:
            await self._audit_logger.log_materialization_failed(
                recurring_id=recurring_id,
                kind=kind.value,
                error_message=message,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # User-facing helpers
    # =========================================================================

    async def generate_now(self, rule_id: str) -> GeneratedTransaction:
        """
        Materialize the rule's next occurrence right away (e.g. paid early).

        Uses the same cursor as the batch path, so the occurrence is not
        generated again when its date arrives.

        Raises:
            RuleNotFoundError: If the rule is missing, inactive or ended
            MalformedTemplateError: If the template is invalid
            StorageError: If the write fails
        """
        rule = await self._storage.get_rule(rule_id)
        if rule is None or not rule.is_active:
            raise RuleNotFoundError(f"Recurring transaction not found or inactive: {rule_id}")

        rule = await self._reconcile(rule, SchedulerResult(), None)
        occurrence = rule.next_due_date
        if rule.end_date and occurrence > rule.end_date:
            await self._storage.deactivate_rule(rule.id)
            raise RuleNotFoundError(f"Recurring transaction has ended: {rule_id}")

        transaction = self.build_transaction(rule, occurrence)
        transaction_id = await self._storage.materialize_occurrence(
            transaction, recurrence.advance(rule)
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_generated(
                recurring_id=rule.id,
                transaction_id=transaction_id,
                occurrence_date=occurrence,
                amount=str(transaction.amount),
            )
        return self._to_generated(rule, transaction, transaction_id)

    async def preview_upcoming(
        self,
        days_ahead: Optional[int] = None,
        as_of: Optional[DateLike] = None,
    ) -> list[UpcomingOccurrence]:
        """Occurrences not yet materialized that fall due within days_ahead."""
        if days_ahead is None:
            days_ahead = get_settings().scheduler.upcoming_preview_days
        as_of_d = as_date(as_of or datetime.now())
        horizon = as_of_d + timedelta(days=days_ahead)

        upcoming: list[UpcomingOccurrence] = []
        for rule in await self._storage.list_active_rules():
            for due_date in recurrence.occurrences_between(rule, rule.next_due_date, horizon):
                upcoming.append(UpcomingOccurrence(
                    recurring_id=rule.id,
                    description=rule.display_name,
                    amount=rule.template.amount,
                    type=rule.template.type,
                    due_date=due_date,
                    category_id=rule.template.category_id,
                ))
        return sorted(upcoming, key=lambda u: u.due_date)

    async def summary(self, as_of: Optional[DateLike] = None) -> RecurringSummary:
        """Active rule count, monthly totals and upcoming count."""
        rules = await self._storage.list_active_rules()
        totals = {TransactionType.INCOME: Decimal("0"), TransactionType.EXPENSE: Decimal("0")}
        for rule in rules:
            totals[rule.template.type] += recurrence.monthly_equivalent(
                rule.template.amount, rule.frequency, rule.interval
            )

        upcoming = await self.preview_upcoming(
            get_settings().scheduler.summary_lookahead_days, as_of
        )
        cents = Decimal("0.01")
        return RecurringSummary(
            active_count=len(rules),
            total_monthly_income=totals[TransactionType.INCOME].quantize(cents),
            total_monthly_expense=totals[TransactionType.EXPENSE].quantize(cents),
            upcoming_count=len(upcoming),
        )
