"""
Recurrence Engine

Pure due-date arithmetic over recurring rules. Nothing here touches
storage; the materializer owns every write.

Months and years are stepped on the calendar, not by elapsed seconds:
a rule anchored on the 31st lands on the last day of shorter months and
returns to the 31st when the month allows it.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from taxledger.models.recurring import RecurrenceFrequency, RecurringRule


DateLike = Union[date, datetime]

# (multiplier, divisor) giving the average amount per month
_MONTHLY_FACTORS = {
    RecurrenceFrequency.DAILY: (Decimal("30"), Decimal("1")),
    RecurrenceFrequency.WEEKLY: (Decimal("4.33"), Decimal("1")),
    RecurrenceFrequency.MONTHLY: (Decimal("1"), Decimal("1")),
    RecurrenceFrequency.YEARLY: (Decimal("1"), Decimal("12")),
}


def as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def clamp_day_to_month(year: int, month: int, day: int) -> int:
    """Clamp day to valid range for the given year/month."""
    max_day = calendar.monthrange(year, month)[1]
    return min(day, max_day)


def add_months(d: date, n: int, anchor_day: Optional[int] = None) -> date:
    """Add n months to d, landing on anchor_day (default d.day) clamped to month end."""
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = clamp_day_to_month(year, month, anchor_day or d.day)
    return date(year, month, day)


def next_occurrence(
    current: date,
    frequency: RecurrenceFrequency,
    interval: int = 1,
    anchor_day: Optional[int] = None,
) -> date:
    """The occurrence `interval` cadence units after `current`."""
    if interval < 1:
        raise ValueError(f"Interval must be at least 1, got {interval}")

    if frequency == RecurrenceFrequency.DAILY:
        return current + timedelta(days=interval)
    if frequency == RecurrenceFrequency.WEEKLY:
        return current + timedelta(weeks=interval)
    if frequency == RecurrenceFrequency.MONTHLY:
        return add_months(current, interval, anchor_day)
    if frequency == RecurrenceFrequency.YEARLY:
        return add_months(current, 12 * interval, anchor_day)
    raise ValueError(f"Unsupported frequency: {frequency}")


def is_due(rule: RecurringRule, as_of: DateLike) -> bool:
    """A rule is due when it is active and its cursor is on or before as_of."""
    return rule.is_active and rule.next_due_date <= as_date(as_of)


def advance(rule: RecurringRule) -> date:
    """
    The occurrence after the rule's current cursor.

    Always strictly later than rule.next_due_date.
    """
    return advance_from(rule, rule.next_due_date)


def advance_from(rule: RecurringRule, occurrence: date) -> date:
    """The occurrence after `occurrence`, using the rule's cadence and anchor."""
    anchor = rule.effective_anchor_day if _uses_anchor(rule.frequency) else None
    nxt = next_occurrence(occurrence, rule.frequency, rule.interval, anchor)
    if nxt <= occurrence:
        # Calendar arithmetic above can't go backwards; guard the invariant anyway
        raise ValueError(f"Cursor for rule {rule.id} would not advance past {occurrence}")
    return nxt


def occurrences_between(
    rule: RecurringRule,
    start: DateLike,
    end: DateLike,
    limit: int = 366,
) -> list[date]:
    """
    Occurrences from the rule's cursor that fall in [start, end].

    Respects end_date. Stops after `limit` occurrences.
    """
    start_d, end_d = as_date(start), as_date(end)
    if rule.end_date and rule.end_date < end_d:
        end_d = rule.end_date

    results: list[date] = []
    current = rule.next_due_date
    while current <= end_d and len(results) < limit:
        if current >= start_d:
            results.append(current)
        current = advance_from(rule, current)
    return results


def monthly_equivalent(
    amount: Decimal,
    frequency: RecurrenceFrequency,
    interval: int = 1,
) -> Decimal:
    """Approximate monthly cost of a rule (daily x30, weekly x4.33, yearly /12)."""
    multiplier, divisor = _MONTHLY_FACTORS[frequency]
    return amount * multiplier / (divisor * interval)


def _uses_anchor(frequency: RecurrenceFrequency) -> bool:
    return frequency in (RecurrenceFrequency.MONTHLY, RecurrenceFrequency.YEARLY)
