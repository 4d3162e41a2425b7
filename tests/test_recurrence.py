"""
Tests for the recurrence engine.

Pure date arithmetic: no storage, no event loop.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from taxledger.models.recurring import RecurrenceFrequency
from taxledger.scheduling import recurrence


class TestAddMonths:
    """Tests for calendar month stepping."""

    def test_add_one_month(self):
        """Test a plain month step keeps the day."""
        assert recurrence.add_months(date(2026, 3, 15), 1) == date(2026, 4, 15)

    def test_add_months_crosses_year(self):
        """Test stepping from December into the next year."""
        assert recurrence.add_months(date(2026, 12, 15), 1) == date(2027, 1, 15)
        assert recurrence.add_months(date(2026, 11, 30), 14) == date(2028, 1, 30)

    def test_clamps_to_short_month(self):
        """Test the 31st lands on the last day of February."""
        assert recurrence.add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert recurrence.add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_anchor_day_restores_after_short_month(self):
        """Test the anchor brings a clamped date back to the 31st."""
        assert recurrence.add_months(date(2026, 2, 28), 1, anchor_day=31) == date(2026, 3, 31)
        assert recurrence.add_months(date(2026, 3, 31), 1, anchor_day=31) == date(2026, 4, 30)


class TestNextOccurrence:
    """Tests for next_occurrence across frequencies."""

    def test_daily_with_interval(self):
        """Test every-third-day cadence."""
        assert recurrence.next_occurrence(
            date(2026, 10, 30), RecurrenceFrequency.DAILY, 3
        ) == date(2026, 11, 2)

    def test_biweekly(self):
        """Test every-other-week cadence."""
        assert recurrence.next_occurrence(
            date(2026, 10, 1), RecurrenceFrequency.WEEKLY, 2
        ) == date(2026, 10, 15)

    def test_quarterly(self):
        """Test monthly cadence with interval 3."""
        assert recurrence.next_occurrence(
            date(2026, 11, 30), RecurrenceFrequency.MONTHLY, 3, anchor_day=30
        ) == date(2027, 2, 28)

    def test_yearly_leap_day(self):
        """Test a Feb 29 anchor in non-leap and leap years."""
        assert recurrence.next_occurrence(
            date(2027, 2, 28), RecurrenceFrequency.YEARLY, 1, anchor_day=29
        ) == date(2028, 2, 29)
        assert recurrence.next_occurrence(
            date(2024, 2, 29), RecurrenceFrequency.YEARLY, 1, anchor_day=29
        ) == date(2025, 2, 28)

    def test_rejects_zero_interval(self):
        """Test that interval must be positive."""
        with pytest.raises(ValueError):
            recurrence.next_occurrence(date(2026, 1, 1), RecurrenceFrequency.DAILY, 0)


class TestRuleArithmetic:
    """Tests for is_due, advance and occurrences_between over rules."""

    def test_is_due_on_cursor_date(self, make_rule):
        """Test a rule is due on its cursor date, any time of day."""
        rule = make_rule(date(2026, 10, 15))
        assert recurrence.is_due(rule, date(2026, 10, 15))
        assert recurrence.is_due(rule, datetime(2026, 10, 15, 23, 59))
        assert not recurrence.is_due(rule, datetime(2026, 10, 14, 23, 59))

    def test_inactive_rule_never_due(self, make_rule):
        """Test inactive rules are not due."""
        rule = make_rule(date(2026, 1, 1), is_active=False)
        assert not recurrence.is_due(rule, date(2026, 10, 15))

    def test_advance_uses_start_day_as_anchor(self, make_rule):
        """Test that a clamped cursor returns to the start day."""
        rule = make_rule(date(2026, 2, 28), start=date(2026, 1, 31))
        assert recurrence.advance(rule) == date(2026, 3, 31)

    def test_advance_is_strictly_later(self, make_rule):
        """Test advance always moves the cursor forward."""
        for frequency in RecurrenceFrequency:
            rule = make_rule(date(2026, 10, 15), frequency=frequency)
            assert recurrence.advance(rule) > rule.next_due_date

    def test_weekly_ignores_anchor(self, make_rule):
        """Test weekly rules step by seven days regardless of anchor_day."""
        rule = make_rule(
            date(2026, 10, 15),
            frequency=RecurrenceFrequency.WEEKLY,
            anchor_day=1,
        )
        assert recurrence.advance(rule) == date(2026, 10, 22)

    def test_occurrences_between(self, make_rule):
        """Test listing occurrences inside a window."""
        rule = make_rule(date(2026, 10, 16), frequency=RecurrenceFrequency.WEEKLY)
        assert recurrence.occurrences_between(rule, date(2026, 10, 15), date(2026, 11, 6)) == [
            date(2026, 10, 16),
            date(2026, 10, 23),
            date(2026, 10, 30),
            date(2026, 11, 6),
        ]

    def test_occurrences_between_respects_end_date(self, make_rule):
        """Test occurrences stop at the rule's end date."""
        rule = make_rule(
            date(2026, 10, 1),
            start=date(2026, 1, 1),
            end=date(2026, 11, 30),
        )
        assert recurrence.occurrences_between(rule, date(2026, 10, 1), date(2027, 6, 1)) == [
            date(2026, 10, 1),
            date(2026, 11, 1),
        ]

    def test_occurrences_between_limit(self, make_rule):
        """Test the limit caps a long daily listing."""
        rule = make_rule(date(2026, 1, 1), frequency=RecurrenceFrequency.DAILY)
        assert len(recurrence.occurrences_between(rule, date(2026, 1, 1), date(2027, 1, 1), limit=5)) == 5


class TestMonthlyEquivalent:
    """Tests for monthly totals."""

    def test_factors(self):
        """Test each frequency's monthly factor."""
        assert recurrence.monthly_equivalent(Decimal("100"), RecurrenceFrequency.WEEKLY) == Decimal("433")
        assert recurrence.monthly_equivalent(Decimal("10"), RecurrenceFrequency.DAILY) == Decimal("300")
        assert recurrence.monthly_equivalent(Decimal("1200"), RecurrenceFrequency.YEARLY) == Decimal("100")

    def test_interval_divides(self):
        """Test a quarterly rule contributes a third per month."""
        assert recurrence.monthly_equivalent(
            Decimal("300"), RecurrenceFrequency.MONTHLY, 3
        ) == Decimal("100")


class TestMovedCursor:
    """Tests for rescheduling a rule's cursor."""

    def test_moved_cursor_keeps_month_end(self, make_rule):
        """Test a rule moved to Jan 31 continues on Feb 28, then Mar 31."""
        rule = make_rule(date(2025, 12, 15))

        moved = rule.move_cursor(date(2026, 1, 31))

        assert moved.anchor_day == 31
        assert recurrence.advance(moved) == date(2026, 2, 28)
        assert recurrence.advance_from(moved, date(2026, 2, 28)) == date(2026, 3, 31)
        assert rule.next_due_date == date(2025, 12, 15)
        assert rule.anchor_day is None
