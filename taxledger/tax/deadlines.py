"""
Tax Deadline & Progress Calculators

Pure functions over a calendar tax year (Jan 1 - Dec 31). Filing for
year N is due in year N + 1: paper returns by March 31, e-filing by
April 8. Both deadlines are local midnight at the start of that day.

Times are naive local datetimes; nothing here converts time zones.
"""

import math
from datetime import date, datetime
from typing import Optional

from taxledger.models.notification import TaxDeadlineInfo, TaxYearProgress


PAPER_FILING_MONTH_DAY = (3, 31)
E_FILING_MONTH_DAY = (4, 8)

_SECONDS_PER_DAY = 24 * 60 * 60


def _days_until(deadline: date, now: datetime) -> int:
    """Whole days to a deadline, rounded up; negative once it has passed."""
    delta = datetime.combine(deadline, datetime.min.time()) - now
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def get_tax_deadlines(tax_year: int, now: Optional[datetime] = None) -> TaxDeadlineInfo:
    """
    Filing deadlines for `tax_year` relative to `now`.

    A return is overdue once the e-filing deadline has passed by at
    least a full day.
    """
    now = now or datetime.now()
    paper = date(tax_year + 1, *PAPER_FILING_MONTH_DAY)
    e_filing = date(tax_year + 1, *E_FILING_MONTH_DAY)

    days_until_paper = _days_until(paper, now)
    days_until_e = _days_until(e_filing, now)

    return TaxDeadlineInfo(
        tax_year=tax_year,
        paper_filing_deadline=paper,
        e_filing_deadline=e_filing,
        days_until_paper_deadline=days_until_paper,
        days_until_e_deadline=days_until_e,
        is_overdue=days_until_e < 0,
    )


def pending_tax_year(now: Optional[datetime] = None, overdue_days: int = 30) -> int:
    """
    The tax year whose return is currently due.

    Last year's return stays pending until `overdue_days` after its
    e-filing deadline, so the overdue reminders get their window. After
    that the current year is the one being prepared.
    """
    now = now or datetime.now()
    previous = now.year - 1
    if get_tax_deadlines(previous, now).days_until_e_deadline >= -overdue_days:
        return previous
    return now.year


def get_tax_year_progress(tax_year: int, now: Optional[datetime] = None) -> TaxYearProgress:
    """How far `now` is through `tax_year`, clamped to the year's bounds."""
    now = now or datetime.now()
    year_start = datetime(tax_year, 1, 1)
    year_end = datetime(tax_year, 12, 31)

    total = (year_end - year_start).total_seconds()
    elapsed = (now - year_start).total_seconds()
    percent = min(100.0, max(0.0, elapsed / total * 100))

    days_remaining = max(0.0, (year_end - now).total_seconds() / _SECONDS_PER_DAY)

    return TaxYearProgress(
        percent_complete=percent,
        days_remaining=days_remaining,
        months_remaining=math.ceil(days_remaining / 30),
        current_quarter=(now.month - 1) // 3 + 1,
    )
