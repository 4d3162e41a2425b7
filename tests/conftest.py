"""Shared fixtures for the Tax Ledger test suite."""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from taxledger.config import get_settings
from taxledger.models.recurring import (
    RecurrenceFrequency,
    RecurringRule,
    TransactionTemplate,
    TransactionType,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings for every test so env overrides don't leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def build_rule(
    next_due: date,
    frequency: RecurrenceFrequency = RecurrenceFrequency.MONTHLY,
    amount: str = "15000",
    tx_type: TransactionType = TransactionType.EXPENSE,
    description: Optional[str] = "Rent",
    start: Optional[date] = None,
    end: Optional[date] = None,
    interval: int = 1,
    category_id: str = "housing",
    **overrides,
) -> RecurringRule:
    return RecurringRule(
        template=TransactionTemplate(
            amount=Decimal(amount),
            type=tx_type,
            category_id=category_id,
            description=description,
        ),
        frequency=frequency,
        interval=interval,
        start_date=start or next_due,
        end_date=end,
        next_due_date=next_due,
        **overrides,
    )


@pytest.fixture
def make_rule():
    """Factory for recurring rules with sensible defaults (monthly rent)."""
    return build_rule
