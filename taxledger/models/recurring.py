"""
Recurring Transaction Models

A recurring rule is a transaction template plus a cadence. The rule's
next_due_date is a forward-only cursor: it always points at the earliest
occurrence that has not been turned into a real transaction yet.

DESIGN DECISION: Rules are read leniently and transactions strictly.
A rule with a broken template can still be loaded, listed and reported on.
It only fails when the materializer tries to build a TransactionRecord from
it, and that failure is isolated to the one rule.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money for a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class RecurrenceFrequency(str, Enum):
    """
    Cadence of a recurring rule.

    Combined with RecurringRule.interval, e.g. MONTHLY with interval 3
    is a quarterly obligation.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MaterializationErrorKind(str, Enum):
    """Why a rule could not be (fully) materialized."""
    TEMPLATE_INVALID = "template_invalid"       # Template can't produce a transaction
    STORE_WRITE_FAILED = "store_write_failed"   # Transaction insert failed
    CURSOR_WRITE_FAILED = "cursor_write_failed"  # Transaction created, cursor not advanced
    CATCH_UP_OVERFLOW = "catch_up_overflow"     # Too many missed occurrences in one run
    STORE_UNAVAILABLE = "store_unavailable"     # Could not even list due rules


# =============================================================================
# RULES
# =============================================================================

class TransactionTemplate(BaseModel):
    """
    The part of a rule copied onto every generated transaction.

    Not validated strictly here; see TransactionRecord.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        description="Amount for each occurrence"
    )
    type: TransactionType = Field(
        ...,
        description="Income or expense"
    )
    category_id: str = Field(
        ...,
        description="Category the generated transaction is filed under"
    )
    sub_category_id: Optional[str] = None
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Free text copied onto generated transactions"
    )

    # Tax-related fields
    is_tax_deductible: bool = False
    deductible_amount: Optional[Decimal] = None
    section_40_type: Optional[int] = Field(
        default=None,
        description="Income category (1-8) for income rules"
    )


class RecurringRule(BaseModel):
    """
    A recurring financial obligation.

    Created and edited by the app's CRUD layer. The scheduler only ever
    advances next_due_date, stamps last_generated_date and deactivates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=new_id,
        description="Unique rule ID"
    )

    template: TransactionTemplate

    # Recurrence settings
    frequency: RecurrenceFrequency
    interval: int = Field(
        default=1,
        ge=1,
        le=366,
        description="Number of frequency units between occurrences"
    )
    start_date: date
    end_date: Optional[date] = Field(
        default=None,
        description="Last date an occurrence may fall on (inclusive)"
    )
    next_due_date: date = Field(
        ...,
        description="Earliest occurrence not yet materialized"
    )
    anchor_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description=(
            "Day of month monthly/yearly rules land on (defaults to start_date.day). "
            "Set it whenever next_due_date is moved off the start date's day; "
            "move_cursor does this."
        )
    )

    # Metadata
    is_active: bool = True
    last_generated_date: Optional[date] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurringRule':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self

    @property
    def effective_anchor_day(self) -> int:
        return self.anchor_day or self.start_date.day

    @property
    def display_name(self) -> str:
        return self.template.description or "Recurring Transaction"

    def move_cursor(self, next_due_date: date) -> 'RecurringRule':
        """
        Copy of the rule rescheduled to `next_due_date`.

        For the CRUD layer. The anchor is pinned to the new date's day, so
        moving a mid-month rule to Jan 31 continues Feb 28, Mar 31.
        """
        return self.model_copy(update={
            "next_due_date": next_due_date,
            "anchor_day": next_due_date.day,
            "updated_at": datetime.now(),
        })


# =============================================================================
# GENERATED OUTPUT
# =============================================================================

class TransactionRecord(BaseModel):
    """
    A concrete transaction written to the transaction store.

    Strict on purpose: this is where a malformed rule template is caught.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Transaction amount (must be positive)"
    )
    type: TransactionType
    category_id: str = Field(..., min_length=1)
    sub_category_id: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    transaction_date: date = Field(
        ...,
        description="The occurrence date this transaction was generated for"
    )
    recurring_id: str = Field(
        ...,
        description="Back-reference to the rule that produced this transaction"
    )
    is_tax_deductible: bool = False
    deductible_amount: Optional[Decimal] = Field(default=None, ge=0)
    section_40_type: Optional[int] = Field(default=None, ge=1, le=8)
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode='after')
    def validate_deductible(self) -> 'TransactionRecord':
        if self.deductible_amount is not None and self.deductible_amount > self.amount:
            raise ValueError("Deductible amount cannot exceed the transaction amount")
        return self


class GeneratedTransaction(BaseModel):
    """One materialized occurrence, as reported back to the caller."""

    recurring_id: str
    transaction_id: str
    description: str
    amount: Decimal
    type: TransactionType
    category_id: str
    occurrence_date: date
    generated_at: datetime = Field(default_factory=datetime.now)


class MaterializationError(BaseModel):
    """A failure while materializing one rule (or the whole batch)."""

    recurring_id: Optional[str] = Field(
        default=None,
        description="Rule the error belongs to; None for batch-level errors"
    )
    kind: MaterializationErrorKind
    message: str
    occurred_at: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        target = self.recurring_id or "batch"
        return f"[{self.kind.value}] {target}: {self.message}"


class SchedulerResult(BaseModel):
    """Outcome of one process_due run."""

    generated: list[GeneratedTransaction] = Field(default_factory=list)
    errors: list[MaterializationError] = Field(default_factory=list)
    skipped: int = Field(
        default=0,
        description="Rules deactivated because their end date had passed"
    )
    reconciled: int = Field(
        default=0,
        description="Rules whose cursor was re-derived from an earlier partial run"
    )

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def errors_for(self, recurring_id: str) -> list[MaterializationError]:
        return [e for e in self.errors if e.recurring_id == recurring_id]


class UpcomingOccurrence(BaseModel):
    """A not-yet-materialized occurrence shown in previews."""

    recurring_id: str
    description: str
    amount: Decimal
    type: TransactionType
    due_date: date
    category_id: str


class RecurringSummary(BaseModel):
    """Aggregate view over active rules."""

    active_count: int
    total_monthly_income: Decimal
    total_monthly_expense: Decimal
    upcoming_count: int
