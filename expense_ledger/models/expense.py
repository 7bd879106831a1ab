"""
Core Expense Models

These models define the schemas for personal expenses, categories and
the recurring-expense projections built from them.

DESIGN DECISION: A recurring expense is an ordinary Expense carrying a
recurrence pattern and an anchor date. Each generated occurrence is a
separate, non-recurring Expense that points back at its anchor through
anchor_id. The anchor itself is never rewritten by projection.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class RecurrencePattern(str, Enum):
    """
    Cadence of a recurring expense.

    NONE marks a one-off expense. It is a valid stored value but has no
    next occurrence.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    NONE = "none"


class TrendGranularity(str, Enum):
    """Bucket size for spending trends."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


# =============================================================================
# CATEGORY
# =============================================================================

class Category(BaseModel):
    """A user-defined expense category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Opaque category identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    icon: Optional[str] = Field(
        default=None,
        max_length=50,
    )
    color: Optional[str] = Field(
        default=None,
        max_length=20,
    )
    budget_limit: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Monthly budget limit, if any"
    )


# =============================================================================
# EXPENSE
# =============================================================================

class Expense(BaseModel):
    """
    A single stored expense.

    Recurring anchors have is_recurring=True and a pattern other than NONE.
    Occurrences have is_recurring=False, pattern NONE and anchor_id set.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique expense ID"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Expense amount"
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    category: Optional[str] = Field(
        default=None,
        description="Category id or label"
    )
    expense_date: date = Field(
        ...,
        description="Date of the expense (anchor date for recurring expenses)"
    )
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    anchor_id: Optional[UUID] = Field(
        default=None,
        description="For generated occurrences: the recurring expense they came from"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'Expense':
        """A recurring expense needs a real cadence."""
        if self.is_recurring and self.recurrence_pattern == RecurrencePattern.NONE:
            raise ValueError("Recurring expense requires a recurrence pattern")
        if self.anchor_id is not None and self.anchor_id == self.id:
            raise ValueError("Expense cannot be its own anchor")
        return self

    @property
    def is_occurrence(self) -> bool:
        return self.anchor_id is not None

    def spawn_occurrence(self, occurrence_date: date) -> 'Expense':
        """Create the independent, non-recurring record for one due date."""
        return Expense(
            amount=self.amount,
            description=self.description,
            category=self.category,
            expense_date=occurrence_date,
            is_recurring=False,
            recurrence_pattern=RecurrencePattern.NONE,
            anchor_id=self.id,
        )


# =============================================================================
# PROJECTION & REPORT VALUES
# =============================================================================

class UpcomingOccurrence(BaseModel):
    """The next projected date of a recurring expense inside a horizon."""

    expense: Expense
    next_date: date
    days_until: int = Field(ge=0)


class GenerationSummary(BaseModel):
    """Outcome of one occurrence-generation run."""

    created: list[Expense] = Field(default_factory=list)
    skipped_dates: list[date] = Field(
        default_factory=list,
        description="Due dates a concurrent run stored first"
    )
    anchors_processed: int = Field(default=0, ge=0)

    @property
    def count(self) -> int:
        return len(self.created)

    @property
    def message(self) -> str:
        return f"Generated {self.count} recurring expense(s)"


class CategoryTotal(BaseModel):
    """Sum and count of the items in one category."""

    category: str
    amount: Decimal = Decimal("0")
    count: int = Field(default=0, ge=0)


class CategoryShare(CategoryTotal):
    """A category total with its share of the overall amount."""

    percentage: float = Field(default=0.0, ge=0.0, le=100.0)


class ExpenseSummary(BaseModel):
    total: Decimal = Decimal("0")
    count: int = Field(default=0, ge=0)
    average: Decimal = Decimal("0")


class TrendPoint(BaseModel):
    """Amount spent in one period bucket (day, week start or month)."""

    period: str
    amount: Decimal


class BudgetStatus(BaseModel):
    """Spending against a category's monthly budget limit."""

    category: Category
    spent: Decimal = Decimal("0")
    remaining: Decimal
    percentage: float = Field(ge=0.0)

    @property
    def is_over_budget(self) -> bool:
        return self.remaining < 0
