"""
Shared-Expense Models

Participants, split expenses and the settlement values derived from them.

CRITICAL: Balances and transfers are derived values. They are computed
from a snapshot of split expenses every time and are never stored.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def _new_id() -> str:
    return str(uuid4())


class Participant(BaseModel):
    """A person taking part in shared expenses."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(
        default_factory=_new_id,
        min_length=1,
        description="Opaque participant identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )


class SplitExpense(BaseModel):
    """
    An expense paid by one participant and shared evenly by several.

    paid_by does not have to be one of split_among: someone can pay
    for a thing they do not share in.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    description: str = Field(
        default="",
        max_length=500,
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Total amount paid"
    )
    category: str = Field(
        default="",
        max_length=100,
    )
    paid_by: str = Field(
        ...,
        min_length=1,
        description="Participant id of the payer"
    )
    split_among: list[str] = Field(
        ...,
        min_length=1,
        description="Participant ids sharing the cost"
    )
    expense_date: date = Field(
        default_factory=date.today,
    )
    group_id: Optional[str] = Field(
        default=None,
        description="Split group this expense belongs to"
    )

    @field_validator('split_among')
    @classmethod
    def validate_unique_members(cls, v: list[str]) -> list[str]:
        """Each participant may appear only once in a split."""
        if len(set(v)) != len(v):
            raise ValueError("split_among contains duplicate participant ids")
        return v

    @property
    def share(self) -> Decimal:
        """Unrounded per-member share."""
        return self.amount / len(self.split_among)

    def involves(self, participant_id: str) -> bool:
        return participant_id == self.paid_by or participant_id in self.split_among


class SplitGroup(BaseModel):
    """
    A locally scoped set of split expenses (a trip, a dinner, a day out).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    group_date: date = Field(default_factory=date.today)
    expenses: list[SplitExpense] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((e.amount for e in self.expenses), Decimal("0"))

    def participant_ids(self) -> set[str]:
        ids: set[str] = set()
        for expense in self.expenses:
            ids.add(expense.paid_by)
            ids.update(expense.split_among)
        return ids


class SplitData(BaseModel):
    """Everything the split feature persists: the roster and its groups."""

    participants: list[Participant] = Field(default_factory=list)
    groups: list[SplitGroup] = Field(default_factory=list)


# =============================================================================
# DERIVED SETTLEMENT VALUES
# =============================================================================

class Balance(BaseModel):
    """
    A participant's net position.

    Positive means the participant is owed money, negative means they owe.
    """

    participant_id: str
    net_amount: Decimal

    @property
    def is_creditor(self) -> bool:
        return self.net_amount > 0


class Transfer(BaseModel):
    """One payment from a debtor to a creditor."""
    model_config = ConfigDict(frozen=True)

    from_id: str = Field(..., description="Debtor who pays")
    to_id: str = Field(..., description="Creditor who receives")
    amount: Decimal = Field(..., gt=0)

    @model_validator(mode='after')
    def validate_parties(self) -> 'Transfer':
        if self.from_id == self.to_id:
            raise ValueError("Transfer cannot go from a participant to themselves")
        return self


class SettlementReport(BaseModel):
    """Balances and the transfers that clear them, for one group or overall."""

    group_id: Optional[str] = None
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    balances: list[Balance] = Field(default_factory=list)
    transfers: list[Transfer] = Field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        return not self.transfers

    def describe(self, participants: list[Participant]) -> list[str]:
        """Human-readable transfer lines, e.g. 'Bob pays Alice 30.00'."""
        names = {p.id: p.name for p in participants}
        return [
            f"{names.get(t.from_id, t.from_id)} pays "
            f"{names.get(t.to_id, t.to_id)} {t.amount:.2f}"
            for t in self.transfers
        ]
