"""
Pure computation engines.

Nothing in this package performs I/O. Every function works on the
snapshot it is given and returns new value objects.
"""

from expense_ledger.engines.aggregation import (
    UNCATEGORIZED,
    aggregate_by_category,
    category_breakdown,
    spending_trend,
    summarize,
)
from expense_ledger.engines.money import (
    CENT,
    EPSILON,
    is_settled,
    round_money,
    split_share,
    to_decimal,
)
from expense_ledger.engines.recurrence import (
    InvalidRecurrencePatternError,
    RecurrenceError,
    coerce_pattern,
    first_occurrence_after,
    generate_due_occurrences,
    is_due,
    iter_occurrences,
    next_occurrence,
    previous_occurrence,
    upcoming_within,
)
from expense_ledger.engines.settlement import (
    SettlementError,
    UnknownParticipantError,
    compute_balances,
    compute_settlements,
    total_paid,
    total_share,
)

__all__ = [
    # Money
    "CENT",
    "EPSILON",
    "is_settled",
    "round_money",
    "split_share",
    "to_decimal",
    # Settlement
    "SettlementError",
    "UnknownParticipantError",
    "compute_balances",
    "compute_settlements",
    "total_paid",
    "total_share",
    # Recurrence
    "InvalidRecurrencePatternError",
    "RecurrenceError",
    "coerce_pattern",
    "first_occurrence_after",
    "generate_due_occurrences",
    "is_due",
    "iter_occurrences",
    "next_occurrence",
    "previous_occurrence",
    "upcoming_within",
    # Aggregation
    "UNCATEGORIZED",
    "aggregate_by_category",
    "category_breakdown",
    "spending_trend",
    "summarize",
]
