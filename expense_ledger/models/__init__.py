"""
Data Models Package

This package contains all Pydantic models used in the Expense Ledger.
All data flowing into and out of the engines conforms to these schemas.
"""

from expense_ledger.models.expense import (
    BudgetStatus,
    Category,
    CategoryShare,
    CategoryTotal,
    Expense,
    ExpenseSummary,
    GenerationSummary,
    RecurrencePattern,
    TrendGranularity,
    TrendPoint,
    UpcomingOccurrence,
)
from expense_ledger.models.split import (
    Balance,
    Participant,
    SettlementReport,
    SplitData,
    SplitExpense,
    SplitGroup,
    Transfer,
)
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "BudgetStatus",
    "Category",
    "CategoryShare",
    "CategoryTotal",
    "Expense",
    "ExpenseSummary",
    "GenerationSummary",
    "RecurrencePattern",
    "TrendGranularity",
    "TrendPoint",
    "UpcomingOccurrence",
    # Split models
    "Balance",
    "Participant",
    "SettlementReport",
    "SplitData",
    "SplitExpense",
    "SplitGroup",
    "Transfer",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
