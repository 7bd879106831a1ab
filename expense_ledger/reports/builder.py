"""
Report Builder

DESIGN DECISION: Reports are computed DETERMINISTICALLY from stored
expenses. The builder only loads the filtered snapshot from storage and
hands it to the aggregation engine; every number in a report can be
traced back to stored rows.

Storage errors are not caught here. They reach the caller unchanged.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Optional

from expense_ledger.engines.aggregation import (
    category_breakdown,
    spending_trend,
    summarize,
)
from expense_ledger.models.expense import (
    BudgetStatus,
    CategoryShare,
    Expense,
    ExpenseSummary,
    TrendGranularity,
    TrendPoint,
)
from expense_ledger.services.storage import (
    CategoryStorageInterface,
    ExpenseStorageInterface,
)


class ReportBuilder:
    """
    Builds spending reports over a date range.

    If a category store is given, category ids are shown by name.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        category_storage: Optional[CategoryStorageInterface] = None,
    ):
        self._expenses = expense_storage
        self._categories = category_storage

    async def _load(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
        category: Optional[str] = None,
    ) -> list[Expense]:
        # A recurring anchor is itself the first charge, so it is counted too.
        return await self._expenses.list_by_filter(
            date_from=date_from,
            date_to=date_to,
            category=category,
            limit=None,
        )

    async def _category_names(self) -> dict[str, str]:
        if self._categories is None:
            return {}
        return {c.id: c.name for c in await self._categories.list_categories()}

    async def category_breakdown(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[CategoryShare]:
        """Per-category totals and percentages, largest first."""
        expenses = await self._load(date_from, date_to)
        names = await self._category_names()
        return category_breakdown(
            expenses,
            category_of=lambda e: names.get(e.category, e.category) if e.category else None,
        )

    async def summary(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
    ) -> ExpenseSummary:
        return summarize(await self._load(date_from, date_to, category))

    async def trend(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        granularity: TrendGranularity = TrendGranularity.DAY,
    ) -> list[TrendPoint]:
        return spending_trend(await self._load(date_from, date_to), granularity)

    async def budget_status(self, month: date) -> list[BudgetStatus]:
        """
        Spending in the month containing `month` against each category's
        budget limit. Categories without a limit are left out.
        """
        if self._categories is None:
            return []

        start = month.replace(day=1)
        end = month.replace(day=calendar.monthrange(month.year, month.month)[1])
        expenses = await self._load(start, end)

        spent: dict[str, Decimal] = {}
        for expense in expenses:
            if expense.category:
                spent[expense.category] = spent.get(expense.category, Decimal("0")) + expense.amount

        statuses = []
        for category in await self._categories.list_categories():
            if not category.budget_limit:
                continue
            category_spent = spent.get(category.id, Decimal("0"))
            statuses.append(BudgetStatus(
                category=category,
                spent=category_spent,
                remaining=category.budget_limit - category_spent,
                percentage=float(category_spent / category.budget_limit * 100),
            ))
        return statuses

    @staticmethod
    def describe_period(
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for report headings."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return "all time"
