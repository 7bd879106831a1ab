"""
Category Aggregator

Reductions over valued, categorized items (stored expenses or split
expenses) used by reporting.

Items only need an `amount` and, for the default key, a `category`
attribute. Blank categories are folded into an explicit
"uncategorized" bucket rather than dropped.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from expense_ledger.engines.money import round_money
from expense_ledger.models.expense import (
    CategoryShare,
    CategoryTotal,
    ExpenseSummary,
    TrendGranularity,
    TrendPoint,
)

UNCATEGORIZED = "uncategorized"


def _default_category(item: Any) -> Optional[str]:
    return getattr(item, "category", None)


def _category_key(raw: Optional[str]) -> str:
    if raw is None:
        return UNCATEGORIZED
    key = str(raw).strip()
    return key or UNCATEGORIZED


def aggregate_by_category(
    items: Iterable[Any],
    category_of: Optional[Callable[[Any], Optional[str]]] = None,
) -> dict[str, CategoryTotal]:
    """
    Sum amounts and count items per category.

    Categories appear in the order they were first seen.
    """
    category_of = category_of or _default_category
    totals: dict[str, CategoryTotal] = {}
    for item in items:
        key = _category_key(category_of(item))
        total = totals.get(key)
        if total is None:
            total = totals[key] = CategoryTotal(category=key)
        total.amount += item.amount
        total.count += 1
    return totals


def category_breakdown(
    items: Iterable[Any],
    category_of: Optional[Callable[[Any], Optional[str]]] = None,
) -> list[CategoryShare]:
    """Category totals with their percentage of the overall amount, largest first."""
    totals = list(aggregate_by_category(items, category_of).values())
    grand_total = sum((t.amount for t in totals), Decimal("0"))

    shares = [
        CategoryShare(
            category=t.category,
            amount=t.amount,
            count=t.count,
            percentage=float(t.amount / grand_total * 100) if grand_total > 0 else 0.0,
        )
        for t in totals
    ]
    shares.sort(key=lambda s: s.amount, reverse=True)
    return shares


def summarize(items: Iterable[Any]) -> ExpenseSummary:
    amounts = [item.amount for item in items]
    if not amounts:
        return ExpenseSummary()
    total = sum(amounts, Decimal("0"))
    return ExpenseSummary(
        total=total,
        count=len(amounts),
        average=round_money(total / len(amounts)),
    )


def _period_key(day: date, granularity: TrendGranularity) -> str:
    if granularity == TrendGranularity.DAY:
        return day.isoformat()
    if granularity == TrendGranularity.WEEK:
        # Weeks start on Sunday.
        week_start = day - timedelta(days=(day.weekday() + 1) % 7)
        return week_start.isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def spending_trend(
    items: Iterable[Any],
    granularity: TrendGranularity = TrendGranularity.DAY,
    date_of: Optional[Callable[[Any], date]] = None,
) -> list[TrendPoint]:
    """
    Total spent per day, week or month, oldest period first.

    Args:
        items: Valued items
        granularity: Bucket size
        date_of: Extracts the date from an item; defaults to `expense_date`
    """
    granularity = TrendGranularity(granularity)
    date_of = date_of or (lambda item: item.expense_date)

    buckets: dict[str, Decimal] = {}
    for item in items:
        key = _period_key(date_of(item), granularity)
        buckets[key] = buckets.get(key, Decimal("0")) + item.amount

    return [
        TrendPoint(period=period, amount=amount)
        for period, amount in sorted(buckets.items())
    ]
