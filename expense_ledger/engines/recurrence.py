"""
Recurrence Engine

Steps recurring expenses along their calendar cadence, works out which
occurrences are due and which are coming up.

DESIGN DECISION: The only state is the anchor (date, pattern) pair.
Every occurrence date is recomputed from the anchor on each call, so
nothing here needs to be persisted or invalidated.

MONTH-END RULE: A monthly step lands on the same day of the next month,
clamped to that month's last day (Jan 31 -> Feb 29 in a leap year,
Feb 28 otherwise). When a series is walked from its anchor, the anchor's
day is pinned, so a series anchored on the 31st goes
Jan 31 -> Feb 29 -> Mar 31 -> Apr 30 instead of drifting to the 29th.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional, Union

from dateutil.relativedelta import relativedelta

from expense_ledger.models.expense import (
    Expense,
    RecurrencePattern,
    UpcomingOccurrence,
)


class RecurrenceError(ValueError):
    """Input to the recurrence engine breaks its contract."""
    pass


class InvalidRecurrencePatternError(RecurrenceError):
    """Pattern is unknown, or 'none' where a cadence is required."""
    pass


PatternLike = Union[RecurrencePattern, str]

_FIXED_STEPS = {
    RecurrencePattern.DAILY: timedelta(days=1),
    RecurrencePattern.WEEKLY: timedelta(days=7),
}


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected a date, got {type(value).__name__}")


def coerce_pattern(pattern: PatternLike) -> RecurrencePattern:
    """
    Resolve a pattern that must have a cadence.

    Raises:
        InvalidRecurrencePatternError: Unknown value or RecurrencePattern.NONE
    """
    try:
        resolved = RecurrencePattern(pattern)
    except ValueError:
        raise InvalidRecurrencePatternError(f"Unknown recurrence pattern: {pattern!r}") from None
    if resolved == RecurrencePattern.NONE:
        raise InvalidRecurrencePatternError("Recurrence pattern 'none' has no occurrences")
    return resolved


def _shift_months(current: date, months: int, anchor_day: Optional[int]) -> date:
    shifted = current + relativedelta(months=months)
    if anchor_day is not None:
        last_day = calendar.monthrange(shifted.year, shifted.month)[1]
        shifted = shifted.replace(day=min(anchor_day, last_day))
    return shifted


def _step(
    current: Union[date, datetime],
    pattern: PatternLike,
    direction: int,
    anchor_day: Optional[int],
) -> date:
    resolved = coerce_pattern(pattern)
    current = _as_date(current)
    if anchor_day is not None and not 1 <= anchor_day <= 31:
        raise RecurrenceError(f"anchor_day must be between 1 and 31, got {anchor_day}")

    if resolved == RecurrencePattern.MONTHLY:
        return _shift_months(current, direction, anchor_day)
    return current + direction * _FIXED_STEPS[resolved]


def next_occurrence(
    current: Union[date, datetime],
    pattern: PatternLike,
    anchor_day: Optional[int] = None,
) -> date:
    """
    The occurrence one cadence step after `current`.

    Args:
        current: Date of the current occurrence
        pattern: daily, weekly or monthly
        anchor_day: For monthly series, the day of month to return to
                    after a clamped short month

    Raises:
        InvalidRecurrencePatternError: If the pattern has no cadence
    """
    return _step(current, pattern, 1, anchor_day)


def previous_occurrence(
    current: Union[date, datetime],
    pattern: PatternLike,
    anchor_day: Optional[int] = None,
) -> date:
    """The occurrence one cadence step before `current`, same month-end rule."""
    return _step(current, pattern, -1, anchor_day)


def is_due(
    last_date: Union[date, datetime],
    pattern: PatternLike,
    now: Union[date, datetime],
) -> bool:
    """True when the occurrence after `last_date` is on or before `now`."""
    return next_occurrence(last_date, pattern) <= _as_date(now)


def iter_occurrences(
    anchor_date: Union[date, datetime],
    pattern: PatternLike,
) -> Iterator[date]:
    """
    Endless stream of occurrence dates after the anchor.

    The anchor itself is not yielded.
    """
    resolved = coerce_pattern(pattern)
    cursor = _as_date(anchor_date)
    anchor_day = cursor.day if resolved == RecurrencePattern.MONTHLY else None
    while True:
        cursor = next_occurrence(cursor, resolved, anchor_day)
        yield cursor


def generate_due_occurrences(
    expense: Expense,
    now: Union[date, datetime],
    known_dates: Iterable[date] = (),
) -> list[Expense]:
    """
    Backfill every occurrence of a recurring expense up to `now`.

    Walks forward from the anchor date and emits one occurrence for each
    computed date on or before `now`, so a monthly expense left alone for
    three months yields three records. Dates in `known_dates` are already
    stored and are skipped.

    Non-recurring expenses have nothing to generate and return [].
    """
    if not expense.is_recurring:
        return []

    now = _as_date(now)
    known = set(known_dates)

    occurrences = []
    for occurrence_date in iter_occurrences(expense.expense_date, expense.recurrence_pattern):
        if occurrence_date > now:
            break
        if occurrence_date in known:
            continue
        occurrences.append(expense.spawn_occurrence(occurrence_date))
    return occurrences


def first_occurrence_after(expense: Expense, now: Union[date, datetime]) -> date:
    """First occurrence strictly after `now`."""
    now = _as_date(now)
    for occurrence_date in iter_occurrences(expense.expense_date, expense.recurrence_pattern):
        if occurrence_date > now:
            return occurrence_date
    raise RecurrenceError("Occurrence stream ended unexpectedly")  # pragma: no cover


def upcoming_within(
    expenses: Iterable[Expense],
    horizon_days: int,
    now: Union[date, datetime],
) -> list[UpcomingOccurrence]:
    """
    Recurring expenses whose next occurrence falls within the horizon.

    Args:
        expenses: Expenses to inspect; non-recurring ones are ignored
        horizon_days: Include next dates at most this many days after `now`
        now: Reference date

    Returns:
        One entry per qualifying expense, earliest next date first
    """
    if horizon_days < 0:
        raise ValueError("horizon_days cannot be negative")

    now = _as_date(now)
    upcoming = []
    for expense in expenses:
        if not expense.is_recurring:
            continue
        next_date = first_occurrence_after(expense, now)
        days_until = (next_date - now).days
        if days_until <= horizon_days:
            upcoming.append(
                UpcomingOccurrence(expense=expense, next_date=next_date, days_until=days_until)
            )

    upcoming.sort(key=lambda item: item.next_date)
    return upcoming
