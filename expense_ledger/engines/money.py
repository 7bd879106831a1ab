"""
Money Arithmetic

Decimal helpers shared by the settlement and recurrence engines.

DESIGN DECISION: Amounts are Decimal end to end. Per-member shares are
kept at full precision and only the amounts shown to users (transfers,
report totals) are rounded to cents. Rounding every share would let
the error compound across many expenses.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")

# Balances and transfers at or below this are treated as settled.
EPSILON = CENT

MoneyLike = Union[Decimal, int, float, str]


def to_decimal(value: MoneyLike) -> Decimal:
    """
    Coerce a numeric value to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than
    its binary expansion.
    """
    if isinstance(value, bool):
        raise TypeError("Booleans are not money")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


def round_money(value: MoneyLike) -> Decimal:
    """Round to whole cents, halves away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_settled(value: Decimal, epsilon: Decimal = EPSILON) -> bool:
    return abs(value) <= epsilon


def split_share(amount: Decimal, ways: int) -> Decimal:
    """Unrounded share of amount between `ways` members."""
    if ways < 1:
        raise ValueError("Cannot split an amount between fewer than one member")
    return to_decimal(amount) / ways
