"""
Monetary rounding helpers.

Amounts are rounded half-up (0.5 -> 1), never banker's rounding.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, Decimal]

_CENTS = Decimal("0.01")


def round_half_up(value: Number) -> int:
    """Round to the nearest whole unit, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_cents(value: Number) -> Decimal:
    """Round to two decimal places, halves away from zero."""
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def percentage_of(amount: Number, percentage: Number) -> int:
    """``round(amount * percentage / 100)`` computed exactly in decimal."""
    return round_half_up(Decimal(str(amount)) * Decimal(str(percentage)) / Decimal(100))
