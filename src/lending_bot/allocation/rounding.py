"""Decimal rounding helpers parameterised by decimal places.

All rounding goes through Decimal.quantize so results do not depend on
binary floating point representation.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Callable

RoundFn = Callable[[Decimal], Decimal]


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_places(value: Decimal, places: int) -> Decimal:
    """Round half away from zero to the given number of decimal places."""
    return value.quantize(_exponent(places), rounding=ROUND_HALF_UP)


def round_down_places(value: Decimal, places: int) -> Decimal:
    """Round towards negative infinity to the given number of decimal places.

    Used for amounts so an order never exceeds the funds it was sized from.
    """
    return value.quantize(_exponent(places), rounding=ROUND_FLOOR)


def rounder(places: int) -> RoundFn:
    """Return a one-argument rounding function for ``places`` decimals."""

    def _round(value: Decimal) -> Decimal:
        return round_places(value, places)

    return _round


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a number to Decimal via its string form (never via binary float)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
