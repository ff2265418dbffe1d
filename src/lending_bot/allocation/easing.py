"""Easing curves that reshape 0..1 progress for the rate ladder.

Each function maps t in [0, 1] onto [0, 1] monotonically, with f(0) = 0
and f(1) = 1. Unknown method names fall back to linear.
"""

from decimal import Decimal
from typing import Callable

EasingFn = Callable[[Decimal], Decimal]

_HALF = Decimal("0.5")


def _linear(t: Decimal) -> Decimal:
    return t


def _ease_in(t: Decimal) -> Decimal:
    return t * t


def _ease_out(t: Decimal) -> Decimal:
    return t * (2 - t)


def _ease_in_out(t: Decimal) -> Decimal:
    if t < _HALF:
        return 2 * t * t
    return -1 + (4 - 2 * t) * t


def _ease_in_cubic(t: Decimal) -> Decimal:
    return t * t * t


def _ease_in_quart(t: Decimal) -> Decimal:
    return t * t * t * t


def _ease_in_quint(t: Decimal) -> Decimal:
    return t * t * t * t * t


EASING_FUNCTIONS: dict[str, EasingFn] = {
    "linear": _linear,
    "easein": _ease_in,
    "ease-in": _ease_in,
    "easeout": _ease_out,
    "ease-out": _ease_out,
    "easeinout": _ease_in_out,
    "ease-in-out": _ease_in_out,
    "easeincubic": _ease_in_cubic,
    "easeinquart": _ease_in_quart,
    "easeinquint": _ease_in_quint,
}


def get_easing(method: str) -> EasingFn:
    """Look up an easing function by name (case-insensitive)."""
    return EASING_FUNCTIONS.get(method.strip().lower(), _linear)


def ease(t: Decimal, method: str) -> Decimal:
    """Apply the named easing curve to progress ``t``."""
    return get_easing(method)(t)
