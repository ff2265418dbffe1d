"""Allocation engine -- tier splits, rate ladders and amount ladders."""

from lending_bot.allocation.allocator import allocate, lending_period, rate_bounds
from lending_bot.allocation.curves import scaled_amounts, scaled_prices
from lending_bot.allocation.easing import EASING_FUNCTIONS, ease

__all__ = [
    "EASING_FUNCTIONS",
    "allocate",
    "ease",
    "lending_period",
    "rate_bounds",
    "scaled_amounts",
    "scaled_prices",
]
