"""Price and amount ladders for a tier of funding offers.

scaled_prices spreads ``count`` rates from ``start`` to ``end`` along an
easing curve, optionally jittered. scaled_amounts splits a total into
``count`` randomised order sizes that still respect a minimum size and
add back up to the total, carrying each rounding error into the next order.

Both accept a ``random.Random`` so callers (and tests) control the draw.
"""

import random
from decimal import Decimal

from lending_bot.allocation.easing import get_easing
from lending_bot.allocation.rounding import RoundFn, to_decimal

_ZERO = Decimal("0")
_ONE = Decimal("1")

_default_rng = random.Random()


def _clamp_fraction(value: Decimal) -> Decimal:
    return max(min(value, _ONE), _ZERO)


def scaled_prices(
    count: int,
    start: Decimal,
    end: Decimal,
    random_spread: Decimal,
    easing: str,
    round_fn: RoundFn,
    rng: random.Random | None = None,
) -> list[Decimal]:
    """Build a rate ladder of ``count`` entries between ``start`` and ``end``.

    Index 0 is never jittered so the ladder is always anchored at ``start``;
    the largest raw value after jitter maps exactly onto ``end``.

    Args:
        count: Number of rates to produce.
        start: Lowest rate.
        end: Highest rate.
        random_spread: Jitter added to each step, 0 to 1 (clamped).
        easing: Name of the easing curve (see easing.EASING_FUNCTIONS).
        round_fn: Rounding applied to every output rate.
        rng: Random source; a module-level one is used when omitted.

    Returns:
        The rounded rates, lowest first when ``random_spread`` is 0.
    """
    if count < 1:
        return []
    if count == 1:
        return [round_fn(start)]

    rng = rng or _default_rng
    curve = get_easing(easing)
    spread = _clamp_fraction(to_decimal(random_spread))
    last = Decimal(count - 1)

    raw: list[Decimal] = []
    for i in range(count):
        value = curve(Decimal(i) / last)
        if i > 0 and spread > 0:
            value += to_decimal(rng.random()) * spread
        raw.append(value)

    peak = max(raw)
    scale = (end - start) / peak if peak > 0 else _ZERO
    return [round_fn(start + value * scale) for value in raw]


def scaled_amounts(
    count: int,
    total_spend: Decimal,
    min_size: Decimal,
    random_fraction: Decimal,
    round_fn: RoundFn,
    rng: random.Random | None = None,
) -> list[Decimal]:
    """Split ``total_spend`` into ``count`` randomised order amounts.

    The random swing of each order is capped so that an average order
    cannot be pushed below ``min_size``. Both the rounding error and any
    amount added by the ``min_size`` floor are carried into the next order,
    so the amounts add up to ``total_spend`` within one rounding unit. An
    overshoot left by the last order is taken back from the largest order.
    When ``total_spend < count * min_size`` orders are still floored at
    ``min_size`` and the total overshoots.

    Args:
        count: Number of orders.
        total_spend: Funds to distribute.
        min_size: Smallest allowed order.
        random_fraction: Requested swing per order, 0 to 1.
        round_fn: Rounding applied to every amount.
        rng: Random source; a module-level one is used when omitted.

    Returns:
        The rounded order amounts.
    """
    if count < 1:
        return []
    if count == 1:
        return [total_spend]

    rng = rng or _default_rng
    per_order = total_spend / count
    max_safe = _ZERO if per_order < min_size else (per_order - min_size) / per_order
    safe = _clamp_fraction(min(to_decimal(random_fraction), max_safe))

    weights = [
        _ONE + to_decimal(rng.uniform(-1.0, 1.0)) * safe if safe > 0 else _ONE
        for _ in range(count)
    ]
    scale = total_spend / sum(weights, _ZERO)

    amounts: list[Decimal] = []
    error = _ZERO
    for weight in weights:
        target = weight * scale + error
        have = round_fn(max(target, min_size))
        error = target - have
        amounts.append(have)

    # A floored last order can leave the ladder above total_spend
    if error < 0:
        largest = max(range(count), key=lambda i: amounts[i])
        trimmed = round_fn(amounts[largest] + error)
        if trimmed >= min_size:
            amounts[largest] = trimmed
    return amounts
