"""Tiered allocation of lendable funds into priced funding offers.

Allocation flow for one market, tier by tier in configuration order:
1. desired = total_funds * tier.amount / 100
2. allocated = min(desired, remaining available); remaining -= allocated
3. Skip the tier if allocated < tier.min_order_size
4. per_order = round_down(max(allocated / order_count, min_order_size))
   order_count = floor(allocated / per_order)
5. Pair a rate ladder (scaled_prices) with an amount ladder (scaled_amounts)

Tier percentages are taken of TOTAL funds but drawn from what is still
AVAILABLE, so an over-provisioned config simply starves the later tiers.

Everything here is pure apart from the injected random source.
"""

import random
from decimal import ROUND_FLOOR, Decimal

from lending_bot.allocation.curves import scaled_amounts, scaled_prices
from lending_bot.allocation.rounding import round_down_places, round_places, rounder
from lending_bot.config import MarketConfig, OfferTier
from lending_bot.logging import get_logger
from lending_bot.models import OfferPlan, TierPlan

logger = get_logger(__name__)

# Funding rates are submitted with 8 decimal places
RATE_PLACES = 8

# Keep offers just under / well over the recent best observed rate
_BEST_RATE_LOW_FACTOR = Decimal("0.99")
_BEST_RATE_HIGH_FACTOR = Decimal("1.1")

_ZERO = Decimal("0")
_ONE = Decimal("1")


def rate_bounds(
    tier: OfferTier, frr: Decimal, best_rate: Decimal
) -> tuple[Decimal, Decimal]:
    """Return the (low, high) fractional daily rates a tier offers between.

    Anchored to the exchange reference rate (FRR), to the tier's absolute
    floors, and to the recently observed best rate so offers chase a spike
    without ever dropping under the configured floors.

    Args:
        tier: Tier configuration.
        frr: Current reference floating rate (fractional, per day).
        best_rate: Best recent market rate, 0 when unknown.
    """
    low = max(
        frr * tier.frr_multiple_low,
        tier.at_least_low / 100,
        best_rate * _BEST_RATE_LOW_FACTOR,
    )
    high = max(
        frr * tier.frr_multiple_high,
        tier.at_least_high / 100,
        best_rate * _BEST_RATE_HIGH_FACTOR,
    )
    return low, high


def normalise_rate(rate: Decimal, low: Decimal, high: Decimal) -> Decimal:
    """Position of ``rate`` between ``low`` and ``high`` as 0..1 (clamped)."""
    if rate <= low:
        return _ZERO
    if rate >= high:
        return _ONE
    return (rate - low) / (high - low)


def lending_period(rate: Decimal, tier: OfferTier, market: MarketConfig) -> int:
    """Map an offer rate onto a lending period in whole days.

    Rates at or below the tier's ``lending_period_low`` get the market's
    shortest period, rates at or above ``lending_period_high`` the longest.
    """
    min_days, max_days = market.period_bounds
    t = normalise_rate(rate, tier.lending_period_low / 100, tier.lending_period_high / 100)
    days = round_places(Decimal(min_days) + Decimal(max_days - min_days) * t, 0)
    return int(days)


def plan_tier(
    market: MarketConfig,
    tier_index: int,
    allocated: Decimal,
    desired: Decimal,
    frr: Decimal,
    best_rate: Decimal,
    rng: random.Random | None = None,
) -> TierPlan:
    """Build the offers for one tier from the funds already allocated to it."""
    tier = market.tiers[tier_index]
    plan = TierPlan(tier_index=tier_index, desired=desired, allocated=allocated)

    if allocated < tier.min_order_size:
        return plan

    per_order = round_down_places(
        max(allocated / tier.order_count, tier.min_order_size), market.rounding
    )
    if per_order <= 0:
        return plan
    order_count = int((allocated / per_order).to_integral_value(rounding=ROUND_FLOOR))

    low, high = rate_bounds(tier, frr, best_rate)
    rates = scaled_prices(
        order_count,
        low,
        high,
        tier.random_rates,
        tier.easing,
        rounder(RATE_PLACES),
        rng,
    )
    amounts = scaled_amounts(
        order_count,
        round_down_places(allocated, market.rounding),
        tier.min_order_size,
        tier.random_amounts,
        rounder(market.rounding),
        rng,
    )

    plan.per_order = per_order
    plan.low_rate = low
    plan.high_rate = high
    plan.offers = [
        OfferPlan(
            symbol=market.symbol,
            amount=amount,
            rate=rate,
            period_days=lending_period(rate, tier, market),
        )
        for rate, amount in zip(rates, amounts)
    ]
    return plan


def allocate(
    market: MarketConfig,
    total_funds: Decimal,
    available_funds: Decimal,
    frr: Decimal,
    best_rate: Decimal = _ZERO,
    rng: random.Random | None = None,
) -> list[TierPlan]:
    """Split a market's funds across its tiers and price every offer.

    Args:
        market: Market configuration with its ordered tiers.
        total_funds: Total funding wallet balance (lent + idle).
        available_funds: Funds free to offer right now.
        frr: Current reference floating rate (fractional, per day).
        best_rate: Best recent market rate from the rate tracker, 0 if unknown.
        rng: Random source for the ladders.

    Returns:
        One TierPlan per tier, in configuration order. Skipped tiers have
        no offers.
    """
    remaining = max(available_funds, _ZERO)
    plans: list[TierPlan] = []

    for index, tier in enumerate(market.tiers):
        desired = total_funds * tier.amount / 100
        allocated = min(desired, remaining)
        remaining = max(remaining - allocated, _ZERO)

        plan = plan_tier(market, index, allocated, desired, frr, best_rate, rng)
        plans.append(plan)

        if plan.skipped:
            logger.info(
                "tier_skipped_insufficient_funds",
                symbol=market.symbol,
                tier=index,
                allocated=str(allocated),
                min_order_size=str(tier.min_order_size),
            )
        else:
            logger.info(
                "tier_allocated",
                symbol=market.symbol,
                tier=index,
                allocated=str(allocated),
                orders=len(plan.offers),
                per_order=str(plan.per_order),
                low_rate_pct=str(round_down_places(plan.low_rate * 100, 6)),
                high_rate_pct=str(round_down_places(plan.high_rate * 100, 6)),
                remaining=str(remaining),
            )

    return plans
