"""Shared test fixtures for the funding lending bot."""

import random
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest

from lending_bot.config import (
    AlertRule,
    AppSettings,
    DashboardSettings,
    MarketConfig,
    OfferTier,
    RebalanceSettings,
    TradingSettings,
)
from lending_bot.exchange.paper_exchange import PaperFundingExchange
from lending_bot.exchange.rate_limiter import RateLimiter
from lending_bot.market_data.rate_tracker import RateTracker


@pytest.fixture
def make_tier() -> Callable[..., OfferTier]:
    """Factory for OfferTier with test defaults (one tier, four linear orders)."""

    def _make(**overrides: Any) -> OfferTier:
        values: dict[str, Any] = {
            "amount": Decimal("100"),
            "min_order_size": Decimal("50"),
            "order_count": 4,
            "at_least_low": Decimal("0.01"),
            "at_least_high": Decimal("0.05"),
            "frr_multiple_low": Decimal("1"),
            "frr_multiple_high": Decimal("2"),
            "easing": "linear",
            "random_amounts": Decimal("0"),
            "lending_period_low": Decimal("0.02"),
            "lending_period_high": Decimal("0.04"),
        }
        values.update(overrides)
        return OfferTier(**values)

    return _make


@pytest.fixture
def make_market(make_tier: Callable[..., OfferTier]) -> Callable[..., MarketConfig]:
    """Factory for MarketConfig; tiers default to a single make_tier()."""

    def _make(
        symbol: str = "USD",
        tiers: list[OfferTier] | None = None,
        alerts: list[AlertRule] | None = None,
        **overrides: Any,
    ) -> MarketConfig:
        values: dict[str, Any] = {
            "symbol": symbol,
            "settle_seconds": 0,
            "min_order_size": Decimal("50"),
            "rounding": 5,
            "min_days": 2,
            "max_days": 30,
            "tiers": tiers if tiers is not None else [make_tier()],
            "alerts": alerts or [],
        }
        values.update(overrides)
        return MarketConfig(**values)

    return _make


@pytest.fixture
def settings() -> AppSettings:
    """AppSettings for fast tests: no pacing, no start delay, paper mode."""
    return AppSettings(
        log_level="DEBUG",
        trading=TradingSettings(mode="paper"),
        rebalance=RebalanceSettings(
            interval_minutes=1,
            rate_limit_delay=0,
            call_timeout=2.0,
            settle_max_attempts=3,
            start_delay=0,
        ),
        dashboard=DashboardSettings(enabled=False),
    )


@pytest.fixture
def limiter() -> RateLimiter:
    """RateLimiter without spacing."""
    return RateLimiter(min_interval=0, timeout=2.0)


@pytest.fixture
def rate_tracker() -> RateTracker:
    """RateTracker without an alert engine."""
    return RateTracker()


@pytest.fixture
def paper_exchange() -> PaperFundingExchange:
    """Paper exchange holding 1000 USD with FRR at 0.02%/day."""
    exchange = PaperFundingExchange()
    exchange.set_initial_balance("USD", Decimal("1000"))
    exchange.set_reference_rate("USD", Decimal("0.0002"))
    return exchange


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source."""
    return random.Random(42)
