"""Configuration system using pydantic-settings with environment variable loading.

Process-wide settings (credentials, intervals, rate limits) come from the
environment and ``.env``. Per-market offer ladders are richer, nested
structures and are loaded from a JSON file by :func:`load_markets`.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from lending_bot.exceptions import ConfigurationError
from lending_bot.logging import get_logger

logger = get_logger(__name__)

# Hard bounds on a funding offer's lending period, in days
MIN_PERIOD_DAYS = 2
MAX_PERIOD_DAYS = 120


class ExchangeSettings(BaseSettings):
    """Bitfinex API credentials."""

    model_config = SettingsConfigDict(env_prefix="BITFINEX_")

    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")


class TradingSettings(BaseSettings):
    """Execution mode."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    mode: Literal["paper", "live"] = "paper"
    paper_balance: Decimal = Decimal("10000")  # per configured symbol


class RebalanceSettings(BaseSettings):
    """Global rebalance scheduling and exchange call limits."""

    model_config = SettingsConfigDict(env_prefix="REBALANCE_")

    interval_minutes: float = 20.0
    rate_limit_delay: float = 0.5  # minimum seconds between exchange calls
    call_timeout: float = 15.0  # seconds per exchange call
    settle_max_attempts: int = 10
    start_delay: float = 10.0  # let the connection stabilise first


class RateSettings(BaseSettings):
    """Rate feed and best-rate tracking."""

    model_config = SettingsConfigDict(env_prefix="RATES_")

    freshness_seconds: float = 600.0  # best rate expires after 10 minutes
    poll_interval: float = 15.0
    queue_size: int = 1000


class NotificationSettings(BaseSettings):
    """Webhook alert delivery."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    webhook_url: str = ""  # empty disables delivery
    sender: str = "Funding lending bot"
    timeout_seconds: float = 10.0


class DashboardSettings(BaseSettings):
    """Status API server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "127.0.0.1"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    markets_file: str = "config/markets.json"
    exchange: ExchangeSettings = ExchangeSettings()
    trading: TradingSettings = TradingSettings()
    rebalance: RebalanceSettings = RebalanceSettings()
    rates: RateSettings = RateSettings()
    notifications: NotificationSettings = NotificationSettings()
    dashboard: DashboardSettings = DashboardSettings()


# ---------------------------------------------------------------------------
# Market definitions
# ---------------------------------------------------------------------------


class OfferTier(BaseModel):
    """A slice of total funds offered within its own rate and period band.

    ``amount`` is a percentage of total funds. ``at_least_*`` and
    ``lending_period_*`` are percentage daily rates (0.02 == 0.02%/day).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    amount: Decimal = Field(gt=0, le=100)
    min_order_size: Decimal = Field(gt=0)
    order_count: int = Field(ge=1)
    at_least_low: Decimal = Field(default=Decimal("0"), ge=0)
    at_least_high: Decimal = Field(default=Decimal("0"), ge=0)
    frr_multiple_low: Decimal = Field(default=Decimal("1"), ge=0)
    frr_multiple_high: Decimal = Field(default=Decimal("1"), ge=0)
    easing: str = "linear"
    random_amounts: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    random_rates: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    lending_period_low: Decimal = Field(ge=0)
    lending_period_high: Decimal = Field(gt=0)

    @field_validator("easing")
    @classmethod
    def _normalise_easing(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def _check_bands(self) -> "OfferTier":
        if self.at_least_low > self.at_least_high:
            raise ValueError("at_least_low must not exceed at_least_high")
        if self.frr_multiple_low > self.frr_multiple_high:
            raise ValueError("frr_multiple_low must not exceed frr_multiple_high")
        if self.lending_period_low >= self.lending_period_high:
            raise ValueError("lending_period_low must be below lending_period_high")
        return self


class AlertRule(BaseModel):
    """Notify when the market rate climbs through ``rate`` (percent per day).

    The message template may contain ``{{rate}}``, ``{{newRate}}`` and
    ``{{oldRate}}``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate: Decimal = Field(gt=0)
    message: str = "Lending rate rose above {{rate}} (now {{newRate}}, was {{oldRate}})"
    cooldown_minutes: float = Field(default=5.0, ge=0)

    @property
    def threshold(self) -> Decimal:
        """Threshold as a fractional daily rate."""
        return self.rate / 100


class MarketConfig(BaseModel):
    """Everything needed to rebalance one funding symbol (e.g. ``USD``)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    symbol: str = Field(min_length=1)
    settle_seconds: float = Field(default=5.0, ge=0)
    min_order_size: Decimal = Field(gt=0)
    rounding: int = Field(default=5, ge=0, le=12)
    min_days: int = MIN_PERIOD_DAYS
    max_days: int = 30
    strict_tier_totals: bool = False
    tiers: list[OfferTier] = Field(min_length=1)
    alerts: list[AlertRule] = Field(default_factory=list)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def _check_market(self) -> "MarketConfig":
        if self.min_days > self.max_days:
            raise ValueError("min_days must not exceed max_days")
        tier_total = sum((tier.amount for tier in self.tiers), Decimal("0"))
        if tier_total > 100 and self.strict_tier_totals:
            raise ValueError(f"tier amounts sum to {tier_total}%, above 100%")
        return self

    @property
    def period_bounds(self) -> tuple[int, int]:
        """``(min_days, max_days)`` clamped to the exchange's hard limits."""
        low = min(max(self.min_days, MIN_PERIOD_DAYS), MAX_PERIOD_DAYS)
        high = min(max(self.max_days, MIN_PERIOD_DAYS), MAX_PERIOD_DAYS)
        return low, high

    @property
    def tier_total(self) -> Decimal:
        """Sum of all tier percentages."""
        return sum((tier.amount for tier in self.tiers), Decimal("0"))


def parse_markets(raw: object) -> list[MarketConfig]:
    """Validate already-decoded market definitions.

    Accepts either a list of markets or a mapping with a ``markets`` key.

    Raises:
        ConfigurationError: If any market, tier or alert is malformed or a
            symbol is configured twice.
    """
    if isinstance(raw, dict):
        raw = raw.get("markets")
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("market configuration must be a non-empty list")

    markets: list[MarketConfig] = []
    for index, entry in enumerate(raw):
        try:
            markets.append(MarketConfig.model_validate(entry))
        except ValidationError as exc:
            raise ConfigurationError(f"market #{index} is invalid: {exc}") from exc

    seen: set[str] = set()
    for market in markets:
        if market.symbol in seen:
            raise ConfigurationError(f"market {market.symbol} is configured twice")
        seen.add(market.symbol)
        if market.tier_total > 100:
            logger.warning(
                "tiers_over_allocated",
                symbol=market.symbol,
                tier_total=str(market.tier_total),
                note="later tiers will be skipped once available funds run out",
            )

    return markets


def load_markets(path: str | Path) -> list[MarketConfig]:
    """Load and validate market definitions from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"cannot read market config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"market config {path} is not valid JSON: {exc}") from exc

    markets = parse_markets(raw)
    logger.info(
        "markets_loaded",
        path=str(path),
        symbols=[m.symbol for m in markets],
    )
    return markets
