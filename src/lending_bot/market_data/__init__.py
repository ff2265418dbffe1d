"""Market data layer -- rate polling and best-rate tracking."""

from lending_bot.market_data.rate_feed import RateFeed
from lending_bot.market_data.rate_tracker import RateTracker

__all__ = ["RateFeed", "RateTracker"]
