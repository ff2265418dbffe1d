"""Funding rate feed -- polls the latest public trade rate for each market.

Uses REST polling: lending rates move on a scale of minutes, so polling
every few seconds is enough. Each change in the observed rate becomes a
RateSample on the tracker's queue.
"""

import asyncio
import time
from decimal import Decimal

from lending_bot.exchange.client import FundingExchange
from lending_bot.logging import get_logger
from lending_bot.market_data.rate_tracker import RateTracker
from lending_bot.models import RateSample

logger = get_logger(__name__)


class RateFeed:
    """Polls trade rates and pushes changes into a RateTracker.

    Args:
        exchange: Source of public trade rates.
        tracker: Receives a sample whenever a symbol's rate changes.
        symbols: Funding currencies to watch.
        poll_interval: Seconds between polls.
    """

    def __init__(
        self,
        exchange: FundingExchange,
        tracker: RateTracker,
        symbols: list[str],
        poll_interval: float = 15.0,
    ) -> None:
        self._exchange = exchange
        self._tracker = tracker
        self._symbols = symbols
        self._poll_interval = poll_interval
        self._last_seen: dict[str, Decimal] = {}
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    async def start(self) -> None:
        """Begin polling in the background."""
        if self._running:
            logger.warning("rate_feed_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("rate_feed_started", symbols=self._symbols, poll_interval=self._poll_interval)

    async def stop(self) -> None:
        """Stop polling gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("rate_feed_stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            await self.poll_once()
            if self._running:
                await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> int:
        """Poll every symbol once.

        Returns:
            Number of samples submitted (symbols whose rate changed).
        """
        submitted = 0
        for symbol in self._symbols:
            try:
                rate = await self._exchange.last_trade_rate(symbol)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("rate_feed_poll_error", symbol=symbol, exc_info=True)
                continue

            if rate is None or rate == self._last_seen.get(symbol):
                continue

            self._last_seen[symbol] = rate
            self._tracker.submit(RateSample(symbol=symbol, rate=rate, timestamp=time.time()))
            submitted += 1

        logger.debug("rate_feed_polled", changed=submitted)
        return submitted
