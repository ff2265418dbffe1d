"""Bot orchestrator -- wires the rate pipeline and runs one loop per market.

Startup:
  1. Start the RateTracker consumer and the RateFeed poller
  2. Start one rebalance loop per market, staggered evenly across the
     rebalance interval so the exchange never sees every market at once

Each market loop then repeats its cycle every ``interval`` seconds,
measured from the start of the previous cycle. A cycle that overruns
its slot delays the next one; two cycles of the same market never
overlap. Markets are independent: a failure or stall in one does not
touch another.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any

from lending_bot.config import AppSettings, MarketConfig
from lending_bot.exchange.client import FundingExchange
from lending_bot.exchange.rate_limiter import RateLimiter
from lending_bot.logging import get_logger
from lending_bot.market_data.rate_feed import RateFeed
from lending_bot.market_data.rate_tracker import RateTracker
from lending_bot.models import RebalanceRun
from lending_bot.rebalance.rebalancer import MarketRebalancer

logger = get_logger(__name__)


class Orchestrator:
    """Runs every market's rebalance loop plus the rate pipeline.

    Args:
        settings: Application-wide settings.
        markets: Market configurations (already validated).
        exchange: Funding exchange client.
        rate_tracker: Best-rate table and alert driver.
        rate_feed: Rate poller feeding the tracker; optional.
        limiter: Shared exchange call guard; built from settings if omitted.
        rng: Random source for the order ladders.
    """

    def __init__(
        self,
        settings: AppSettings,
        markets: list[MarketConfig],
        exchange: FundingExchange,
        rate_tracker: RateTracker,
        rate_feed: RateFeed | None = None,
        limiter: RateLimiter | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._exchange = exchange
        self._rate_tracker = rate_tracker
        self._rate_feed = rate_feed
        self._limiter = limiter or RateLimiter(
            min_interval=settings.rebalance.rate_limit_delay,
            timeout=settings.rebalance.call_timeout,
        )
        self._rebalancers: dict[str, MarketRebalancer] = {
            market.symbol: MarketRebalancer(
                market=market,
                exchange=exchange,
                limiter=self._limiter,
                rate_tracker=rate_tracker,
                settle_max_attempts=settings.rebalance.settle_max_attempts,
                rng=rng,
            )
            for market in markets
        }
        self._running = False
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._started_at: float | None = None

    @property
    def interval_seconds(self) -> float:
        return self._settings.rebalance.interval_minutes * 60

    @property
    def running(self) -> bool:
        return self._running

    def stagger_delays(self) -> list[float]:
        """Initial delay of each market loop, in market order."""
        count = len(self._rebalancers)
        if count == 0:
            return []
        step = self.interval_seconds / count
        start = self._settings.rebalance.start_delay
        return [start + i * step for i in range(count)]

    async def start(self) -> None:
        """Start the rate pipeline and all market loops; return when stopped."""
        logger.info(
            "orchestrator_starting",
            mode=self._settings.trading.mode,
            markets=list(self._rebalancers),
            interval_minutes=self._settings.rebalance.interval_minutes,
        )
        self._running = True
        self._stop_event.clear()
        self._started_at = time.time()

        await self._rate_tracker.start()
        if self._rate_feed is not None:
            await self._rate_feed.start()

        self._tasks = [
            asyncio.create_task(self._market_loop(rebalancer, delay), name=f"rebalance-{symbol}")
            for (symbol, rebalancer), delay in zip(self._rebalancers.items(), self.stagger_delays())
        ]

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        finally:
            if self._rate_feed is not None:
                await self._rate_feed.stop()
            await self._rate_tracker.stop()
            self._running = False
            logger.info("orchestrator_stopped")

    async def stop(self) -> None:
        """Signal every loop to stop after its current cycle."""
        if not self._running:
            return
        logger.info("orchestrator_stopping_gracefully")
        self._running = False
        self._stop_event.set()

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True if stop was requested."""
        if delay <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _market_loop(self, rebalancer: MarketRebalancer, initial_delay: float) -> None:
        logger.info(
            "market_loop_scheduled",
            symbol=rebalancer.symbol,
            first_run_in=round(initial_delay, 1),
        )
        if await self._wait_or_stop(initial_delay):
            return

        while self._running:
            started = time.monotonic()
            try:
                await rebalancer.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "market_loop_error", symbol=rebalancer.symbol, error=str(e), exc_info=True
                )

            elapsed = time.monotonic() - started
            if elapsed > self.interval_seconds:
                logger.warning(
                    "rebalance_overran_interval",
                    symbol=rebalancer.symbol,
                    elapsed=round(elapsed, 1),
                    interval=self.interval_seconds,
                )
            if await self._wait_or_stop(self.interval_seconds - elapsed):
                break

    def get_rebalancer(self, symbol: str) -> MarketRebalancer | None:
        return self._rebalancers.get(symbol.upper())

    @property
    def markets(self) -> list[MarketConfig]:
        return [r.market for r in self._rebalancers.values()]

    async def rebalance_now(self, symbol: str) -> RebalanceRun:
        """Run one cycle for ``symbol`` immediately (after any running cycle).

        Raises:
            KeyError: If the symbol is not configured.
        """
        rebalancer = self.get_rebalancer(symbol)
        if rebalancer is None:
            raise KeyError(symbol)
        logger.info("manual_rebalance_requested", symbol=rebalancer.symbol)
        return await rebalancer.run_cycle()

    def get_status(self) -> dict[str, Any]:
        """Return orchestrator status for the status API."""
        markets: dict[str, Any] = {}
        for symbol, rebalancer in self._rebalancers.items():
            run = rebalancer.last_run
            markets[symbol] = {
                "busy": rebalancer.busy,
                "cycles": rebalancer.cycles,
                "last_run": run_summary(run) if run is not None else None,
            }
        return {
            "running": self._running,
            "mode": self._settings.trading.mode,
            "started_at": self._started_at,
            "interval_minutes": self._settings.rebalance.interval_minutes,
            "markets": markets,
        }


def run_summary(run: RebalanceRun) -> dict[str, Any]:
    """Serialise a RebalanceRun for the status API."""
    return {
        "state": run.state.value,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "total_funds": str(run.total_funds),
        "available_funds": None if run.available_funds is None else str(run.available_funds),
        "remaining_available": str(run.remaining_available),
        "offers_cancelled": run.offers_cancelled,
        "offers_placed": run.offers_placed,
        "outcomes": [
            {"kind": o.kind.value, "detail": o.detail, "tier": o.tier_index}
            for o in run.outcomes
        ],
    }
