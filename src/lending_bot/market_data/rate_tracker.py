"""Best-rate tracker fed by a bounded queue of rate samples.

The rate feed produces RateSample events; a single consumer task applies
them here, so ingestion never waits on a rebalance cycle and vice versa.
The table is guarded by an asyncio.Lock because rebalance cycles read the
best rate at any moment, including while a sample is being applied.

Best-rate rule per symbol: a new sample replaces the stored one when it is
not lower, or when the stored sample has aged past the freshness window
(10 minutes by default). A stale entry reads as "unknown" (0).
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

from lending_bot.alerts.engine import AlertEngine
from lending_bot.logging import get_logger
from lending_bot.models import AlertOutcome, RateSample

logger = get_logger(__name__)

_DEFAULT_FRESHNESS_SECONDS = 600.0


class RateTracker:
    """Owns the per-symbol best-rate table and drives the alert engine.

    Args:
        alert_engine: Evaluates alert rules on every upward move; optional.
        freshness_seconds: How long a best-rate sample stays authoritative.
        queue_size: Capacity of the sample queue.
        clock: Time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        alert_engine: AlertEngine | None = None,
        freshness_seconds: float = _DEFAULT_FRESHNESS_SECONDS,
        queue_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._alert_engine = alert_engine
        self._freshness = freshness_seconds
        self._clock = clock
        self._queue: asyncio.Queue[RateSample] = asyncio.Queue(maxsize=queue_size)
        self._lock = asyncio.Lock()
        self._tracks: dict[str, RateSample] = {}
        self._last_rates: dict[str, Decimal] = {}
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    async def start(self) -> None:
        """Begin consuming queued samples in the background."""
        if self._task is not None:
            logger.warning("rate_tracker_already_running")
            return
        self._task = asyncio.create_task(self._consume_loop())
        logger.info("rate_tracker_started", freshness_seconds=self._freshness)

    async def stop(self) -> None:
        """Stop the consumer task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("rate_tracker_stopped")

    def submit(self, sample: RateSample) -> None:
        """Queue a sample without blocking; drops the oldest one when full."""
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            logger.warning(
                "rate_queue_full_dropping_oldest",
                dropped_symbol=dropped.symbol,
                queue_size=self._queue.maxsize,
            )
        self._queue.put_nowait(sample)

    async def join(self) -> None:
        """Wait until every queued sample has been applied."""
        await self._queue.join()

    async def _consume_loop(self) -> None:
        while True:
            sample = await self._queue.get()
            try:
                await self.on_rate_sample(sample)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("rate_sample_failed", symbol=sample.symbol, exc_info=True)
            finally:
                self._queue.task_done()

    async def on_rate_sample(self, sample: RateSample) -> list[AlertOutcome]:
        """Apply one sample: update the best rate, then evaluate alerts.

        The first sample seen for a symbol is treated as a rise from 0, so
        rules already below the opening rate fire at startup.
        """
        async with self._lock:
            previous = self._last_rates.get(sample.symbol, Decimal("0"))
            self._last_rates[sample.symbol] = sample.rate

            stored = self._tracks.get(sample.symbol)
            if stored is None:
                replace = True
            else:
                age = sample.timestamp - stored.timestamp
                replace = age > self._freshness or (age >= 0 and sample.rate >= stored.rate)
            if replace:
                self._tracks[sample.symbol] = sample

        if replace:
            logger.debug("best_rate_updated", symbol=sample.symbol, rate=str(sample.rate))

        if sample.rate <= previous or self._alert_engine is None:
            return []
        return await self._alert_engine.evaluate(
            sample.symbol, previous, sample.rate, now=sample.timestamp
        )

    async def best_rate(self, symbol: str) -> Decimal:
        """Best rate seen within the freshness window, 0 if none."""
        async with self._lock:
            stored = self._tracks.get(symbol)
            if stored is None or self._clock() - stored.timestamp > self._freshness:
                return Decimal("0")
            return stored.rate

    async def get_track(self, symbol: str) -> RateSample | None:
        """Return the stored best-rate sample for a symbol, stale or not."""
        async with self._lock:
            return self._tracks.get(symbol)

    async def snapshot(self) -> dict[str, RateSample]:
        """Return a copy of the whole best-rate table."""
        async with self._lock:
            return dict(self._tracks)

    async def last_rate(self, symbol: str) -> Decimal | None:
        """Most recent sample rate for a symbol, regardless of best-rate rules."""
        async with self._lock:
            return self._last_rates.get(symbol)
