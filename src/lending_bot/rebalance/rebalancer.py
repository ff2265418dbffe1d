"""Single-market rebalance cycle: cancel -> settle -> allocate -> place.

One MarketRebalancer exists per configured market. Each cycle:
  1. CANCELLING: cancel every open offer for the symbol, one paced call each
  2. SETTLING: skip if total funds round to zero; otherwise refresh the
     balance and wait until available funds can be read (bounded retries)
  3. ALLOCATING: skip if available < market minimum; otherwise run the
     tiered allocation against FRR and the tracked best rate
  4. PLACING: submit every planned offer, one paced call each

Any ExchangeCallError aborts the cycle in state FAILED. The next scheduled
cycle starts from scratch; nothing carries over between cycles.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal

import structlog

from lending_bot.allocation.allocator import allocate
from lending_bot.allocation.rounding import round_places
from lending_bot.config import MarketConfig
from lending_bot.exceptions import ExchangeCallError, SettleTimeoutError
from lending_bot.exchange.client import FundingExchange
from lending_bot.exchange.rate_limiter import RateLimiter
from lending_bot.logging import get_logger
from lending_bot.market_data.rate_tracker import RateTracker
from lending_bot.models import OfferPlan, OutcomeKind, RebalanceRun, RebalanceState

logger = get_logger(__name__)


class MarketRebalancer:
    """Runs rebalance cycles for one market, never two at once.

    Args:
        market: Market configuration.
        exchange: Funding exchange client.
        limiter: Global pacing/timeout guard shared by all markets.
        rate_tracker: Source of the recent best rate.
        settle_max_attempts: Balance polls before giving up on settling.
        rng: Random source for the order ladders.
        sleep: Awaitable sleep (injectable for tests).
    """

    def __init__(
        self,
        market: MarketConfig,
        exchange: FundingExchange,
        limiter: RateLimiter,
        rate_tracker: RateTracker,
        settle_max_attempts: int = 10,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._market = market
        self._exchange = exchange
        self._limiter = limiter
        self._rate_tracker = rate_tracker
        self._settle_max_attempts = max(settle_max_attempts, 1)
        self._rng = rng
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._cycles = 0
        self.last_run: RebalanceRun | None = None

    @property
    def market(self) -> MarketConfig:
        return self._market

    @property
    def symbol(self) -> str:
        return self._market.symbol

    @property
    def busy(self) -> bool:
        """Whether a cycle is running right now."""
        return self._lock.locked()

    @property
    def cycles(self) -> int:
        """Number of cycles started so far."""
        return self._cycles

    async def run_cycle(self) -> RebalanceRun:
        """Run one full cycle, waiting for any cycle already in progress.

        Never raises for exchange or unexpected errors: the returned run is
        left in state FAILED with the error recorded.
        """
        async with self._lock:
            self._cycles += 1
            run = RebalanceRun(symbol=self.symbol)
            self.last_run = run
            with structlog.contextvars.bound_contextvars(
                symbol=self.symbol, cycle=self._cycles
            ):
                logger.info("rebalance_started")
                try:
                    await self._execute(run)
                except ExchangeCallError as exc:
                    run.state = RebalanceState.FAILED
                    run.record(OutcomeKind.FAILED, str(exc))
                    logger.error("rebalance_failed", error=str(exc))
                except asyncio.CancelledError:
                    run.state = RebalanceState.FAILED
                    run.record(OutcomeKind.FAILED, "cancelled")
                    raise
                except Exception as exc:
                    run.state = RebalanceState.FAILED
                    run.record(OutcomeKind.FAILED, f"unexpected: {exc}")
                    logger.error("rebalance_unexpected_error", error=str(exc), exc_info=True)
                else:
                    run.state = RebalanceState.IDLE
                    logger.info(
                        "rebalance_finished",
                        cancelled=run.offers_cancelled,
                        placed=run.offers_placed,
                        skipped=run.skipped,
                    )
                finally:
                    run.finished_at = time.time()
        return run

    async def _execute(self, run: RebalanceRun) -> None:
        await self._cancel_offers(run)

        available = await self._settle(run)
        if available is None:
            return

        offers = await self._allocate(run, available)
        if not offers:
            return

        await self._place_offers(run, offers)

    async def _cancel_offers(self, run: RebalanceRun) -> None:
        run.state = RebalanceState.CANCELLING
        offer_ids = await self._limiter.call(
            "list_open_offers", self._exchange.list_open_offers, self.symbol
        )
        logger.info("cancelling_open_offers", count=len(offer_ids))
        for offer_id in offer_ids:
            await self._limiter.call("cancel_offer", self._exchange.cancel_offer, offer_id)
            run.offers_cancelled += 1

    async def _settle(self, run: RebalanceRun) -> Decimal | None:
        """Wait for the balance to settle after cancelling.

        Returns:
            Available funds, or None when the market holds no funds at all.

        Raises:
            SettleTimeoutError: If available funds stayed unreadable.
        """
        run.state = RebalanceState.SETTLING
        total = await self._limiter.call(
            "total_funds", self._exchange.total_funds, self.symbol, paced=False
        )
        run.total_funds = total
        if round_places(total, self._market.rounding) == 0:
            run.record(OutcomeKind.NO_FUNDS, f"total funds {total}")
            logger.info("rebalance_skipped_no_funds", total=str(total))
            return None

        for attempt in range(1, self._settle_max_attempts + 1):
            await self._limiter.call(
                "refresh_balance", self._exchange.refresh_balance, self.symbol
            )
            await self._sleep(self._market.settle_seconds)
            available = await self._limiter.call(
                "available_funds", self._exchange.available_funds, self.symbol, paced=False
            )
            if available is not None:
                run.available_funds = available
                run.remaining_available = available
                logger.info(
                    "balance_settled",
                    total=str(total),
                    available=str(available),
                    attempts=attempt,
                )
                return available
            logger.debug("balance_not_settled", attempt=attempt)

        raise SettleTimeoutError(
            f"available {self.symbol} funds unreadable after "
            f"{self._settle_max_attempts} attempts"
        )

    async def _allocate(self, run: RebalanceRun, available: Decimal) -> list[OfferPlan]:
        run.state = RebalanceState.ALLOCATING
        if available < self._market.min_order_size:
            run.record(
                OutcomeKind.INSUFFICIENT_AVAILABLE,
                f"{available} available, minimum {self._market.min_order_size}",
            )
            logger.info(
                "rebalance_skipped_insufficient_available",
                available=str(available),
                min_order_size=str(self._market.min_order_size),
            )
            return []

        frr = await self._limiter.call(
            "reference_rate", self._exchange.reference_rate, self.symbol, paced=False
        )
        best_rate = await self._rate_tracker.best_rate(self.symbol)
        logger.info("rates_for_allocation", frr=str(frr), best_rate=str(best_rate))

        plans = allocate(
            self._market,
            run.total_funds,
            available,
            frr,
            best_rate,
            self._rng,
        )

        offers: list[OfferPlan] = []
        remaining = available
        for plan in plans:
            remaining -= plan.allocated
            if plan.skipped:
                run.record(
                    OutcomeKind.TIER_SKIPPED,
                    f"allocated {plan.allocated} below tier minimum",
                    tier_index=plan.tier_index,
                )
            else:
                run.record(
                    OutcomeKind.TIER_ALLOCATED,
                    f"{len(plan.offers)} offers for {plan.allocated}",
                    tier_index=plan.tier_index,
                )
                offers.extend(plan.offers)
        run.remaining_available = max(remaining, Decimal("0"))
        return offers

    async def _place_offers(self, run: RebalanceRun, offers: list[OfferPlan]) -> None:
        run.state = RebalanceState.PLACING
        for offer in offers:
            await self._limiter.call(
                "new_offer",
                self._exchange.new_offer,
                offer.symbol,
                offer.amount,
                offer.rate,
                offer.period_days,
            )
            run.offers_placed += 1
        run.record(OutcomeKind.OFFERS_PLACED, f"{run.offers_placed} offers")
        logger.info("offers_placed", count=run.offers_placed)
