"""Tests for the Orchestrator: staggering, lifecycle, manual runs and isolation."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from lending_bot.config import AppSettings, RebalanceSettings, TradingSettings
from lending_bot.exchange.client import FundingExchange
from lending_bot.models import RebalanceState
from lending_bot.rebalance.orchestrator import Orchestrator


@pytest.fixture
def orchestrator(settings, make_market, paper_exchange, limiter, rate_tracker, rng) -> Orchestrator:
    return Orchestrator(
        settings=settings,
        markets=[make_market()],
        exchange=paper_exchange,
        rate_tracker=rate_tracker,
        limiter=limiter,
        rng=rng,
    )


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestScheduling:
    def test_markets_are_staggered_across_the_interval(
        self, make_market, paper_exchange, rate_tracker
    ) -> None:
        settings = AppSettings(
            rebalance=RebalanceSettings(interval_minutes=1, start_delay=10),
        )
        orchestrator = Orchestrator(
            settings=settings,
            markets=[make_market("USD"), make_market("BTC"), make_market("ETH")],
            exchange=paper_exchange,
            rate_tracker=rate_tracker,
        )
        assert orchestrator.stagger_delays() == [10, 30, 50]
        assert orchestrator.interval_seconds == 60

    def test_limiter_built_from_settings(self, make_market, paper_exchange, rate_tracker) -> None:
        settings = AppSettings(rebalance=RebalanceSettings(rate_limit_delay=0.25, call_timeout=3))
        orchestrator = Orchestrator(settings, [make_market()], paper_exchange, rate_tracker)
        assert orchestrator._limiter._min_interval == 0.25
        assert orchestrator._limiter._timeout == 3


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_first_cycle_and_stop_ends_loops(self, orchestrator, paper_exchange) -> None:
        task = asyncio.create_task(orchestrator.start())
        rebalancer = orchestrator.get_rebalancer("USD")

        await _wait_for(
            lambda: rebalancer.last_run is not None and rebalancer.last_run.finished_at is not None
        )
        assert orchestrator.running
        assert len(paper_exchange.get_open_offers("USD")) == 4

        await orchestrator.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert not orchestrator.running
        assert rebalancer.cycles == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self, orchestrator) -> None:
        await orchestrator.stop()
        assert not orchestrator.running

    @pytest.mark.asyncio
    async def test_rate_feed_is_started_and_stopped(
        self, settings, make_market, paper_exchange, limiter, rate_tracker
    ) -> None:
        feed = AsyncMock()
        orchestrator = Orchestrator(
            settings, [make_market()], paper_exchange, rate_tracker, rate_feed=feed, limiter=limiter
        )
        task = asyncio.create_task(orchestrator.start())
        await _wait_for(lambda: orchestrator.get_rebalancer("USD").cycles == 1)
        await orchestrator.stop()
        await asyncio.wait_for(task, timeout=2.0)

        feed.start.assert_awaited_once()
        feed.stop.assert_awaited_once()


class TestManualRebalance:
    @pytest.mark.asyncio
    async def test_rebalance_now(self, orchestrator, paper_exchange) -> None:
        run = await orchestrator.rebalance_now("usd")
        assert run.state == RebalanceState.IDLE
        assert run.offers_placed == 4

        status = orchestrator.get_status()
        usd = status["markets"]["USD"]
        assert usd["cycles"] == 1
        assert usd["busy"] is False
        assert usd["last_run"]["state"] == "idle"
        assert usd["last_run"]["offers_placed"] == 4
        assert usd["last_run"]["total_funds"] == "1000"
        assert status["mode"] == "paper"

    @pytest.mark.asyncio
    async def test_rebalance_unknown_symbol(self, orchestrator) -> None:
        with pytest.raises(KeyError):
            await orchestrator.rebalance_now("XYZ")

    def test_status_before_any_cycle(self, orchestrator) -> None:
        status = orchestrator.get_status()
        assert status["running"] is False
        assert status["markets"]["USD"]["last_run"] is None
        assert [m.symbol for m in orchestrator.markets] == ["USD"]


class TestMarketIsolation:
    @pytest.mark.asyncio
    async def test_failure_in_one_market_does_not_touch_another(
        self, make_market, limiter, rate_tracker, rng
    ) -> None:
        exchange = AsyncMock(spec=FundingExchange)

        async def _list(symbol: str) -> list[str]:
            if symbol == "BTC":
                raise ConnectionError("BTC endpoint down")
            return []

        exchange.list_open_offers = AsyncMock(side_effect=_list)
        exchange.total_funds = AsyncMock(return_value=Decimal("1000"))
        exchange.available_funds = AsyncMock(return_value=Decimal("1000"))
        exchange.reference_rate = AsyncMock(return_value=Decimal("0.0002"))
        exchange.new_offer = AsyncMock(return_value="id")

        settings = AppSettings(
            trading=TradingSettings(mode="paper"),
            rebalance=RebalanceSettings(rate_limit_delay=0, start_delay=0),
        )
        orchestrator = Orchestrator(
            settings,
            [make_market("USD"), make_market("BTC")],
            exchange,
            rate_tracker,
            limiter=limiter,
            rng=rng,
        )

        btc, usd = await asyncio.gather(
            orchestrator.rebalance_now("BTC"), orchestrator.rebalance_now("USD")
        )

        assert btc.state == RebalanceState.FAILED
        assert usd.state == RebalanceState.IDLE
        assert usd.offers_placed == 4
        assert all(c.args[0] == "USD" for c in exchange.new_offer.await_args_list)

    @pytest.mark.asyncio
    async def test_loop_survives_a_failing_cycle(self, orchestrator, monkeypatch) -> None:
        rebalancer = orchestrator.get_rebalancer("USD")
        monkeypatch.setattr(rebalancer, "run_cycle", AsyncMock(side_effect=RuntimeError("boom")))

        task = asyncio.create_task(orchestrator.start())
        await _wait_for(lambda: rebalancer.run_cycle.await_count == 1)
        assert not task.done()

        await orchestrator.stop()
        await asyncio.wait_for(task, timeout=2.0)
