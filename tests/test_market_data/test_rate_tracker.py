"""Tests for RateTracker best-rate rules, the sample queue and alert hand-off."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from lending_bot.alerts.engine import AlertEngine
from lending_bot.config import AlertRule
from lending_bot.market_data.rate_tracker import RateTracker
from lending_bot.models import AlertOutcomeKind, RateSample


def _sample(rate: str, ts: float, symbol: str = "USD") -> RateSample:
    return RateSample(symbol=symbol, rate=Decimal(rate), timestamp=ts)


class _Clock:
    """Settable time source."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestBestRate:
    @pytest.mark.asyncio
    async def test_first_sample_becomes_best(self) -> None:
        clock = _Clock(100.0)
        tracker = RateTracker(clock=clock)
        await tracker.on_rate_sample(_sample("0.0003", 100.0))
        assert await tracker.best_rate("USD") == Decimal("0.0003")

    @pytest.mark.asyncio
    async def test_higher_rate_replaces_lower_does_not(self) -> None:
        clock = _Clock(200.0)
        tracker = RateTracker(clock=clock)
        await tracker.on_rate_sample(_sample("0.0003", 100.0))
        await tracker.on_rate_sample(_sample("0.0005", 150.0))
        await tracker.on_rate_sample(_sample("0.0004", 200.0))

        assert await tracker.best_rate("USD") == Decimal("0.0005")
        track = await tracker.get_track("USD")
        assert track is not None and track.timestamp == 150.0
        assert await tracker.last_rate("USD") == Decimal("0.0004")

    @pytest.mark.asyncio
    async def test_equal_rate_refreshes_timestamp(self) -> None:
        tracker = RateTracker(clock=_Clock(0.0))
        await tracker.on_rate_sample(_sample("0.0005", 100.0))
        await tracker.on_rate_sample(_sample("0.0005", 400.0))
        track = await tracker.get_track("USD")
        assert track is not None and track.timestamp == 400.0

    @pytest.mark.asyncio
    async def test_stale_best_is_replaced_by_lower_sample(self) -> None:
        tracker = RateTracker(freshness_seconds=600, clock=_Clock(0.0))
        await tracker.on_rate_sample(_sample("0.0009", 0.0))
        await tracker.on_rate_sample(_sample("0.0002", 601.0))
        track = await tracker.get_track("USD")
        assert track is not None and track.rate == Decimal("0.0002")

    @pytest.mark.asyncio
    async def test_sample_at_exact_freshness_edge_does_not_replace_higher(self) -> None:
        tracker = RateTracker(freshness_seconds=600, clock=_Clock(0.0))
        await tracker.on_rate_sample(_sample("0.0009", 0.0))
        await tracker.on_rate_sample(_sample("0.0002", 600.0))
        track = await tracker.get_track("USD")
        assert track is not None and track.rate == Decimal("0.0009")

    @pytest.mark.asyncio
    async def test_out_of_order_sample_is_ignored(self) -> None:
        tracker = RateTracker(clock=_Clock(0.0))
        await tracker.on_rate_sample(_sample("0.0003", 500.0))
        await tracker.on_rate_sample(_sample("0.0008", 400.0))
        track = await tracker.get_track("USD")
        assert track is not None and track.rate == Decimal("0.0003")

    @pytest.mark.asyncio
    async def test_stale_best_reads_as_zero(self) -> None:
        clock = _Clock(0.0)
        tracker = RateTracker(freshness_seconds=600, clock=clock)
        await tracker.on_rate_sample(_sample("0.0009", 0.0))

        clock.now = 600.0
        assert await tracker.best_rate("USD") == Decimal("0.0009")
        clock.now = 601.0
        assert await tracker.best_rate("USD") == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_symbol_reads_as_zero(self) -> None:
        tracker = RateTracker()
        assert await tracker.best_rate("BTC") == Decimal("0")
        assert await tracker.get_track("BTC") is None
        assert await tracker.last_rate("BTC") is None

    @pytest.mark.asyncio
    async def test_symbols_are_tracked_independently(self) -> None:
        tracker = RateTracker(clock=_Clock(10.0))
        await tracker.on_rate_sample(_sample("0.0003", 10.0, "USD"))
        await tracker.on_rate_sample(_sample("0.00001", 10.0, "BTC"))
        snapshot = await tracker.snapshot()
        assert set(snapshot) == {"USD", "BTC"}
        assert snapshot["BTC"].rate == Decimal("0.00001")


class TestAlertHandOff:
    @pytest.mark.asyncio
    async def test_first_sample_is_a_rise_from_zero(self) -> None:
        engine = AsyncMock()
        engine.evaluate = AsyncMock(return_value=["outcome"])
        tracker = RateTracker(alert_engine=engine)
        assert await tracker.on_rate_sample(_sample("0.00006", 1.0)) == ["outcome"]
        engine.evaluate.assert_awaited_once_with(
            "USD", Decimal("0"), Decimal("0.00006"), now=1.0
        )

    @pytest.mark.asyncio
    async def test_opening_rate_above_threshold_fires_at_startup(self, make_market) -> None:
        notifier = AsyncMock()
        market = make_market(alerts=[AlertRule(rate=Decimal("0.005"))])
        tracker = RateTracker(alert_engine=AlertEngine([market], notifier, clock=lambda: 1.0))

        outcomes = await tracker.on_rate_sample(_sample("0.00006", 1.0))

        assert [o.kind for o in outcomes] == [AlertOutcomeKind.FIRED]
        notifier.send_alert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upward_move_is_evaluated_with_previous_rate(self) -> None:
        engine = AsyncMock()
        engine.evaluate = AsyncMock(return_value=["outcome"])
        tracker = RateTracker(alert_engine=engine)

        await tracker.on_rate_sample(_sample("0.00004", 1.0))
        result = await tracker.on_rate_sample(_sample("0.00006", 31.0))

        assert result == ["outcome"]
        assert engine.evaluate.await_count == 2
        engine.evaluate.assert_awaited_with(
            "USD", Decimal("0.00004"), Decimal("0.00006"), now=31.0
        )

    @pytest.mark.asyncio
    async def test_previous_rate_is_last_sample_not_best(self) -> None:
        engine = AsyncMock()
        engine.evaluate = AsyncMock(return_value=[])
        tracker = RateTracker(alert_engine=engine)

        await tracker.on_rate_sample(_sample("0.0009", 1.0))
        await tracker.on_rate_sample(_sample("0.0001", 2.0))
        await tracker.on_rate_sample(_sample("0.0005", 3.0))

        assert engine.evaluate.await_count == 2
        engine.evaluate.assert_awaited_with(
            "USD", Decimal("0.0001"), Decimal("0.0005"), now=3.0
        )

    @pytest.mark.asyncio
    async def test_downward_move_skips_engine(self) -> None:
        engine = AsyncMock()
        tracker = RateTracker(alert_engine=engine)
        await tracker.on_rate_sample(_sample("0.0006", 1.0))
        await tracker.on_rate_sample(_sample("0.0004", 2.0))
        # Only the opening rise from 0 reached the engine
        assert engine.evaluate.await_count == 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_consumer_applies_submitted_samples(self) -> None:
        tracker = RateTracker(clock=_Clock(5.0))
        await tracker.start()
        try:
            tracker.submit(_sample("0.0002", 1.0))
            tracker.submit(_sample("0.0004", 2.0))
            await asyncio.wait_for(tracker.join(), timeout=1.0)
        finally:
            await tracker.stop()

        assert await tracker.best_rate("USD") == Decimal("0.0004")

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self) -> None:
        tracker = RateTracker(queue_size=2, clock=_Clock(10.0))
        tracker.submit(_sample("0.0009", 1.0))
        tracker.submit(_sample("0.0002", 2.0))
        tracker.submit(_sample("0.0003", 3.0))

        await tracker.start()
        try:
            await asyncio.wait_for(tracker.join(), timeout=1.0)
        finally:
            await tracker.stop()

        # 0.0009 never reached the table
        assert await tracker.best_rate("USD") == Decimal("0.0003")

    @pytest.mark.asyncio
    async def test_consumer_survives_a_failing_evaluation(self) -> None:
        engine = AsyncMock()
        engine.evaluate = AsyncMock(side_effect=RuntimeError("boom"))
        tracker = RateTracker(alert_engine=engine, clock=_Clock(10.0))
        await tracker.start()
        try:
            tracker.submit(_sample("0.0001", 1.0))
            tracker.submit(_sample("0.0002", 2.0))
            tracker.submit(_sample("0.0003", 3.0))
            await asyncio.wait_for(tracker.join(), timeout=1.0)
        finally:
            await tracker.stop()

        assert engine.evaluate.await_count == 3
        assert await tracker.best_rate("USD") == Decimal("0.0003")
