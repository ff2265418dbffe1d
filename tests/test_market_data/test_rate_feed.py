"""Tests for RateFeed polling.

All tests use a mocked exchange to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from lending_bot.market_data.rate_feed import RateFeed


@pytest.fixture
def mock_exchange() -> AsyncMock:
    """Exchange whose latest trade rate is 0.0003 for every symbol."""
    exchange = AsyncMock()
    exchange.last_trade_rate = AsyncMock(return_value=Decimal("0.0003"))
    return exchange


@pytest.fixture
def tracker() -> MagicMock:
    return MagicMock()


class TestRateFeed:
    @pytest.mark.asyncio
    async def test_submits_one_sample_per_changed_symbol(self, mock_exchange, tracker) -> None:
        feed = RateFeed(mock_exchange, tracker, ["USD", "BTC"])

        assert await feed.poll_once() == 2
        symbols = [c.args[0].symbol for c in tracker.submit.call_args_list]
        assert symbols == ["USD", "BTC"]
        assert all(c.args[0].rate == Decimal("0.0003") for c in tracker.submit.call_args_list)

    @pytest.mark.asyncio
    async def test_unchanged_rate_is_not_resubmitted(self, mock_exchange, tracker) -> None:
        feed = RateFeed(mock_exchange, tracker, ["USD"])
        await feed.poll_once()
        assert await feed.poll_once() == 0
        assert tracker.submit.call_count == 1

        mock_exchange.last_trade_rate.return_value = Decimal("0.0004")
        assert await feed.poll_once() == 1
        assert tracker.submit.call_args.args[0].rate == Decimal("0.0004")

    @pytest.mark.asyncio
    async def test_missing_rate_is_skipped(self, mock_exchange, tracker) -> None:
        mock_exchange.last_trade_rate.return_value = None
        feed = RateFeed(mock_exchange, tracker, ["USD"])
        assert await feed.poll_once() == 0
        tracker.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_on_one_symbol_does_not_stop_others(self, mock_exchange, tracker) -> None:
        async def _rate(symbol: str) -> Decimal:
            if symbol == "USD":
                raise ConnectionError("reset by peer")
            return Decimal("0.00002")

        mock_exchange.last_trade_rate = AsyncMock(side_effect=_rate)
        feed = RateFeed(mock_exchange, tracker, ["USD", "BTC"])

        assert await feed.poll_once() == 1
        assert tracker.submit.call_args.args[0].symbol == "BTC"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_exchange, tracker) -> None:
        feed = RateFeed(mock_exchange, tracker, ["USD"], poll_interval=3600)
        await feed.start()
        await feed.stop()
        assert feed._task is None
