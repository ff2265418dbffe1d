"""Entry point for the funding lending bot.

Wires all components together, optionally embeds the FastAPI status API,
and starts the orchestrator. When the API is enabled (default) the bot and
the API share a single asyncio event loop via uvicorn's programmatic API
and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. Market definitions (fatal ConfigurationError on bad input)
2. FundingExchange (Bitfinex live, or paper simulation fed by public data)
3. Notifier (webhook, or log-only when no URL is set)
4. AlertEngine (per-rule cooldowns)
5. RateTracker (best-rate table, alert driver)
6. RateFeed (trade rate polling)
7. Orchestrator (per-market rebalance loops)
"""

import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from lending_bot.alerts.engine import AlertEngine
from lending_bot.alerts.notifier import build_notifier
from lending_bot.config import AppSettings, load_markets
from lending_bot.exceptions import ConfigurationError
from lending_bot.exchange.bitfinex_client import BitfinexFundingClient
from lending_bot.exchange.client import FundingExchange
from lending_bot.exchange.paper_exchange import PaperFundingExchange
from lending_bot.logging import get_logger, setup_logging
from lending_bot.market_data.rate_feed import RateFeed
from lending_bot.market_data.rate_tracker import RateTracker
from lending_bot.rebalance.orchestrator import Orchestrator


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all bot components from settings.

    Note: Does NOT call exchange.connect() -- that happens in the
    lifespan (API mode) or run() (no-API mode).

    Raises:
        ConfigurationError: If the market definitions are invalid.
    """
    logger = get_logger("lending_bot.main")

    # 1. Markets
    markets = load_markets(settings.markets_file)
    symbols = [market.symbol for market in markets]

    # 2. Exchange
    live_client = BitfinexFundingClient(settings.exchange)
    exchange: FundingExchange
    if settings.trading.mode == "paper":
        if not settings.exchange.api_key.get_secret_value():
            logger.info(
                "paper_mode_public_data_only",
                note="Rates come from public Bitfinex endpoints; offers are simulated.",
            )
        paper = PaperFundingExchange(market_data=live_client)
        for symbol in symbols:
            paper.set_initial_balance(symbol, settings.trading.paper_balance)
        exchange = paper
    else:
        exchange = live_client

    # 3-5. Alerts and rate tracking
    notifier = build_notifier(settings.notifications)
    alert_engine = AlertEngine(markets, notifier)
    rate_tracker = RateTracker(
        alert_engine=alert_engine,
        freshness_seconds=settings.rates.freshness_seconds,
        queue_size=settings.rates.queue_size,
    )

    # 6. Rate feed
    rate_feed = RateFeed(
        exchange=exchange,
        tracker=rate_tracker,
        symbols=symbols,
        poll_interval=settings.rates.poll_interval,
    )

    # 7. Orchestrator
    orchestrator = Orchestrator(
        settings=settings,
        markets=markets,
        exchange=exchange,
        rate_tracker=rate_tracker,
        rate_feed=rate_feed,
    )

    return {
        "markets": markets,
        "exchange": exchange,
        "notifier": notifier,
        "alert_engine": alert_engine,
        "rate_tracker": rate_tracker,
        "rate_feed": rate_feed,
        "orchestrator": orchestrator,
    }


def _setup_signal_handlers(orchestrator: Orchestrator) -> None:
    """Register SIGINT/SIGTERM to stop the orchestrator gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("lending_bot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(orchestrator.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage bot component lifecycle within the FastAPI application.

    On startup: exposes components on app.state, connects to the exchange
    and starts the orchestrator as a background task.

    On shutdown: stops the orchestrator, waits for it, and disconnects.
    """
    logger = get_logger("lending_bot.main")
    components = app.state.components

    app.state.orchestrator = components["orchestrator"]
    app.state.rate_tracker = components["rate_tracker"]

    await components["exchange"].connect()
    bot_task = asyncio.create_task(components["orchestrator"].start())
    logger.info("lifespan_started", mode=app.state.settings.trading.mode)

    yield

    await components["orchestrator"].stop()
    try:
        await asyncio.wait_for(bot_task, timeout=30.0)
    except asyncio.TimeoutError:
        bot_task.cancel()
        try:
            await bot_task
        except asyncio.CancelledError:
            pass

    await components["notifier"].close()
    await components["exchange"].close()
    logger.info("lending_bot_stopped")


async def run() -> None:
    """Run the funding lending bot, with or without the status API."""
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("lending_bot.main")
    logger.info("lending_bot_starting", mode=settings.trading.mode)

    components = _build_components(settings)

    if settings.dashboard.enabled:
        from lending_bot.dashboard.app import create_dashboard_app

        app = create_dashboard_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_status_api",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
        )
        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        _setup_signal_handlers(components["orchestrator"])
        logger.info("starting_without_status_api", markets=len(components["markets"]))
        try:
            await components["exchange"].connect()
            await components["orchestrator"].start()
        finally:
            await components["notifier"].close()
            await components["exchange"].close()
            logger.info("lending_bot_stopped")


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(run())
    except ConfigurationError as exc:
        get_logger("lending_bot.main").critical("configuration_error", error=str(exc))
        sys.exit(2)


if __name__ == "__main__":
    main()
