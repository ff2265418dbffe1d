"""JSON API endpoints: bot status, tracked best rates, markets, manual rebalance."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from lending_bot.alerts.engine import format_rate_pct
from lending_bot.rebalance.orchestrator import run_summary

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Orchestrator state and the last run of every market."""
    orchestrator = request.app.state.orchestrator
    return JSONResponse(content=_decimal_to_str(orchestrator.get_status()))


@router.get("/rates")
async def get_rates(request: Request) -> JSONResponse:
    """Best tracked rate per symbol, with its age."""
    rate_tracker = request.app.state.rate_tracker
    tracks = await rate_tracker.snapshot()

    result = []
    for symbol, sample in sorted(tracks.items()):
        result.append({
            "symbol": symbol,
            "best_rate": str(sample.rate),
            "best_rate_pct": format_rate_pct(sample.rate),
            "effective_rate": str(await rate_tracker.best_rate(symbol)),
            "timestamp": sample.timestamp,
        })
    return JSONResponse(content=result)


@router.get("/markets")
async def get_markets(request: Request) -> JSONResponse:
    """Configured markets with their tiers and alert rules."""
    orchestrator = request.app.state.orchestrator
    markets = [market.model_dump(mode="json") for market in orchestrator.markets]
    return JSONResponse(content=markets)


@router.post("/markets/{symbol}/rebalance")
async def rebalance_market(symbol: str, request: Request) -> JSONResponse:
    """Run a rebalance cycle for one market now and return its summary."""
    orchestrator = request.app.state.orchestrator
    if orchestrator.get_rebalancer(symbol) is None:
        raise HTTPException(status_code=404, detail=f"unknown market {symbol}")

    run = await orchestrator.rebalance_now(symbol)
    log.info("rebalance_triggered_via_api", symbol=symbol.upper(), state=run.state.value)
    return JSONResponse(content=run_summary(run))
