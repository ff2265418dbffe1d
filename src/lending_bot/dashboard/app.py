"""FastAPI status API application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from lending_bot.dashboard.routes import api


def create_dashboard_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the status API application.

    Route handlers read ``app.state.orchestrator`` and
    ``app.state.rate_tracker``; the caller (main.py lifespan, or a test)
    is responsible for setting them.

    Args:
        lifespan: Optional async context manager for application lifespan events.

    Returns:
        Configured FastAPI application with the JSON API under /api.
    """
    app = FastAPI(
        title="Funding Lending Bot",
        lifespan=lifespan,
    )
    app.include_router(api.router, prefix="/api")
    return app
