"""FastAPI application factory for the quote, chart and trade API."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from fastapi import FastAPI

from curvetrade.api.routes import api, chart, ws
from curvetrade.api.routes.ws import SeriesHub


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application. Route handlers read their components
        (quote_engine, limit_guard, submitter, controller, feed, settings)
        from app.state.
    """
    app = FastAPI(
        title="Bonding Curve Trade API",
        lifespan=lifespan,
    )

    app.state.hub = SeriesHub()
    # Quotes issued by this process, awaiting POST /api/trade
    app.state.quotes = OrderedDict()
    app.state.max_stored_quotes = 1000

    app.include_router(api.router, prefix="/api")
    app.include_router(chart.router, prefix="/api")
    app.include_router(ws.router)

    return app
