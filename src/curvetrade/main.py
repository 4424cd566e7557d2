"""Entry point for the bonding-curve trade service.

Wires all components together and serves the FastAPI app under uvicorn.
The feed, the chart controller and the API share one asyncio event loop;
FastAPI's lifespan starts and stops the long-lived pieces.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. Web3CurveContract (chain reads and trade transactions)
4. BackendClient (candle history, realized daily volume)
5. LimitGuard (daily limit and sell cooldown)
6. QuoteEngine (buy/sell quotes)
7. TradeSubmitter (re-validation, gas, revert classification)
8. StompTradeFeed (live trades)
9. MarketDataController (aggregator + history merge per selection)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from curvetrade.backend.client import BackendClient
from curvetrade.chain.web3_contract import Web3CurveContract
from curvetrade.config import AppSettings
from curvetrade.execution.submitter import TradeSubmitter
from curvetrade.feed.stomp_feed import StompTradeFeed
from curvetrade.logging import get_logger, setup_logging
from curvetrade.market_data.controller import MarketDataController
from curvetrade.quote.engine import QuoteEngine
from curvetrade.risk.limit_guard import LimitGuard


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT start the feed or select a chart -- that happens in the
    lifespan (API mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    contract = Web3CurveContract(settings.chain, settings.chain.contract_address)
    backend = BackendClient(settings.backend)
    limit_guard = LimitGuard(contract, backend, settings.curve)
    quote_engine = QuoteEngine(contract, limit_guard, settings.curve)
    submitter = TradeSubmitter(contract, quote_engine, limit_guard)
    feed = StompTradeFeed(settings.feed)
    controller = MarketDataController(feed, backend, settings.feed, settings.chart)

    return {
        "contract": contract,
        "backend": backend,
        "limit_guard": limit_guard,
        "quote_engine": quote_engine,
        "submitter": submitter,
        "feed": feed,
        "controller": controller,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to set the stop event.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("curvetrade.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def _start(components: dict[str, Any], settings: AppSettings) -> None:
    logger = get_logger("curvetrade.main")
    await components["feed"].start()
    artist_id = settings.chart.default_artist_id
    if artist_id:
        await components["controller"].select(artist_id, settings.chart.default_timeframe)
        logger.info(
            "default_chart_selected",
            artist_id=artist_id,
            timeframe=settings.chart.default_timeframe,
        )


async def _stop(components: dict[str, Any]) -> None:
    await components["controller"].close()
    await components["feed"].stop()
    await components["backend"].close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, wires the controller to
    the WebSocket hub, starts the feed and selects the default chart.

    On shutdown: closes the controller, stops the feed, closes the backend
    client.
    """
    from curvetrade.api.routes.chart import series_payload

    logger = get_logger("curvetrade.main")
    settings = app.state.settings
    components = app.state.components

    # Store all components on app.state for route handler access
    app.state.contract = components["contract"]
    app.state.limit_guard = components["limit_guard"]
    app.state.quote_engine = components["quote_engine"]
    app.state.submitter = components["submitter"]
    app.state.feed = components["feed"]
    app.state.controller = components["controller"]

    controller = components["controller"]
    hub = app.state.hub
    remove_listener = controller.add_listener(
        lambda series: hub.publish(series_payload(controller, series))
    )

    await _start(components, settings)
    logger.info("lifespan_started", contract=settings.chain.contract_address)

    yield

    remove_listener()
    await _stop(components)
    logger.info("curvetrade_stopped")


async def run() -> None:
    """Run the trade service.

    When the API is enabled (API_ENABLED=true, the default) the service runs
    under uvicorn and the lifespan manages startup/shutdown. Otherwise the
    feed and chart controller run headless until SIGINT/SIGTERM.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("curvetrade.main")

    # 3-9. Build all components
    components = _build_components(settings)

    if settings.api.enabled:
        from curvetrade.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)
        logger.info("starting_headless", feed_url=settings.feed.url)

        try:
            await _start(components, settings)
            await stop_event.wait()
        finally:
            await _stop(components)
            logger.info("curvetrade_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
