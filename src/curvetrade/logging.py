"""Structured logging for the trade service.

Two context scopes ride on structlog.contextvars:
  - chart selection (artist_id, timeframe), bound by MarketDataController
    and inherited by the history refresh task it spawns
  - quote submission (quote_id, side), bound around one TradeSubmitter.submit
"""

import logging
import os
from contextlib import AbstractContextManager

import structlog


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog with JSON or console rendering.

    Context bound with bind_selection() or quote_context() is merged into
    every line.
    Rendering format is controlled by the LOG_FORMAT environment variable:
    - "json" for production (machine-readable)
    - "console" for development (human-readable, default)
    """
    log_format = os.environ.get("LOG_FORMAT", "console").lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


def bind_selection(artist_id: str, timeframe: str) -> None:
    """Tag later log lines of this task, and tasks it creates, with a chart selection."""
    structlog.contextvars.bind_contextvars(artist_id=artist_id, timeframe=timeframe)


def clear_selection() -> None:
    structlog.contextvars.unbind_contextvars("artist_id", "timeframe")


def quote_context(quote_id: str, side: str) -> AbstractContextManager:
    """Bind quote_id/side for the duration of one submission."""
    return structlog.contextvars.bound_contextvars(quote_id=quote_id, side=side)
