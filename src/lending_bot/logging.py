"""Structured logging for the lending bot.

Every market loop runs its rebalance cycle inside
``structlog.contextvars.bound_contextvars(symbol=..., cycle=...)``, so each
line logged during a cycle carries the market symbol and the cycle number
without the callers passing them. The rate tracker and feed log with an
explicit ``symbol`` instead, since one consumer task serves all markets.
"""

import logging
import os

import structlog

# Third-party loggers that flood DEBUG output with raw HTTP traffic
_NOISY_LOGGERS = ("ccxt", "aiohttp")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        log_level: Root level name, e.g. ``"DEBUG"``. Unknown names fall
            back to INFO.
        log_format: ``"json"`` for one JSON object per line, anything else
            for the coloured console renderer. When omitted the LOG_FORMAT
            environment variable decides, defaulting to console.
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        # Pulls in the per-cycle symbol and cycle bindings
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
