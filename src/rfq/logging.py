"""Structured logging configuration using structlog with async context propagation."""

import logging
import os
from contextlib import AbstractContextManager

import structlog

# Client libraries that log every HTTP round trip at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "ccxt")


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog over stdlib logging.

    Context bound with ``structlog.contextvars.bind_contextvars`` (for
    example ``rfq_id`` or ``trade_id``) is merged into every event emitted
    by the same task. Rendering is selected by the LOG_FORMAT environment
    variable: "json" for machine-readable output, "console" (default) for
    development.
    """
    log_format = os.environ.get("LOG_FORMAT", "console").lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
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

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


def log_context(**ids: object) -> AbstractContextManager[None]:
    """Bind desk identifiers (``rfq_id``, ``quote_id``, ``trade_id``, ...) for a block.

    Every event logged inside the block, including those from the ledger
    client, carries the identifiers. ``None`` values are not bound.
    """
    return structlog.contextvars.bound_contextvars(
        **{key: value for key, value in ids.items() if value is not None}
    )
