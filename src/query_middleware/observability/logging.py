"""Structured logging configuration for the query middleware.

Every lifecycle transition of a fetch or mutation is logged as a structlog
event. Events emitted while a request runs carry its query key and url,
bound once per request by query_context(). Typical event fields:
- Query keys
- Request URLs
- Attempt counts
- Lifecycle transitions
- Durations

Examples:
    Configure logging::

        from query_middleware.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Use the logger::

        from query_middleware.observability.logging import get_logger

        logger = get_logger(__name__)
        logger.info(
            "query.success",
            query_key="3f2a...",
            attempts=2,
            duration_ms=150,
        )

    Output (JSON)::

        {
            "event": "query.success",
            "query_key": "3f2a...",
            "attempts": 2,
            "duration_ms": 150,
            "timestamp": "2024-01-01T00:00:00.000000Z",
            "level": "info"
        }
"""
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the application.

    Call once at startup, before the first request is declared.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format
        stream: Output stream, stdout by default

    Examples:
        >>> configure_logging(level="DEBUG", json_output=True)
        >>> configure_logging(level="INFO", json_output=False)
    """
    stream = stream or sys.stdout
    log_level = getattr(logging, level.upper())

    logging.basicConfig(format="%(message)s", stream=stream, level=log_level)

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        A structlog logger instance

    Examples:
        >>> logger = get_logger(__name__)
        >>> logger.info("query.deduplicated", query_key="users")
    """
    return structlog.get_logger(name)


@contextmanager
def query_context(**values: Any) -> Iterator[None]:
    """Bind values to every log event emitted inside the block.

    The binding lives in a context variable, so it is private to the asyncio
    task that entered the block.

    Examples:
        >>> with query_context(query_key="users", url="/api/users"):
        ...     logger.info("query.start")
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield

