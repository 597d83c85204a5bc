"""Observability utilities for the query middleware.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for request outcomes, retries and in-flight handles
- Structured logging with contextual information

These tools help operators understand how requests are deduplicated,
retried and cancelled in production.
"""

from query_middleware.observability.logging import configure_logging, get_logger, query_context
from query_middleware.observability.metrics import (
    decrement_in_flight,
    increment_in_flight,
    record_attempt,
    record_cancellation,
    record_outcome,
    record_retry,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "query_context",
    "record_attempt",
    "record_cancellation",
    "record_outcome",
    "record_retry",
    "increment_in_flight",
    "decrement_in_flight",
]
