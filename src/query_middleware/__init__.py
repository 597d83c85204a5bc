"""
Request orchestration for normalized client-side state stores.

This package decides whether a request must be issued, retries transient
failures with backoff, tracks in-flight requests for cancellation, and merges
responses into an entity snapshot with optimistic updates and rollback.
"""

from query_middleware.config import BackoffConfig, QueryMiddlewareConfig
from query_middleware.core.middleware import QueryMiddleware
from query_middleware.exceptions import InvalidActionError, QueryMiddlewareError, TransportError
from query_middleware.models import (
    ActionResult,
    CancelQuery,
    MutateAsync,
    RequestAsync,
    RequestOptions,
    Reset,
)
from query_middleware.query_key import resolve_query_key

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ActionResult",
    "BackoffConfig",
    "CancelQuery",
    "InvalidActionError",
    "MutateAsync",
    "QueryMiddleware",
    "QueryMiddlewareConfig",
    "QueryMiddlewareError",
    "RequestAsync",
    "RequestOptions",
    "Reset",
    "TransportError",
    "resolve_query_key",
]
