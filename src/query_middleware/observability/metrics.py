"""Prometheus metrics for the query middleware.

This module provides Prometheus metrics to monitor request orchestration.
Metrics include:

- Terminal outcome counters by kind (query, mutation) and outcome
- Transport attempt and retry counters
- End-to-end duration histograms
- In-flight handles gauge
- Cancellation counter

Examples:
    Recording a terminal fetch outcome::

        from query_middleware.observability.metrics import record_outcome

        record_outcome(kind="query", outcome="success", duration_ms=150)

    Recording a retry::

        from query_middleware.observability.metrics import record_retry

        record_retry(status=503)
"""

from prometheus_client import Counter, Gauge, Histogram

# Terminal outcomes
# Labels: kind (query, mutation), outcome (success, failure, aborted)
requests_total = Counter(
    "query_middleware_requests_total",
    "Total number of fetches and mutations that reached a terminal outcome",
    ["kind", "outcome"],
)

# Transport attempts, retries included
attempts_total = Counter(
    "query_middleware_attempts_total",
    "Total number of transport attempts issued",
    ["kind"],
)

# Retries scheduled after a retryable status
retries_total = Counter(
    "query_middleware_retries_total",
    "Total number of fetch retries scheduled",
    ["status"],
)

# Cancelled in-flight requests
cancellations_total = Counter(
    "query_middleware_cancellations_total",
    "Total number of in-flight requests cancelled",
)

# End-to-end duration, retries included
duration_seconds = Histogram(
    "query_middleware_duration_seconds",
    "End-to-end duration of fetches and mutations in seconds",
    ["kind"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

# Handles currently held by in-flight registries
in_flight = Gauge(
    "query_middleware_in_flight",
    "Number of network handles currently registered as in flight",
)


def record_outcome(kind: str, outcome: str, duration_ms: int | None = None) -> None:
    """Record a fetch or mutation reaching a terminal outcome.

    Args:
        kind: "query" or "mutation"
        outcome: "success", "failure" or "aborted"
        duration_ms: End-to-end duration in milliseconds, if known

    Examples:
        >>> record_outcome("query", "success", 150)
        >>> record_outcome("mutation", "aborted")
    """
    requests_total.labels(kind=kind, outcome=outcome).inc()
    if duration_ms is not None:
        duration_seconds.labels(kind=kind).observe(duration_ms / 1000.0)


def record_attempt(kind: str) -> None:
    attempts_total.labels(kind=kind).inc()


def record_retry(status: int) -> None:
    retries_total.labels(status=str(status)).inc()


def record_cancellation() -> None:
    cancellations_total.inc()


def increment_in_flight() -> None:
    """Increment the in-flight gauge.

    Called when a registry slot goes from empty to holding a handle.

    Examples:
        >>> increment_in_flight()
    """
    in_flight.inc()


def decrement_in_flight() -> None:
    """Decrement the in-flight gauge.

    Called when a registry slot is cleared.

    Examples:
        >>> decrement_in_flight()
    """
    in_flight.dec()
