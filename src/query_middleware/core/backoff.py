"""Retry policy for fetches, built on tenacity.

A fetch is retried while its last attempt reported one of the configured
retryable statuses and fewer than ``max_attempts`` attempts were made. The
wait between attempts grows exponentially from ``min_duration_ms``, is spread
by up to ``jitter`` times itself in either direction, and is clamped to
``[min_duration_ms, max_duration_ms]``.

Every fetch builds its own AsyncRetrying controller, so retry state is never
shared between keys or between separate caller-issued retries.

Examples:
    >>> config = QueryMiddlewareConfig()
    >>> is_retryable_status(503, config)
    True
    >>> is_retryable_status(500, config)
    False
"""

from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from query_middleware.config import BackoffConfig, QueryMiddlewareConfig
from query_middleware.models import TransportResponse


class wait_jittered_exponential(wait_base):
    """Exponential wait with symmetric relative jitter, clamped to a window.

    Attributes:
        min: Lower bound, and base, of the wait in seconds.
        max: Upper bound of the wait in seconds.
        jitter: Maximum relative deviation, between 0 and 1.
    """

    def __init__(self, min: float, max: float, jitter: float = 0.0, exp_base: float = 2) -> None:
        self.min = min
        self.max = max
        self.jitter = jitter
        self._exponential = wait_exponential(multiplier=min, min=min, max=max, exp_base=exp_base)
        self._spread = wait_random(min=1 - jitter, max=1 + jitter)

    # TODO: honour Retry-After on 429/503 responses instead of the computed delay
    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._exponential(retry_state)
        if self.jitter:
            delay *= self._spread(retry_state)
        return min(max(delay, self.min), self.max)

    @classmethod
    def from_config(cls, config: BackoffConfig) -> "wait_jittered_exponential":
        return cls(
            min=config.min_duration_ms / 1000,
            max=config.max_duration_ms / 1000,
            jitter=config.jitter,
        )


def is_retryable_status(status: int | None, config: QueryMiddlewareConfig) -> bool:
    return status in config.retryable_status_codes


def build_retrying(
    config: QueryMiddlewareConfig,
    sleep: Callable[[float], Awaitable[Any]],
    before_sleep: Callable[[RetryCallState], Any] | None = None,
) -> AsyncRetrying:
    """Build the retry controller for one fetch.

    The attempt function returns a TransportResponse, or None when the fetch
    was aborted; None is never retried. When attempts run out the last
    response is returned instead of raising RetryError, and exceptions from
    the attempt function propagate unchanged.

    Args:
        config: Middleware configuration
        sleep: Coroutine function waiting between attempts, in seconds
        before_sleep: Called with the retry state before each wait

    Returns:
        An AsyncRetrying instance to call with the attempt function
    """

    def retryable(response: TransportResponse | None) -> bool:
        return response is not None and is_retryable_status(response.status, config)

    def last_response(retry_state: RetryCallState) -> Any:
        return retry_state.outcome.result() if retry_state.outcome else None

    return AsyncRetrying(
        stop=stop_after_attempt(config.backoff.max_attempts),
        wait=wait_jittered_exponential.from_config(config.backoff),
        retry=retry_if_result(retryable),
        sleep=sleep,
        before_sleep=before_sleep,
        retry_error_callback=last_response,
    )
