"""
Pytest configuration and shared fixtures for query_middleware tests.
"""

import asyncio
from typing import Any

import pytest

from query_middleware.config import BackoffConfig, QueryMiddlewareConfig
from query_middleware.core.middleware import QueryMiddleware
from query_middleware.models import TransportResponse
from query_middleware.store.memory import MemoryStore


class ScriptedHandle:
    """Network handle returning a canned response, optionally held back by a gate."""

    def __init__(self, response: TransportResponse, gate: asyncio.Event | None, honor_abort: bool) -> None:
        self.response = response
        self.aborted = False
        self.abort_calls = 0
        self.executed = False
        self._gate = gate
        self._honor_abort = honor_abort
        self._waiter: asyncio.Future[Any] | None = None

    async def execute(self) -> TransportResponse:
        self.executed = True
        if self.aborted and self._honor_abort:
            raise asyncio.CancelledError()
        if self._gate is not None:
            self._waiter = asyncio.ensure_future(self._gate.wait())
            if self._honor_abort:
                await self._waiter
            else:
                await asyncio.shield(self._waiter)
        return self.response

    def abort(self) -> None:
        self.aborted = True
        self.abort_calls += 1
        if self._honor_abort and self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()


class ScriptedTransport:
    """Transport replaying a list of responses, repeating the last one when exhausted.

    Attributes:
        calls: One entry per handle created, with the request arguments.
        handles: Every handle created, in order.
        gate: If set, every handle waits for it before completing.
    """

    def __init__(
        self,
        responses: list[TransportResponse] | None = None,
        gate: asyncio.Event | None = None,
        honor_abort: bool = True,
    ) -> None:
        self.responses = list(responses or [TransportResponse(status=200, body={})])
        self.gate = gate
        self.honor_abort = honor_abort
        self.calls: list[dict[str, Any]] = []
        self.handles: list[ScriptedHandle] = []

    def __call__(
        self,
        url: str,
        method: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        credentials: Any = None,
    ) -> ScriptedHandle:
        self.calls.append(
            {"url": url, "method": method, "body": body, "headers": headers, "credentials": credentials}
        )
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        handle = ScriptedHandle(response, self.gate, self.honor_abort)
        self.handles.append(handle)
        return handle


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays and only yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def make_transport():
    """Factory for scripted transports."""
    return ScriptedTransport


@pytest.fixture
def store() -> MemoryStore:
    """Create a fresh in-memory store for each test."""
    return MemoryStore()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config() -> QueryMiddlewareConfig:
    """Config with short backoff delays."""
    return QueryMiddlewareConfig(
        backoff=BackoffConfig(min_duration_ms=10, max_duration_ms=80, max_attempts=5, jitter=0),
    )


@pytest.fixture
def make_middleware(store: MemoryStore, config: QueryMiddlewareConfig, sleep: SleepRecorder):
    """Build a middleware over a transport and install it in the store."""

    def _make(transport: ScriptedTransport, **overrides: Any) -> QueryMiddleware:
        middleware = QueryMiddleware(
            transport,
            overrides.pop("store", store),
            config=overrides.pop("config", config),
            sleep=overrides.pop("sleep", sleep),
            **overrides,
        )
        middleware.store.use(middleware.handle)
        return middleware

    return _make


@pytest.fixture
def users_update():
    """Update descriptor merging a users mapping into the users entity type."""
    return {"users": lambda prev, users: {**(prev or {}), **(users or {})}}
