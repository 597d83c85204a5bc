"""Scenario 4: Cancellation and Reset Conformance Tests

This module tests cancelling in-flight requests:
- Cancelling a pending key aborts its handle and marks it idle
- Cancelling a key that is not pending only logs a warning
- An aborted fetch resolves as aborted and emits no terminal event
- A cancel during backoff prevents further attempts
- Cancelling the fetch task itself releases its key
- An aborted optimistic mutation is rolled back
- Reset aborts every pending request and clears query state, even when an
  aborted optimistic mutation finishes afterwards
- A late completion of an aborted handle is ignored
"""

import asyncio

import pytest
from structlog.testing import capture_logs

from query_middleware.exceptions import InvalidActionError
from query_middleware.models import (
    ActionType,
    CancelQuery,
    MutateAsync,
    RequestAsync,
    Reset,
    TransportResponse,
)
from query_middleware.store.base import select_entities, select_queries
from query_middleware.store.memory import MemoryStore

OK = TransportResponse(status=200, body={"users": {"1": {"id": "1"}}})


def terminal_events(store: MemoryStore) -> list:
    return store.events_of(
        ActionType.REQUEST_SUCCESS,
        ActionType.REQUEST_FAILURE,
        ActionType.MUTATE_SUCCESS,
        ActionType.MUTATE_FAILURE,
    )


class TestCancelQuery:
    """Tests for cancelling one key."""

    @pytest.mark.asyncio
    async def test_cancel_pending_fetch(self, store, make_transport, make_middleware) -> None:
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        middleware = make_middleware(transport)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        assert store.dispatch(CancelQuery(query_key="users")) is not None

        result = await task

        assert result.aborted is True
        assert not result.ok
        assert transport.handles[0].abort_calls == 1
        assert middleware.registry.get("users") is None
        assert select_queries(store.get_state())["users"].is_pending is False
        assert terminal_events(store) == []

    @pytest.mark.asyncio
    async def test_cancel_not_in_flight_warns(self, store, make_transport, make_middleware) -> None:
        make_middleware(make_transport([OK]))
        await store.dispatch(RequestAsync(url="/api/users", query_key="users"))

        with capture_logs() as logs:
            result = store.dispatch(CancelQuery(query_key="users"))

        assert result is None
        assert store.events_of(ActionType.CANCEL_QUERY) == []
        warnings = [entry for entry in logs if entry["log_level"] == "warning"]
        assert [entry["event"] for entry in warnings] == ["cancel.not_in_flight"]

    @pytest.mark.asyncio
    async def test_cancel_unknown_key(self, store, make_transport, make_middleware) -> None:
        middleware = make_middleware(make_transport([OK]))

        with capture_logs() as logs:
            assert middleware.cancel("never-requested") is False

        assert any(entry["event"] == "cancel.not_in_flight" for entry in logs)

    @pytest.mark.asyncio
    async def test_cancel_then_refetch(self, store, make_transport, make_middleware) -> None:
        """Test that a cancelled key is fetched again by a plain fetch with retry."""
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        middleware = make_middleware(transport)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        assert middleware.cancel("users") is True
        await task

        again = store.dispatch(RequestAsync(url="/api/users", query_key="users", retry=True))
        assert again is not None
        gate.set()
        assert (await again).ok
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_late_completion_ignored(self, store, make_transport, make_middleware) -> None:
        """Test that a handle finishing after abort does not announce an outcome."""
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate, honor_abort=False)
        make_middleware(transport)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        store.dispatch(CancelQuery(query_key="users"))
        gate.set()
        result = await task

        assert result.aborted is True
        assert terminal_events(store) == []
        assert select_entities(store.get_state()) == {}

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, store, make_transport, make_middleware) -> None:
        """Test that no attempt starts after a cancel issued while waiting to retry."""
        waiting = asyncio.Event()
        resume = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            waiting.set()
            await resume.wait()

        transport = make_transport([TransportResponse(status=503), OK])
        middleware = make_middleware(transport, sleep=blocking_sleep)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        await waiting.wait()
        assert middleware.cancel("users") is True
        resume.set()
        result = await task

        assert result.aborted is True
        assert len(transport.calls) == 1
        assert terminal_events(store) == []

    @pytest.mark.asyncio
    async def test_task_cancelled_during_backoff_releases_key(
        self, store, make_transport, make_middleware
    ) -> None:
        """Test that cancelling the fetch task itself leaves the key fetchable."""
        waiting = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            waiting.set()
            await asyncio.Event().wait()

        transport = make_transport([TransportResponse(status=503), OK])
        middleware = make_middleware(transport, sleep=blocking_sleep)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        await waiting.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert middleware.registry.get("users") is None
        assert select_queries(store.get_state())["users"].is_pending is False
        assert terminal_events(store) == []

        again = store.dispatch(RequestAsync(url="/api/users", query_key="users", retry=True))
        assert again is not None
        assert (await again).ok

    @pytest.mark.asyncio
    async def test_cancel_mutation_rolls_back(self, make_transport, make_middleware) -> None:
        store = MemoryStore(entities={"users": {"1": {"name": "Ada"}}})
        gate = asyncio.Event()
        make_middleware(make_transport([OK], gate=gate), store=store)

        task = store.dispatch(
            MutateAsync(
                url="/api/users/1",
                query_key="rename",
                optimistic_update={"users": lambda users: {**users, "1": {"name": "Grace"}}},
            )
        )
        assert select_entities(store.get_state())["users"]["1"] == {"name": "Grace"}

        store.dispatch(CancelQuery(query_key="rename"))
        result = await task

        assert result.aborted is True
        assert select_entities(store.get_state())["users"]["1"] == {"name": "Ada"}
        (failure,) = store.events_of(ActionType.MUTATE_FAILURE)
        assert failure.status == 0

    @pytest.mark.asyncio
    async def test_cancel_without_key_raises(self, store, make_transport, make_middleware) -> None:
        make_middleware(make_transport([OK]))

        with pytest.raises(InvalidActionError):
            store.dispatch(CancelQuery())


class TestReset:
    """Tests for reset."""

    @pytest.mark.asyncio
    async def test_reset_aborts_all_pending(self, store, make_transport, make_middleware) -> None:
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        middleware = make_middleware(transport)

        tasks = [
            store.dispatch(RequestAsync(url="/api/users", query_key="users")),
            store.dispatch(RequestAsync(url="/api/posts", query_key="posts")),
        ]
        cancelled = middleware.reset()
        results = await asyncio.gather(*tasks)

        assert sorted(cancelled) == ["posts", "users"]
        assert all(result.aborted for result in results)
        assert all(handle.abort_calls == 1 for handle in transport.handles)
        assert len(middleware.registry) == 0
        assert select_queries(store.get_state()) == {}

    @pytest.mark.asyncio
    async def test_reset_dispatched_through_store(self, store, make_transport, make_middleware) -> None:
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        make_middleware(transport)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        store.dispatch(Reset())
        result = await task

        assert result.aborted is True
        assert store.events_of(ActionType.RESET) != []
        assert store.get_state() == {"queries": {}, "entities": {}}

    @pytest.mark.asyncio
    async def test_reset_during_optimistic_mutation(self, make_transport, make_middleware) -> None:
        """Test that an aborted mutation does not bring back state a reset cleared."""
        store = MemoryStore(entities={"users": {"1": {"name": "Ada"}}})
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        make_middleware(transport, store=store)

        task = store.dispatch(
            MutateAsync(
                url="/api/users/1",
                query_key="rename",
                optimistic_update={"users": lambda users: {**users, "1": {"name": "Grace"}}},
            )
        )
        store.dispatch(Reset())
        result = await task

        assert result.aborted is True
        assert store.get_state() == {"queries": {}, "entities": {}}
        assert store.events_of(ActionType.MUTATE_FAILURE) == []

        gate.set()
        refetch = store.dispatch(RequestAsync(url="/api/rename", query_key="rename"))
        assert refetch is not None
        await refetch
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_reset_twice_is_harmless(self, store, make_transport, make_middleware) -> None:
        gate = asyncio.Event()
        transport = make_transport([OK], gate=gate)
        middleware = make_middleware(transport)

        task = store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        assert middleware.reset() == ["users"]
        assert middleware.reset() == []
        await task

        assert transport.handles[0].abort_calls == 1

    @pytest.mark.asyncio
    async def test_reset_allows_refetch(self, store, make_transport, make_middleware) -> None:
        transport = make_transport([OK])
        middleware = make_middleware(transport)

        await store.dispatch(RequestAsync(url="/api/users", query_key="users"))
        middleware.reset()
        again = store.dispatch(RequestAsync(url="/api/users", query_key="users"))

        assert again is not None
        await again
        assert len(transport.calls) == 2
