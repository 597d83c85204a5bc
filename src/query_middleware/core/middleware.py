"""Store middleware orchestrating fetches, mutations and cancellation.

This module provides QueryMiddleware, the entry point of the package. It owns
one in-flight registry and wires the fetch, mutation and cancellation
controllers to a transport and a store.

The middleware can be used two ways:

1. Installed in front of a store's reducer: every dispatched action goes
   through handle(), which consumes fetch and mutate intents, aborts
   requests on cancel and reset, and forwards everything else.
2. Called directly through fetch(), mutate(), cancel() and reset().

Examples:
    Installed in a MemoryStore::

        from query_middleware.core.middleware import QueryMiddleware
        from query_middleware.models import RequestAsync
        from query_middleware.store.memory import MemoryStore
        from query_middleware.transport.http import HttpxTransport

        store = MemoryStore()
        middleware = QueryMiddleware(HttpxTransport(client), store)
        store.use(middleware.handle)

        task = store.dispatch(RequestAsync(url="/api/users/1", update=update))
        result = await task

    Called directly::

        task = middleware.fetch(url="/api/users/1", update=update)
        if task is not None:
            result = await task
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from query_middleware.config import QueryMiddlewareConfig
from query_middleware.core.cancellation import CancellationController
from query_middleware.core.mutation import MutationController
from query_middleware.core.query import QueryController
from query_middleware.core.registry import InFlightRegistry
from query_middleware.models import (
    ActionResult,
    ActionType,
    CancelQuery,
    MutateAsync,
    RequestAsync,
    Reset,
)
from query_middleware.observability.logging import get_logger
from query_middleware.store.base import (
    EntitiesSelector,
    QueriesSelector,
    Store,
    select_entities,
    select_queries,
)
from query_middleware.transport.base import Transport

logger = get_logger(__name__)

Next = Callable[[Any], Any]


class QueryMiddleware:
    """Request and mutation orchestration for one store.

    Attributes:
        transport: Creates network handles.
        store: Source of query records and entities, sink of lifecycle events.
        config: Middleware configuration.
        registry: In-flight handles of this middleware instance.
    """

    def __init__(
        self,
        transport: Transport,
        store: Store,
        config: QueryMiddlewareConfig | None = None,
        queries_selector: QueriesSelector = select_queries,
        entities_selector: EntitiesSelector = select_entities,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the middleware.

        Args:
            transport: Transport issuing network calls
            store: Store holding query records and entities
            config: Configuration object, defaults to QueryMiddlewareConfig()
            queries_selector: Returns the query records from store state
            entities_selector: Returns the entity snapshot from store state
            sleep: Coroutine function waiting between retries, in seconds
        """
        self.transport = transport
        self.store = store
        self.config = config or QueryMiddlewareConfig()
        self.registry = InFlightRegistry()

        self.queries = QueryController(
            transport,
            store,
            self.registry,
            self.config,
            queries_selector=queries_selector,
            entities_selector=entities_selector,
            sleep=sleep,
        )
        self.mutations = MutationController(
            transport,
            store,
            self.registry,
            self.config,
            queries_selector=queries_selector,
            entities_selector=entities_selector,
        )
        self.cancellation = CancellationController(
            store,
            self.registry,
            queries_selector=queries_selector,
        )

    def handle(self, action: Any, next_: Next) -> Any:
        """Process one dispatched action.

        Args:
            action: Caller intent, lifecycle event or any other action
            next_: Hands the action on to the rest of the dispatch chain

        Returns:
            - fetch: task resolving to the ActionResult, or None if deduplicated
            - mutate: task resolving to the ActionResult
            - cancel: the result of next_ if the key was pending, else None
            - reset and anything else: the result of next_

        Raises:
            InvalidActionError: If a fetch or mutate lacks a url, or a cancel
                lacks a query key
        """
        action_type = getattr(action, "type", None)

        if action_type == ActionType.REQUEST_ASYNC:
            return self.queries.fetch(action)

        if action_type == ActionType.MUTATE_ASYNC:
            return self.mutations.mutate(action)

        if action_type == ActionType.CANCEL_QUERY:
            if self.cancellation.cancel_one(action.query_key):
                return next_(action)
            return None

        if action_type == ActionType.RESET:
            self.cancellation.cancel_all_pending()
            logger.info("reset")
            return next_(action)

        return next_(action)

    def fetch(self, url: str | None = None, **fields: Any) -> asyncio.Task[ActionResult] | None:
        """Declare a fetch; see RequestAsync for the accepted fields."""
        return self.queries.fetch(RequestAsync(url=url, **fields))

    def mutate(self, url: str | None = None, **fields: Any) -> asyncio.Task[ActionResult]:
        """Declare a mutation; see MutateAsync for the accepted fields."""
        return self.mutations.mutate(MutateAsync(url=url, **fields))

    def cancel(self, query_key: str | None) -> bool:
        """Cancel the pending request for a key and announce it to the store.

        Returns:
            True if the key was pending, False (with a warning) otherwise.
        """
        if not self.cancellation.cancel_one(query_key):
            return False
        self.store.dispatch(CancelQuery(query_key=query_key))
        return True

    def reset(self) -> list[str]:
        """Cancel every pending request and announce a reset to the store.

        Returns:
            The keys that were pending.
        """
        cancelled = self.cancellation.cancel_all_pending()
        self.store.dispatch(Reset())
        return cancelled
