"""Mutation lifecycle: optimistic apply, single attempt, merge or rollback.

A mutation is never deduplicated and never retried: every declaration makes
exactly one transport attempt. The sequence is:

1. Snapshot the current entities
2. Apply the optimistic update, if any, and announce mutate-start with the
   touched entity types only
3. Run the transport call
4. Re-read the entities, which may have changed meanwhile
5. On failure, revert the touched types from their pre-mutation values and
   announce mutate-failure; on success, merge the transformed response into
   the current entities and announce mutate-success

The caller-visible task always resolves, never raises, for transport outcomes.
"""

import asyncio
import time
from collections.abc import Mapping
from typing import Any

from query_middleware.config import QueryMiddlewareConfig
from query_middleware.core.query import default_transform, elapsed_ms
from query_middleware.core.reconciler import (
    optimistic_update_entities,
    pick_entities,
    rollback_entities,
    touched_entity_types,
    update_entities,
)
from query_middleware.core.registry import InFlightRegistry
from query_middleware.exceptions import InvalidActionError
from query_middleware.models import (
    UNKNOWN_STATUS,
    ActionResult,
    MutateAsync,
    MutateFailure,
    MutateStart,
    MutateSuccess,
    TransportResponse,
)
from query_middleware.observability.logging import get_logger, query_context
from query_middleware.observability.metrics import record_attempt, record_outcome
from query_middleware.store.base import (
    EntitiesSelector,
    QueriesSelector,
    Store,
    select_entities,
    select_queries,
)
from query_middleware.transport.base import NetworkHandle, Transport

logger = get_logger(__name__)


class _Speculation:
    """Entity types touched by an optimistic update, before and after it."""

    def __init__(self, touched: list[str], initial: dict[str, Any], optimistic: dict[str, Any]) -> None:
        self.touched = touched
        self.initial = initial
        self.optimistic = optimistic


class MutationController:
    """Orchestrates mutate intents.

    Attributes:
        transport: Creates network handles.
        store: Source of query records and entities, sink of lifecycle events.
        registry: In-flight handles, shared with the other controllers.
        config: Middleware configuration.
    """

    def __init__(
        self,
        transport: Transport,
        store: Store,
        registry: InFlightRegistry,
        config: QueryMiddlewareConfig,
        queries_selector: QueriesSelector = select_queries,
        entities_selector: EntitiesSelector = select_entities,
    ) -> None:
        self.transport = transport
        self.store = store
        self.registry = registry
        self.config = config
        self._queries_selector = queries_selector
        self._entities_selector = entities_selector
        self._tasks: set[asyncio.Task[ActionResult]] = set()

    def mutate(self, action: MutateAsync) -> asyncio.Task[ActionResult]:
        """Declare a mutation.

        Args:
            action: The mutate intent.

        Returns:
            A task resolving to the ActionResult of the single attempt.

        Raises:
            InvalidActionError: If the action has no url.
            RuntimeError: If called without a running event loop.
        """
        url = action.url
        if not url:
            raise InvalidActionError(
                message="Missing required `url` field in action handler",
                field="url",
            )

        loop = asyncio.get_running_loop()
        initial_entities = self._entities_selector(self.store.get_state())

        speculation = None
        if action.optimistic_update:
            touched = touched_entity_types(action.optimistic_update)
            optimistic = optimistic_update_entities(action.optimistic_update, initial_entities)
            speculation = _Speculation(
                touched=touched,
                initial=pick_entities(initial_entities, touched),
                optimistic=pick_entities(optimistic, touched),
            )

        query_key = self.config.key_resolver(url, action.body, action.query_key)
        method = (action.options.method or "POST").upper()

        started = time.monotonic()
        handle = self.transport(
            url,
            method,
            body=action.body,
            headers=dict(action.options.headers),
            credentials=action.options.credentials,
        )
        self.registry.register(query_key, handle)

        self.store.dispatch(
            MutateStart(
                url=url,
                body=action.body,
                meta=action.meta,
                query_key=query_key,
                optimistic_entities=speculation.optimistic if speculation else None,
            )
        )
        record_attempt("mutation")
        logger.info(
            "mutation.start",
            query_key=query_key,
            url=url,
            method=method,
            optimistic_types=speculation.touched if speculation else [],
        )

        task = loop.create_task(self._run(action, url, query_key, handle, speculation, started))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        action: MutateAsync,
        url: str,
        query_key: str,
        handle: NetworkHandle,
        speculation: _Speculation | None,
        started: float,
    ) -> ActionResult:
        with query_context(query_key=query_key, url=url):
            try:
                response = await handle.execute()
            except asyncio.CancelledError:
                if not handle.aborted:
                    self.registry.clear(query_key, handle)
                    raise
                return self._aborted(action, url, query_key, speculation, started)

            if handle.aborted:
                return self._aborted(action, url, query_key, speculation, started)

            self.registry.clear(query_key, handle)
            return self._finish(action, url, query_key, response, speculation, elapsed_ms(started))

    def _finish(
        self,
        action: MutateAsync,
        url: str,
        query_key: str,
        response: TransportResponse,
        speculation: _Speculation | None,
        duration_ms: int,
    ) -> ActionResult:
        entities = self._entities_selector(self.store.get_state())

        if action.pre_dispatch_callback is not None:
            action.pre_dispatch_callback()

        if not response.ok:
            rolled_back = self._rollback(action, entities, speculation)
            self.store.dispatch(
                MutateFailure(
                    url=url,
                    body=action.body,
                    meta=action.meta,
                    query_key=query_key,
                    status=response.status,
                    duration_ms=duration_ms,
                    response_body=response.body,
                    response_text=response.text,
                    response_headers=response.headers,
                    rolled_back_entities=rolled_back,
                )
            )
            record_outcome("mutation", "failure", duration_ms)
            logger.warning(
                "mutation.failure",
                status=response.status,
                duration_ms=duration_ms,
                rolled_back_types=list(rolled_back or {}),
                error=str(response.error) if response.error else None,
            )
            return ActionResult(
                status=response.status,
                body=response.body,
                text=response.text,
                headers=response.headers,
                duration_ms=duration_ms,
                error=response.error,
            )

        transform = action.transform or default_transform
        transformed = transform(response.body, response.text)
        new_entities = update_entities(action.update, entities, transformed)

        self.store.dispatch(
            MutateSuccess(
                url=url,
                body=action.body,
                meta=action.meta,
                query_key=query_key,
                status=response.status,
                duration_ms=duration_ms,
                response_body=response.body,
                response_text=response.text,
                response_headers=response.headers,
                entities=new_entities,
            )
        )
        record_outcome("mutation", "success", duration_ms)
        logger.info("mutation.success", status=response.status, duration_ms=duration_ms)
        return ActionResult(
            status=response.status,
            body=response.body,
            text=response.text,
            headers=response.headers,
            duration_ms=duration_ms,
            transformed=transformed,
            entities=new_entities,
        )

    def _rollback(
        self,
        action: MutateAsync,
        entities: Mapping[str, Any],
        speculation: _Speculation | None,
    ) -> dict[str, Any] | None:
        if speculation is None:
            return None
        return rollback_entities(
            action.rollback,
            speculation.initial,
            pick_entities(entities, speculation.touched),
            speculation.optimistic,
        )

    def _aborted(
        self,
        action: MutateAsync,
        url: str,
        query_key: str,
        speculation: _Speculation | None,
        started: float,
    ) -> ActionResult:
        duration_ms = elapsed_ms(started)

        # Nothing to revert once a reset dropped the record and every entity
        rolled_back = speculation is not None and query_key in self._queries_selector(
            self.store.get_state()
        )
        if rolled_back:
            entities = self._entities_selector(self.store.get_state())
            self.store.dispatch(
                MutateFailure(
                    url=url,
                    body=action.body,
                    meta=action.meta,
                    query_key=query_key,
                    status=UNKNOWN_STATUS,
                    duration_ms=duration_ms,
                    rolled_back_entities=self._rollback(action, entities, speculation),
                )
            )

        record_outcome("mutation", "aborted", duration_ms)
        logger.info("mutation.aborted", duration_ms=duration_ms, rolled_back=rolled_back)
        return ActionResult(status=UNKNOWN_STATUS, duration_ms=duration_ms, aborted=True)
