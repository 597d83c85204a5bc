"""Fetch lifecycle: deduplication decision, retry loop and reconciliation.

This module implements the state machine behind a fetch intent:

    Idle -> Deciding -> NoOp
                     -> Attempting -> Retrying* -> Succeeded | Failed

Deciding and the first attempt happen synchronously inside fetch(), before
control returns to the event loop, so the pending record they announce is
visible to the very next fetch for the same key. The remaining lifecycle runs
in an asyncio task that resolves exactly once with an ActionResult.

Examples:
    Fetching through the controller::

        controller = QueryController(transport, store, registry, config)
        task = controller.fetch(RequestAsync(url="/api/users", update=update))
        if task is None:
            # Deduplicated: the key is pending or already succeeded
            ...
        else:
            result = await task
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import RetryCallState

from query_middleware.config import QueryMiddlewareConfig
from query_middleware.core.backoff import build_retrying
from query_middleware.core.reconciler import update_entities
from query_middleware.core.registry import InFlightRegistry
from query_middleware.exceptions import InvalidActionError
from query_middleware.models import (
    UNKNOWN_STATUS,
    ActionResult,
    CancelQuery,
    QueryRecord,
    RequestAsync,
    RequestFailure,
    RequestStart,
    RequestSuccess,
    TransportResponse,
    is_status_ok,
)
from query_middleware.observability.logging import get_logger, query_context
from query_middleware.observability.metrics import record_attempt, record_outcome, record_retry
from query_middleware.store.base import (
    EntitiesSelector,
    QueriesSelector,
    Store,
    select_entities,
    select_queries,
)
from query_middleware.transport.base import NetworkHandle, Transport

logger = get_logger(__name__)


def default_transform(body: Any, text: str | None = None) -> Any:
    return body or {}


def should_fetch(record: QueryRecord | None, force: bool, retry: bool) -> bool:
    """Decide whether a fetch must reach the transport.

    A fetch proceeds when it is forced, when the key has never been
    requested, or when a retry is asked for a key that is neither pending nor
    succeeded. Everything else is deduplicated.

    Examples:
        >>> should_fetch(None, force=False, retry=False)
        True
        >>> should_fetch(QueryRecord(query_key="k", status=500), force=False, retry=True)
        True
        >>> should_fetch(QueryRecord(query_key="k", is_pending=True), force=False, retry=True)
        False
    """
    if force or record is None:
        return True
    return retry and not record.is_pending and not is_status_ok(record.status)


def elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


class _Fetch:
    """Handle of the current attempt and the number of attempts made."""

    def __init__(self, handle: NetworkHandle) -> None:
        self.handle = handle
        self.attempts = 0


class QueryController:
    """Orchestrates fetch intents.

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
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.store = store
        self.registry = registry
        self.config = config
        self._queries_selector = queries_selector
        self._entities_selector = entities_selector
        self._sleep = sleep
        self._tasks: set[asyncio.Task[ActionResult]] = set()

    def fetch(self, action: RequestAsync) -> asyncio.Task[ActionResult] | None:
        """Declare a fetch.

        Args:
            action: The fetch intent.

        Returns:
            A task resolving to the terminal ActionResult, or None when the
            fetch was deduplicated.

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
        query_key = self.config.key_resolver(url, action.body, action.query_key)
        record = self._queries_selector(self.store.get_state()).get(query_key)

        if not should_fetch(record, action.force, action.retry):
            logger.debug(
                "query.deduplicated",
                query_key=query_key,
                url=url,
                is_pending=record.is_pending if record else None,
                status=record.status if record else None,
            )
            return None

        started = time.monotonic()
        fetch = _Fetch(self._attempt(action, url, query_key, attempt=1))

        task = loop.create_task(self._run(action, url, query_key, fetch, started))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _attempt(self, action: RequestAsync, url: str, query_key: str, attempt: int) -> NetworkHandle:
        method = (action.options.method or "GET").upper()
        handle = self.transport(
            url,
            method,
            body=action.body,
            headers=dict(action.options.headers),
            credentials=action.options.credentials,
        )
        self.registry.register(query_key, handle)
        self.store.dispatch(
            RequestStart(
                url=url,
                body=action.body,
                meta=action.meta,
                query_key=query_key,
                attempt=attempt,
            )
        )
        record_attempt("query")
        logger.info("query.start", query_key=query_key, url=url, method=method, attempt=attempt)
        return handle

    async def _execute(
        self, action: RequestAsync, url: str, query_key: str, fetch: _Fetch
    ) -> TransportResponse | None:
        """Run one attempt; None means the fetch was aborted."""
        if fetch.attempts:
            # Cancelled while waiting to retry
            if fetch.handle.aborted:
                return None
            self.registry.clear(query_key, fetch.handle)
            fetch.handle = self._attempt(action, url, query_key, attempt=fetch.attempts + 1)

        fetch.attempts += 1
        try:
            response = await fetch.handle.execute()
        except asyncio.CancelledError:
            if not fetch.handle.aborted:
                raise
            return None

        return None if fetch.handle.aborted else response

    async def _run(
        self,
        action: RequestAsync,
        url: str,
        query_key: str,
        fetch: _Fetch,
        started: float,
    ) -> ActionResult:
        with query_context(query_key=query_key, url=url):
            retrying = build_retrying(self.config, sleep=self._sleep, before_sleep=self._before_retry)
            try:
                response = await retrying(self._execute, action, url, query_key, fetch)
            except asyncio.CancelledError:
                self._cancelled_by_caller(query_key, fetch)
                raise
            finally:
                self.registry.clear(query_key, fetch.handle)

            if response is None:
                return self._aborted(started)
            return self._finish(action, url, query_key, response, fetch.attempts, elapsed_ms(started))

    def _before_retry(self, retry_state: RetryCallState) -> None:
        response = retry_state.outcome.result() if retry_state.outcome else None
        status = response.status if response is not None else UNKNOWN_STATUS
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        record_retry(status)
        logger.info(
            "query.retry",
            status=status,
            attempt=retry_state.attempt_number,
            delay_ms=int(delay * 1000),
        )

    def _cancelled_by_caller(self, query_key: str, fetch: _Fetch) -> None:
        """Release the key of a fetch whose task was cancelled from outside."""
        fetch.handle.abort()
        # A forced fetch may have taken the key over meanwhile
        if self.registry.clear(query_key, fetch.handle):
            self.store.dispatch(CancelQuery(query_key=query_key))
        logger.info("query.cancelled", attempts=fetch.attempts)

    def _finish(
        self,
        action: RequestAsync,
        url: str,
        query_key: str,
        response: TransportResponse,
        attempts: int,
        duration_ms: int,
    ) -> ActionResult:
        if action.pre_dispatch_callback is not None:
            action.pre_dispatch_callback()

        if not response.ok:
            self.store.dispatch(
                RequestFailure(
                    url=url,
                    body=action.body,
                    meta=action.meta,
                    query_key=query_key,
                    status=response.status,
                    duration_ms=duration_ms,
                    response_body=response.body,
                    response_text=response.text,
                    response_headers=response.headers,
                    attempts=attempts,
                )
            )
            record_outcome("query", "failure", duration_ms)
            logger.warning(
                "query.failure",
                status=response.status,
                attempts=attempts,
                duration_ms=duration_ms,
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

        entities = self._entities_selector(self.store.get_state())
        transform = action.transform or default_transform
        transformed = transform(response.body, response.text)
        new_entities = update_entities(action.update, entities, transformed)

        self.store.dispatch(
            RequestSuccess(
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
                attempts=attempts,
            )
        )
        record_outcome("query", "success", duration_ms)
        logger.info("query.success", status=response.status, attempts=attempts, duration_ms=duration_ms)
        return ActionResult(
            status=response.status,
            body=response.body,
            text=response.text,
            headers=response.headers,
            duration_ms=duration_ms,
            transformed=transformed,
            entities=new_entities,
        )

    def _aborted(self, started: float) -> ActionResult:
        duration_ms = elapsed_ms(started)
        record_outcome("query", "aborted", duration_ms)
        logger.info("query.aborted", duration_ms=duration_ms)
        return ActionResult(status=UNKNOWN_STATUS, duration_ms=duration_ms, aborted=True)
