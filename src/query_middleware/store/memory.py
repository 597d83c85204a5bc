"""In-memory reducer store.

This module provides a Store implementation that keeps query records and the
entity snapshot in a plain dictionary and derives every next state with pure
reducers, one per state slice.

The MemoryStore is suitable for:
    - Scripts and services that do not already own a state container
    - Development and testing

State shape::

    {
        "queries": {query_key: QueryRecord, ...},
        "entities": {entity_type: {entity_id: entity, ...}, ...},
    }

Examples:
    Basic usage::

        from query_middleware.core.middleware import QueryMiddleware
        from query_middleware.store.memory import MemoryStore

        store = MemoryStore()
        middleware = QueryMiddleware(transport, store)
        store.use(middleware.handle)

        result = await store.dispatch(RequestAsync(url="/api/users", update=...))
        store.get_state()["entities"]["users"]
"""

from collections.abc import Callable, Mapping
from typing import Any

from query_middleware.models import ActionType, QueryRecord, utcnow
from query_middleware.observability.logging import get_logger

logger = get_logger(__name__)

Next = Callable[[Any], Any]
Middleware = Callable[[Any, Next], Any]

_START_EVENTS = {ActionType.REQUEST_START, ActionType.MUTATE_START}
_END_EVENTS = {
    ActionType.REQUEST_SUCCESS,
    ActionType.REQUEST_FAILURE,
    ActionType.MUTATE_SUCCESS,
    ActionType.MUTATE_FAILURE,
}
_MUTATION_EVENTS = {ActionType.MUTATE_START, ActionType.MUTATE_SUCCESS, ActionType.MUTATE_FAILURE}


def reduce_queries(queries: Mapping[str, QueryRecord], action: Any) -> dict[str, QueryRecord]:
    """Compute the next query records for an action.

    Args:
        queries: Current query records
        action: Lifecycle event or caller intent

    Returns:
        New query records; unchanged actions return a shallow copy
    """
    action_type = getattr(action, "type", None)
    next_queries = dict(queries)

    if action_type == ActionType.RESET:
        return {}

    query_key = getattr(action, "query_key", None)
    if query_key is None:
        return next_queries

    now = utcnow()
    record = next_queries.get(query_key) or QueryRecord(query_key=query_key)

    if action_type in _START_EVENTS:
        next_queries[query_key] = record.model_copy(
            update={
                "url": action.url,
                "is_pending": True,
                "is_mutation": action_type in _MUTATION_EVENTS,
                "attempts": getattr(action, "attempt", 1),
                "started_at": record.started_at
                if record.is_pending and action_type == ActionType.REQUEST_START
                else now,
                "last_updated": now,
            }
        )
    elif action_type in _END_EVENTS:
        next_queries[query_key] = record.model_copy(
            update={
                "url": action.url,
                "is_pending": False,
                "is_mutation": action_type in _MUTATION_EVENTS,
                "status": action.status,
                "attempts": getattr(action, "attempts", record.attempts),
                "duration_ms": action.duration_ms,
                "last_updated": now,
            }
        )
    elif action_type == ActionType.CANCEL_QUERY and query_key in next_queries:
        next_queries[query_key] = record.model_copy(
            update={"is_pending": False, "last_updated": now}
        )

    return next_queries


def reduce_entities(entities: Mapping[str, Any], action: Any) -> dict[str, Any]:
    """Compute the next entity snapshot for an action.

    Success events carry merged entity types, mutate-start carries the
    optimistic types and mutate-failure the rolled back types. An entity type
    whose new value is None is removed.
    """
    action_type = getattr(action, "type", None)

    if action_type == ActionType.RESET:
        return {}
    if action_type in (ActionType.REQUEST_SUCCESS, ActionType.MUTATE_SUCCESS):
        return _merge(entities, action.entities)
    if action_type == ActionType.MUTATE_START:
        return _merge(entities, action.optimistic_entities)
    if action_type == ActionType.MUTATE_FAILURE:
        return _merge(entities, action.rolled_back_entities)

    return dict(entities)


def reduce(state: Mapping[str, Any], action: Any) -> dict[str, Any]:
    """Root reducer combining the queries and entities slices."""
    return {
        **state,
        "queries": reduce_queries(state.get("queries") or {}, action),
        "entities": reduce_entities(state.get("entities") or {}, action),
    }


def _merge(entities: Mapping[str, Any], patch: Mapping[str, Any] | None) -> dict[str, Any]:
    merged = dict(entities)
    for entity_type, value in (patch or {}).items():
        if value is None:
            merged.pop(entity_type, None)
        else:
            merged[entity_type] = value
    return merged


class MemoryStore:
    """Dictionary-backed store with an optional middleware in front of its reducer.

    Attributes:
        history: Every action that reached the reducer, in order.
        _state: Current state; replaced, never mutated, on every action.
        _middleware: Function ``(action, next_) -> result`` called by dispatch().
    """

    def __init__(
        self,
        entities: Mapping[str, Any] | None = None,
        queries: Mapping[str, QueryRecord] | None = None,
    ) -> None:
        self._state: dict[str, Any] = {
            "queries": dict(queries or {}),
            "entities": dict(entities or {}),
        }
        self._middleware: Middleware | None = None
        self.history: list[Any] = []

    def get_state(self) -> dict[str, Any]:
        return self._state

    def use(self, middleware: Middleware) -> None:
        """Route every dispatched action through ``middleware`` first.

        The middleware receives the action and a ``next_`` callable that
        hands it to the reducer.
        """
        self._middleware = middleware

    def dispatch(self, action: Any) -> Any:
        """Dispatch an action.

        Returns:
            Whatever the middleware returns for the action (for fetches and
            mutations, the task resolving to their result), or the action
            itself when it went straight to the reducer.
        """
        if self._middleware is not None:
            return self._middleware(action, self._reduce)
        return self._reduce(action)

    def _reduce(self, action: Any) -> Any:
        self._state = reduce(self._state, action)
        self.history.append(action)
        logger.debug("store.reduced", action_type=str(getattr(action, "type", type(action).__name__)))
        return action

    def events_of(self, *action_types: ActionType) -> list[Any]:
        """Actions in history with one of the given types."""
        return [action for action in self.history if getattr(action, "type", None) in action_types]
