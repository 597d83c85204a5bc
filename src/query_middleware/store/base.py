"""Store protocol for the query middleware.

The store owns the authoritative query records and entity snapshot. The
middleware reads them at decision time through selectors and announces
lifecycle events through ``dispatch``; it never holds a mutable reference to
store state.

Examples:
    Wiring a custom store::

        class MyStore:
            def get_state(self) -> dict[str, Any]:
                return {"api": {"queries": self._queries, "entities": self._entities}}

            def dispatch(self, action: Any) -> Any:
                self._apply(action)
                return action

        middleware = QueryMiddleware(
            transport,
            MyStore(),
            queries_selector=lambda state: state["api"]["queries"],
            entities_selector=lambda state: state["api"]["entities"],
        )

Requirements:
    1. **Read-your-dispatch**: state returned by get_state() after dispatch()
       returns reflects the dispatched event. Fetch deduplication relies on
       the pending record being visible to the next decision.

    2. **No in-place mutation**: snapshots handed out by get_state() are never
       mutated afterwards; the store swaps in new ones.

    3. **Query records**: the queries selector returns a mapping of query key
       to QueryRecord.
"""

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from query_middleware.models import QueryRecord

QueriesSelector = Callable[[Any], Mapping[str, QueryRecord]]
EntitiesSelector = Callable[[Any], Mapping[str, Any]]


@runtime_checkable
class Store(Protocol):
    """Protocol defining what the middleware needs from a state store."""

    def get_state(self) -> Any:
        """Return the current state."""
        ...

    def dispatch(self, action: Any) -> Any:
        """Announce an action or lifecycle event to the store."""
        ...


def select_queries(state: Any) -> Mapping[str, QueryRecord]:
    """Default queries selector: ``state["queries"]``."""
    return state.get("queries") or {}


def select_entities(state: Any) -> Mapping[str, Any]:
    """Default entities selector: ``state["entities"]``."""
    return state.get("entities") or {}


def select_pending_queries(queries: Mapping[str, QueryRecord]) -> dict[str, QueryRecord]:
    """Restrict query records to the pending ones."""
    return {key: record for key, record in queries.items() if record.is_pending}
