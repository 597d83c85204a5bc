"""Cancellation of in-flight queries.

Whether a key can be cancelled is decided from the store's query records, not
from the registry: only keys the store reports as pending are cancelled. The
registry supplies the handle to abort, if one is still registered.

Cancelling a key that is not pending is a caller mistake worth a warning,
never an error.
"""

from query_middleware.core.registry import InFlightRegistry
from query_middleware.exceptions import InvalidActionError
from query_middleware.observability.logging import get_logger
from query_middleware.observability.metrics import record_cancellation
from query_middleware.store.base import (
    QueriesSelector,
    Store,
    select_pending_queries,
    select_queries,
)

logger = get_logger(__name__)


class CancellationController:
    """Aborts pending queries one at a time or all at once.

    Attributes:
        store: Source of query records.
        registry: In-flight handles, shared with the other controllers.
    """

    def __init__(
        self,
        store: Store,
        registry: InFlightRegistry,
        queries_selector: QueriesSelector = select_queries,
    ) -> None:
        self.store = store
        self.registry = registry
        self._queries_selector = queries_selector

    def pending_keys(self) -> list[str]:
        return list(select_pending_queries(self._queries_selector(self.store.get_state())))

    def cancel_one(self, query_key: str | None) -> bool:
        """Cancel the pending request for a key.

        Aborts the registered handle, if any, and clears its registry slot.

        Args:
            query_key: The key to cancel.

        Returns:
            True if the key was pending, False (with a warning) otherwise.

        Raises:
            InvalidActionError: If no key is given.
        """
        if not query_key:
            raise InvalidActionError(
                message="Missing required `query_key` field in action handler",
                field="query_key",
            )

        if query_key not in self.pending_keys():
            logger.warning("cancel.not_in_flight", query_key=query_key)
            return False

        handle = self.registry.get(query_key)
        if handle is not None:
            handle.abort()
            self.registry.clear(query_key, handle)
            record_cancellation()
            logger.info("cancel.aborted", query_key=query_key)

        return True

    def cancel_all_pending(self) -> list[str]:
        """Cancel every pending key.

        Keys whose handle is already gone are still reported as cancelled;
        nothing here raises for them.

        Returns:
            The keys that were pending.
        """
        cancelled = [key for key in self.pending_keys() if self.cancel_one(key)]
        if cancelled:
            logger.info("cancel.all", count=len(cancelled))
        return cancelled
