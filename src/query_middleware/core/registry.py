"""Registry of in-flight network handles.

The registry maps each query key to the handle of the network operation
currently running for it, so that the operation can be aborted later. It holds
no business state: whether a key is pending is always read from the store.

All access happens on a single event loop, so the registry needs no locking.
Clearing a key and registering a new handle for it is the normal sequence
between two retry attempts.
"""

from collections.abc import Iterator

from query_middleware.observability.metrics import decrement_in_flight, increment_in_flight
from query_middleware.transport.base import NetworkHandle


class InFlightRegistry:
    """In-flight handles keyed by query key, at most one per key.

    Registering a handle for a key that already has one supersedes the old
    reference without aborting it.

    Attributes:
        _handles: Dictionary mapping query keys to network handles.
    """

    def __init__(self) -> None:
        self._handles: dict[str, NetworkHandle] = {}

    def register(self, key: str, handle: NetworkHandle) -> None:
        if key not in self._handles:
            increment_in_flight()
        self._handles[key] = handle

    def get(self, key: str) -> NetworkHandle | None:
        return self._handles.get(key)

    def clear(self, key: str, handle: NetworkHandle | None = None) -> bool:
        """Remove the handle registered for a key.

        Args:
            key: The query key.
            handle: If given, only clear the slot while it still holds this
                handle, so that a finished operation never drops the handle of
                one that superseded it.

        Returns:
            True if a handle was removed.
        """
        current = self._handles.get(key)
        if current is None or (handle is not None and current is not handle):
            return False

        del self._handles[key]
        decrement_in_flight()
        return True

    def keys(self) -> list[str]:
        return list(self._handles)

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._handles))
