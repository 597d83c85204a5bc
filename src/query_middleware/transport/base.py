"""Transport protocol for the query middleware.

The transport performs the actual network I/O. The middleware only needs two
things from it: a way to create a handle for one network call, and, on that
handle, a way to await its single completion and a way to abort it.

Examples:
    Implementing a custom transport::

        from query_middleware.models import TransportResponse
        from query_middleware.transport.base import NetworkHandle, Transport

        class CannedHandle:
            def __init__(self, response: TransportResponse) -> None:
                self._response = response
                self.aborted = False

            async def execute(self) -> TransportResponse:
                return self._response

            def abort(self) -> None:
                self.aborted = True

        class CannedTransport:
            def __call__(self, url, method, *, body=None, headers=None, credentials=None):
                return CannedHandle(TransportResponse(status=200, body={"ok": True}))

Contract:
    1. **Lazy**: creating a handle performs no I/O; the call starts when
       execute() is awaited.

    2. **Exactly one completion**: execute() returns one TransportResponse.
       Transport failures are reported in the response (``error`` set and
       ``status`` equal to UNKNOWN_STATUS), never raised.

    3. **Best-effort abort**: abort() marks the handle aborted and tries to
       stop the call. An awaiting execute() may then raise
       asyncio.CancelledError, or may still return a completion, which the
       middleware ignores.
"""

from typing import Any, Protocol, runtime_checkable

from query_middleware.models import TransportResponse


@runtime_checkable
class NetworkHandle(Protocol):
    """Cancellable handle of one network call.

    Attributes:
        aborted: Whether abort() has been called.
    """

    aborted: bool

    async def execute(self) -> TransportResponse:
        """Run the call and return its completion."""
        ...

    def abort(self) -> None:
        """Abort the call. Safe to call more than once, and after completion."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Factory of network handles."""

    def __call__(
        self,
        url: str,
        method: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        credentials: Any = None,
    ) -> NetworkHandle:
        """Create a handle for one call.

        Args:
            url: Request URL.
            method: HTTP method.
            body: Request body.
            headers: Request headers.
            credentials: Transport-specific credentials.

        Returns:
            A handle that has not started yet.
        """
        ...
