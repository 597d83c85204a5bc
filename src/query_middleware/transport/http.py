"""HTTP transport backed by httpx.

This module provides the production Transport implementation. Each handle
runs its request as an asyncio task on a shared ``httpx.AsyncClient`` so that
abort() can cancel the request while it is in flight.

Request bodies are sent as JSON, except for GET and HEAD requests, whose
mapping bodies become query parameters. JSON response bodies are decoded;
other bodies are only available as text. Connection-level failures and
timeouts are reported with UNKNOWN_STATUS and a TransportError so that the
retry policy treats them as transient.

Examples:
    Basic usage::

        import httpx

        from query_middleware.transport.http import HttpxTransport

        async with httpx.AsyncClient(base_url="https://api.example.com") as client:
            transport = HttpxTransport(client)
            handle = transport("/users/1", "GET")
            response = await handle.execute()

    Testing against an ASGI app without a network::

        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
        )
        transport = HttpxTransport(client)
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx

from query_middleware.exceptions import TransportError
from query_middleware.models import UNKNOWN_STATUS, TransportResponse
from query_middleware.observability.logging import get_logger

logger = get_logger(__name__)

# Methods whose body is encoded in the query string
_QUERY_BODY_METHODS = {"GET", "HEAD"}


class HttpxHandle:
    """Handle of one httpx request.

    Attributes:
        url: Request URL.
        method: HTTP method (uppercase).
        aborted: Whether abort() has been called.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        method: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        credentials: Any = None,
    ) -> None:
        self.url = url
        self.method = method.upper()
        self.aborted = False
        self._client = client
        self._body = body
        self._headers = headers or {}
        self._credentials = credentials
        self._task: asyncio.Task[TransportResponse] | None = None

    async def execute(self) -> TransportResponse:
        """Send the request and return its completion.

        Raises:
            asyncio.CancelledError: If the handle is aborted before or while
                the request is in flight.
        """
        if self.aborted:
            raise asyncio.CancelledError()
        self._task = asyncio.ensure_future(self._send())
        return await self._task

    def abort(self) -> None:
        self.aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _send(self) -> TransportResponse:
        request_kwargs: dict[str, Any] = {"headers": self._headers}
        if self._credentials is not None:
            request_kwargs["auth"] = self._credentials
        if self._body is not None:
            if self.method in _QUERY_BODY_METHODS and isinstance(self._body, Mapping):
                request_kwargs["params"] = dict(self._body)
            elif isinstance(self._body, (bytes, str)):
                request_kwargs["content"] = self._body
            else:
                request_kwargs["json"] = self._body

        try:
            response = await self._client.request(self.method, self.url, **request_kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "transport.error",
                method=self.method,
                url=self.url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return TransportResponse(
                error=TransportError(message=f"{self.method} {self.url} failed: {e}", cause=e),
                status=UNKNOWN_STATUS,
            )

        return TransportResponse(
            status=response.status_code,
            body=_decode_body(response),
            text=response.text,
            headers={key.lower(): value for key, value in response.headers.items()},
        )


class HttpxTransport:
    """Transport creating HttpxHandle instances on a shared client.

    Attributes:
        client: The httpx client every handle sends its request with.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    def __call__(
        self,
        url: str,
        method: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        credentials: Any = None,
    ) -> HttpxHandle:
        return HttpxHandle(
            self.client,
            url,
            method,
            body=body,
            headers=headers,
            credentials=credentials,
        )


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
