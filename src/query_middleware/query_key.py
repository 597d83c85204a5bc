"""Query key derivation for request deduplication.

The query key identifies a logical request: two fetches with the same key are
the same request as far as deduplication, pending checks and cancellation are
concerned. The key is computed from canonical representations of the request
identity so that logically identical requests always map to the same key.
"""

import hashlib
import json
from typing import Any

from query_middleware.exceptions import InvalidActionError


def resolve_query_key(
    url: str | None,
    body: Any = None,
    query_key: str | None = None,
) -> str:
    """Compute the deduplication key for a request.

    If ``query_key`` is given it is returned verbatim, which lets callers
    group requests explicitly. Otherwise the key is computed as:
    1. Canonical body: JSON with sorted keys and compact separators
    2. Final: SHA-256 of url and canonical body separated by newline

    Args:
        url: Request URL
        body: Request body (any JSON-like value, or None)
        query_key: Explicit key overriding the derivation

    Returns:
        The explicit key, or a hexadecimal SHA-256 hash string (64 characters)

    Raises:
        InvalidActionError: If no explicit key is given and url is not a
            non-empty string

    Examples:
        >>> resolve_query_key("/api/users", {"page": 1, "sort": "name"}) == resolve_query_key(
        ...     "/api/users", {"sort": "name", "page": 1}
        ... )
        True
        >>> resolve_query_key("/api/users", query_key="users")
        'users'
    """
    if query_key is not None:
        return query_key

    if not isinstance(url, str) or not url:
        raise InvalidActionError(
            message=f"Cannot derive a query key without a url, got {url!r}",
            field="url",
        )

    key_input = "\n".join([url, canonicalize_body(body)])
    return hashlib.sha256(key_input.encode("utf-8")).hexdigest()


def canonicalize_body(body: Any) -> str:
    """Serialize a request body into an order-independent JSON string.

    Mapping keys are sorted at every nesting level. Values that are not JSON
    serializable are rendered with ``str``. Bytes are decoded as UTF-8 with
    replacement so that binary bodies still produce a stable string.

    Args:
        body: Request body

    Returns:
        Canonical JSON string ("null" for a missing body)
    """
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")

    return json.dumps(
        body,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
