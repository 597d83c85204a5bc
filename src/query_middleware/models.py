"""Core type definitions and models for the query middleware.

This module provides the data structures exchanged between the middleware,
its callers, the transport and the store:

- Query records, as kept by the store for every query key
- Transport completions and the caller-visible action result
- Caller intents (fetch, mutate, cancel, reset)
- Lifecycle events announced to the store

Examples:
    Declaring a fetch::

        from query_middleware.models import RequestAsync

        action = RequestAsync(
            url="https://api.example.com/users/1",
            update={"users": lambda prev, fragment: {**(prev or {}), **fragment}},
        )

    Inspecting a terminal result::

        result = await middleware.handle(action, next_)
        if result.ok:
            print(result.entities["users"])
        else:
            print(f"Failed with {result.status}")
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Status reported when no HTTP status is available, e.g. a failed connection
UNKNOWN_STATUS = 0

Transform = Callable[[Any, str | None], Any]
UpdateDescriptor = Mapping[str, Callable[[Any, Any], Any]]
OptimisticUpdateDescriptor = Mapping[str, Callable[[Any], Any] | None]
RollbackDescriptor = Mapping[str, Callable[[Any, Any], Any]]


def is_status_ok(status: int | None) -> bool:
    """Return True for statuses in the success range [200, 300).

    Examples:
        >>> is_status_ok(204)
        True
        >>> is_status_ok(None)
        False
    """
    return status is not None and 200 <= status < 300


def utcnow() -> datetime:
    return datetime.now(UTC)


class ActionType(str, Enum):
    """Type tags of every action the middleware consumes or emits.

    Attributes:
        REQUEST_ASYNC: Caller intent to fetch a resource.
        MUTATE_ASYNC: Caller intent to mutate a resource.
        CANCEL_QUERY: Caller intent to cancel one pending query.
        RESET: Caller intent to drop all query state.
        REQUEST_START: A fetch attempt started.
        REQUEST_SUCCESS: A fetch completed with a 2xx status.
        REQUEST_FAILURE: A fetch failed terminally.
        MUTATE_START: A mutation started.
        MUTATE_SUCCESS: A mutation completed with a 2xx status.
        MUTATE_FAILURE: A mutation failed.
    """

    REQUEST_ASYNC = "REQUEST_ASYNC"
    MUTATE_ASYNC = "MUTATE_ASYNC"
    CANCEL_QUERY = "CANCEL_QUERY"
    RESET = "RESET"
    REQUEST_START = "REQUEST_START"
    REQUEST_SUCCESS = "REQUEST_SUCCESS"
    REQUEST_FAILURE = "REQUEST_FAILURE"
    MUTATE_START = "MUTATE_START"
    MUTATE_SUCCESS = "MUTATE_SUCCESS"
    MUTATE_FAILURE = "MUTATE_FAILURE"


class RequestOptions(BaseModel):
    """Transport options of a fetch or mutation.

    Attributes:
        method: HTTP method. Defaults to GET for fetches and POST for mutations.
        headers: Request headers.
        credentials: Credentials handed to the transport untouched.
    """

    method: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    credentials: Any = None

    model_config = {"frozen": True}


class QueryRecord(BaseModel):
    """State of one query key as kept by the store.

    The middleware only reads these records; the store's reducer creates and
    updates them from lifecycle events.

    Attributes:
        query_key: The key this record describes.
        url: URL of the latest request for the key.
        is_pending: Whether a request for the key is currently in flight.
        is_mutation: Whether the latest request was a mutation.
        status: Status of the last completed request, None before any completion.
        attempts: Number of transport attempts made by the latest request.
        started_at: When the latest request started.
        last_updated: When the record last changed.
        duration_ms: End-to-end duration of the last completed request.
    """

    query_key: str = Field(..., min_length=1)
    url: str | None = None
    is_pending: bool = False
    is_mutation: bool = False
    status: int | None = None
    attempts: int = Field(default=0, ge=0)
    started_at: datetime | None = None
    last_updated: datetime | None = None
    duration_ms: int | None = Field(default=None, ge=0)

    model_config = {"frozen": True}


class TransportResponse(BaseModel):
    """Single completion reported by a network handle.

    Attributes:
        error: Exception describing a failed call, None if a response arrived.
        status: HTTP status, or UNKNOWN_STATUS when none is available.
        body: Decoded response body, if any.
        text: Raw response text, if any.
        headers: Response headers.
    """

    error: Exception | None = None
    status: int = UNKNOWN_STATUS
    body: Any = None
    text: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return self.error is None and is_status_ok(self.status)


class ActionResult(BaseModel):
    """Caller-visible outcome of a fetch or mutation.

    Every fetch or mutation resolves to exactly one ActionResult, whether it
    succeeded, failed or was aborted. Callers inspect the fields instead of
    catching exceptions.

    Attributes:
        status: Status of the terminal attempt.
        body: Raw response body.
        text: Raw response text.
        headers: Response headers.
        duration_ms: Time from the first attempt's start to the terminal completion.
        transformed: Transformed response body (success only).
        entities: Entity snapshot after merging the response (success only).
        error: Transport error of the terminal attempt, if any.
        aborted: True if the request was cancelled before it completed.
    """

    status: int = UNKNOWN_STATUS
    body: Any = None
    text: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    duration_ms: int = Field(default=0, ge=0)
    transformed: Any = None
    entities: dict[str, Any] | None = None
    error: Exception | None = None
    aborted: bool = False

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return not self.aborted and self.error is None and is_status_ok(self.status)


# ============================================================================
# Caller intents
# ============================================================================


class RequestAsync(BaseModel):
    """Intent to fetch a resource.

    Attributes:
        url: Resource URL (required).
        body: Request body.
        force: Issue the request even if a record for the key exists.
        retry: Re-issue a request whose last attempt failed and is not pending.
        transform: ``(body, text) -> transformed``; default ``body or {}``.
        update: Update descriptor merging the transformed body into entities.
        options: Transport options.
        query_key: Explicit deduplication key.
        meta: Opaque caller data carried on every lifecycle event.
        pre_dispatch_callback: Called right before the terminal event is announced.
    """

    type: ActionType = ActionType.REQUEST_ASYNC
    url: str | None = None
    body: Any = None
    force: bool = False
    retry: bool = False
    transform: Transform | None = None
    update: UpdateDescriptor | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)
    query_key: str | None = None
    meta: Any = None
    pre_dispatch_callback: Callable[[], Any] | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class MutateAsync(BaseModel):
    """Intent to mutate a resource.

    Attributes:
        url: Resource URL (required).
        body: Request body.
        transform: ``(body, text) -> transformed``; default ``body or {}``.
        update: Update descriptor merging the transformed body into entities.
        optimistic_update: Descriptor applied to entities before the response.
        rollback: Descriptor reverting the optimistic update after a failure.
        options: Transport options.
        query_key: Explicit key.
        meta: Opaque caller data carried on every lifecycle event.
        pre_dispatch_callback: Called right before the terminal event is announced.
    """

    type: ActionType = ActionType.MUTATE_ASYNC
    url: str | None = None
    body: Any = None
    transform: Transform | None = None
    update: UpdateDescriptor | None = None
    optimistic_update: OptimisticUpdateDescriptor | None = None
    rollback: RollbackDescriptor | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)
    query_key: str | None = None
    meta: Any = None
    pre_dispatch_callback: Callable[[], Any] | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class CancelQuery(BaseModel):
    """Intent to cancel the pending request for a key."""

    type: ActionType = ActionType.CANCEL_QUERY
    query_key: str | None = None

    model_config = {"frozen": True}


class Reset(BaseModel):
    """Intent to cancel every pending request and drop all query state."""

    type: ActionType = ActionType.RESET

    model_config = {"frozen": True}


# ============================================================================
# Lifecycle events
# ============================================================================


class RequestStart(BaseModel):
    type: ActionType = ActionType.REQUEST_START
    url: str
    body: Any = None
    meta: Any = None
    query_key: str
    attempt: int = Field(default=1, ge=1)

    model_config = {"frozen": True}


class _Completion(BaseModel):
    url: str
    body: Any = None
    meta: Any = None
    query_key: str
    status: int
    duration_ms: int = Field(..., ge=0)
    response_body: Any = None
    response_text: str | None = None
    response_headers: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class RequestSuccess(_Completion):
    type: ActionType = ActionType.REQUEST_SUCCESS
    entities: dict[str, Any] = Field(default_factory=dict)
    attempts: int = Field(default=1, ge=1)


class RequestFailure(_Completion):
    type: ActionType = ActionType.REQUEST_FAILURE
    attempts: int = Field(default=1, ge=1)


class MutateStart(BaseModel):
    type: ActionType = ActionType.MUTATE_START
    url: str
    body: Any = None
    meta: Any = None
    query_key: str
    # Only the entity types touched by the optimistic update
    optimistic_entities: dict[str, Any] | None = None

    model_config = {"frozen": True}


class MutateSuccess(_Completion):
    type: ActionType = ActionType.MUTATE_SUCCESS
    entities: dict[str, Any] = Field(default_factory=dict)


class MutateFailure(_Completion):
    type: ActionType = ActionType.MUTATE_FAILURE
    rolled_back_entities: dict[str, Any] | None = None
