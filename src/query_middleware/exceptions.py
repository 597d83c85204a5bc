"""Custom exceptions for the query middleware.

This module defines the exception hierarchy used to signal caller-contract
violations and transport-level failures. Terminal request outcomes are never
raised: they resolve the caller-visible result instead, and callers inspect
its ``status`` and ``error`` fields.

Examples:
    Handling a missing url::

        from query_middleware.exceptions import InvalidActionError

        try:
            middleware.fetch(url="")
        except InvalidActionError as e:
            logger.error("Bad fetch declaration", field=e.field, error=str(e))

    Inspecting a connection failure::

        result = await middleware.fetch(url="https://api.example.com/users")
        if isinstance(result.error, TransportError):
            logger.warning("Network unreachable", cause=repr(result.error.cause))
"""


class QueryMiddlewareError(Exception):
    """Base exception for all query-middleware errors.

    All exceptions raised by the middleware inherit from this base class,
    allowing callers to catch all middleware-specific errors with a single
    except clause.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class InvalidActionError(QueryMiddlewareError):
    """An action was declared without a field it requires.

    Raised synchronously when a fetch or mutate is declared without ``url``,
    or a cancel without ``query_key``. These are precondition failures of the
    caller and are never retried.

    Attributes:
        message: Human-readable error description.
        field: Name of the missing or invalid field.

    Examples:
        Raising for a missing url::

            if not url:
                raise InvalidActionError(
                    message="Missing required `url` field in action handler",
                    field="url",
                )
    """

    def __init__(self, message: str, field: str) -> None:
        """Initialize the error with the offending field.

        Args:
            message: Human-readable error description.
            field: Name of the missing or invalid field.
        """
        super().__init__(message)
        self.field = field


class TransportError(QueryMiddlewareError):
    """The transport could not complete a network call.

    This is not raised to callers. Transports attach it to the ``error`` field
    of the completion they report, together with the unknown status sentinel,
    so that the retry policy can treat the failure as transient.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception raised by the network client.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """Initialize the transport error with details.

        Args:
            message: Human-readable error description.
            cause: The underlying exception raised by the network client.
        """
        super().__init__(message)
        self.cause = cause
