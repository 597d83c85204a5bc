"""Configuration module for the query middleware.

This module provides the QueryMiddlewareConfig class for configuring retry
backoff, the set of retryable status codes and the query-key resolver. Options
are set per deployment, never per call.

Example:
    Basic usage with defaults:

        >>> config = QueryMiddlewareConfig()
        >>> config.backoff.max_attempts
        5
        >>> config.retryable_status_codes
        [0, 408, 429, 503, 504]

    Custom configuration:

        >>> config = QueryMiddlewareConfig(
        ...     backoff=BackoffConfig(min_duration_ms=100, max_duration_ms=2000, max_attempts=3),
        ...     retryable_status_codes=[0, 503],
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['QUERY_MIDDLEWARE_BACKOFF_MAX_ATTEMPTS'] = '3'
        >>> os.environ['QUERY_MIDDLEWARE_RETRYABLE_STATUS_CODES'] = '0,503'
        >>> config = QueryMiddlewareConfig.from_env()
"""

import os
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from query_middleware.models import UNKNOWN_STATUS
from query_middleware.query_key import resolve_query_key

REQUEST_TIMEOUT = 408
TOO_MANY_REQUESTS = 429
SERVICE_UNAVAILABLE = 503
GATEWAY_TIMEOUT = 504

DEFAULT_RETRYABLE_STATUS_CODES = [
    UNKNOWN_STATUS,  # normally means a failed connection
    REQUEST_TIMEOUT,
    TOO_MANY_REQUESTS,
    SERVICE_UNAVAILABLE,
    GATEWAY_TIMEOUT,
]


class BackoffConfig(BaseModel):
    """Retry backoff settings for fetches.

    Attributes:
        min_duration_ms: Lower bound, and base, of the retry delay in milliseconds.
        max_duration_ms: Upper bound of the retry delay in milliseconds.
        max_attempts: Total number of transport attempts per fetch, first included.
        jitter: Fraction of the computed delay that may be randomly added or
            removed, between 0 (none) and 1.
    """

    min_duration_ms: int = Field(default=300, description="Minimum retry delay (ms)")
    max_duration_ms: int = Field(default=5000, description="Maximum retry delay (ms)")
    max_attempts: int = Field(default=5, description="Maximum attempts per fetch")
    jitter: float = Field(default=0.5, description="Random delay deviation (0-1)")

    model_config = {"frozen": True}

    @field_validator("min_duration_ms", "max_duration_ms")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"backoff durations must be >= 0, got {v}")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}")
        return v

    @field_validator("jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        if not (0 <= v <= 1):
            raise ValueError(f"jitter must be between 0 and 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_bounds(self) -> "BackoffConfig":
        """Ensure the delay window is not inverted.

        Raises:
            ValueError: If max_duration_ms is lower than min_duration_ms.
        """
        if self.max_duration_ms < self.min_duration_ms:
            raise ValueError(
                f"max_duration_ms ({self.max_duration_ms}) must be >= "
                f"min_duration_ms ({self.min_duration_ms})"
            )
        return self


class QueryMiddlewareConfig(BaseModel):
    """Configuration for the query middleware.

    This immutable configuration class holds every deployment-level option of
    the middleware.

    Attributes:
        backoff: Retry backoff settings, see BackoffConfig.
        retryable_status_codes: Statuses for which a fetch attempt is retried
            while attempts remain. 0 is the unknown status reported for
            connection-level failures. Default is [0, 408, 429, 503, 504].
        key_resolver: Pure function ``(url, body, query_key) -> str`` deriving
            the deduplication key of a request. Default is resolve_query_key.

    Example:
        >>> config = QueryMiddlewareConfig(retryable_status_codes="0, 503")
        >>> config.retryable_status_codes
        [0, 503]

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    backoff: BackoffConfig = Field(
        default_factory=BackoffConfig,
        description="Retry backoff settings",
    )
    retryable_status_codes: list[int] | str = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_STATUS_CODES),
        description="Status codes that make a fetch attempt retryable",
    )
    key_resolver: Callable[..., str] = Field(
        default=resolve_query_key,
        description="Function deriving the query key of a request",
    )

    model_config = {"frozen": True}

    @field_validator("retryable_status_codes", mode="before")
    @classmethod
    def validate_retryable_status_codes(cls, v: Any) -> list[int]:
        """Validate and normalize retryable status codes.

        Args:
            v: List of status codes or comma-separated string.

        Returns:
            List of integer status codes.

        Raises:
            ValueError: If a code is neither 0 nor a valid HTTP status.

        Example:
            >>> QueryMiddlewareConfig(retryable_status_codes="503,504").retryable_status_codes
            [503, 504]
        """
        if isinstance(v, str):
            # Handle comma-separated string (from environment variables)
            v = [code.strip() for code in v.split(",") if code.strip()]

        if not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError("retryable_status_codes must be a list or comma-separated string")

        codes = [int(code) for code in v]
        invalid = [code for code in codes if code != UNKNOWN_STATUS and not (100 <= code <= 599)]
        if invalid:
            raise ValueError(
                f"Invalid status codes: {', '.join(str(c) for c in invalid)}. "
                f"Codes must be {UNKNOWN_STATUS} or between 100 and 599"
            )

        return codes

    @classmethod
    def from_env(cls, prefix: str = "QUERY_MIDDLEWARE_") -> "QueryMiddlewareConfig":
        """Create configuration from environment variables.

        Recognised variables (shown with the default prefix):
        QUERY_MIDDLEWARE_BACKOFF_MIN_DURATION_MS, QUERY_MIDDLEWARE_BACKOFF_MAX_DURATION_MS,
        QUERY_MIDDLEWARE_BACKOFF_MAX_ATTEMPTS, QUERY_MIDDLEWARE_BACKOFF_JITTER and
        QUERY_MIDDLEWARE_RETRYABLE_STATUS_CODES (comma-separated).

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            QueryMiddlewareConfig populated from the environment. Missing
            variables keep their defaults. The key resolver cannot be set
            from the environment.
        """
        backoff: dict[str, Any] = {}
        backoff_fields = {
            "min_duration_ms": int,
            "max_duration_ms": int,
            "max_attempts": int,
            "jitter": float,
        }
        for field_name, field_type in backoff_fields.items():
            env_value = os.environ.get(f"{prefix}BACKOFF_{field_name.upper()}")
            if env_value is not None:
                backoff[field_name] = field_type(env_value)

        config_dict: dict[str, Any] = {}
        if backoff:
            config_dict["backoff"] = backoff

        codes = os.environ.get(f"{prefix}RETRYABLE_STATUS_CODES")
        if codes is not None:
            config_dict["retryable_status_codes"] = codes

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "QueryMiddlewareConfig":
        """Create configuration from a dictionary.

        Args:
            config_dict: Dictionary with configuration values; ``backoff`` may
                be given as a nested dictionary.

        Returns:
            QueryMiddlewareConfig populated from the dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
