"""Unit tests for configuration module.

Tests the QueryMiddlewareConfig and BackoffConfig classes including
validation, factory methods, and immutability.
"""

import os
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from query_middleware.config import (
    DEFAULT_RETRYABLE_STATUS_CODES,
    BackoffConfig,
    QueryMiddlewareConfig,
)
from query_middleware.query_key import resolve_query_key


class TestDefaults:
    """Tests for default configuration values."""

    def test_default_values(self) -> None:
        """Test that default values are set correctly."""
        config = QueryMiddlewareConfig()

        assert config.backoff.min_duration_ms == 300
        assert config.backoff.max_duration_ms == 5000
        assert config.backoff.max_attempts == 5
        assert config.backoff.jitter == 0.5
        assert config.retryable_status_codes == [0, 408, 429, 503, 504]
        assert config.key_resolver is resolve_query_key

    def test_default_status_list_not_shared(self) -> None:
        """Test that each config gets its own copy of the default codes."""
        config = QueryMiddlewareConfig()

        assert config.retryable_status_codes == DEFAULT_RETRYABLE_STATUS_CODES
        assert config.retryable_status_codes is not DEFAULT_RETRYABLE_STATUS_CODES


class TestBackoffValidation:
    """Tests for BackoffConfig validation."""

    def test_negative_duration_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            BackoffConfig(min_duration_ms=-1)

        assert "backoff durations must be >= 0" in str(exc_info.value)

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            BackoffConfig(max_attempts=0)

        assert "max_attempts must be >= 1" in str(exc_info.value)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_jitter_out_of_range_rejected(self, jitter: float) -> None:
        with pytest.raises(ValidationError):
            BackoffConfig(jitter=jitter)

    def test_inverted_window_rejected(self) -> None:
        """Test that max below min is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            BackoffConfig(min_duration_ms=1000, max_duration_ms=500)

        assert "must be >= min_duration_ms" in str(exc_info.value)

    def test_equal_bounds_accepted(self) -> None:
        config = BackoffConfig(min_duration_ms=0, max_duration_ms=0)

        assert config.max_duration_ms == 0


class TestRetryableStatusCodes:
    """Tests for retryable_status_codes validation."""

    def test_comma_separated_string(self) -> None:
        """Test that a comma-separated string is parsed."""
        config = QueryMiddlewareConfig(retryable_status_codes="0, 503,504")

        assert config.retryable_status_codes == [0, 503, 504]

    def test_empty_list_disables_retries(self) -> None:
        assert QueryMiddlewareConfig(retryable_status_codes=[]).retryable_status_codes == []

    def test_invalid_code_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            QueryMiddlewareConfig(retryable_status_codes=[503, 42, 700])

        error = str(exc_info.value)
        assert "Invalid status codes: 42, 700" in error

    def test_non_list_rejected(self) -> None:
        with pytest.raises(ValidationError):
            QueryMiddlewareConfig(retryable_status_codes=503)

    @given(codes=st.lists(st.one_of(st.just(0), st.integers(min_value=100, max_value=599)), max_size=10))
    def test_valid_codes_roundtrip_through_string(self, codes: list[int]) -> None:
        """Property: list and comma-separated forms are equivalent."""
        as_string = ",".join(str(code) for code in codes)

        assert QueryMiddlewareConfig(retryable_status_codes=as_string).retryable_status_codes == codes


class TestImmutability:
    """Tests for frozen configuration."""

    def test_config_is_frozen(self) -> None:
        config = QueryMiddlewareConfig()

        with pytest.raises(ValidationError):
            config.retryable_status_codes = [503]  # type: ignore[misc]

    def test_backoff_is_frozen(self) -> None:
        backoff = BackoffConfig()

        with pytest.raises(ValidationError):
            backoff.max_attempts = 2  # type: ignore[misc]


class TestCustomKeyResolver:
    def test_custom_resolver_kept(self) -> None:
        def by_url(url: str, body: Any = None, query_key: str | None = None) -> str:
            return query_key or url

        config = QueryMiddlewareConfig(key_resolver=by_url)

        assert config.key_resolver("/api/users") == "/api/users"


class TestFromEnv:
    """Tests for loading configuration from the environment."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in list(os.environ):
            if name.startswith("QUERY_MIDDLEWARE_") or name.startswith("MYAPP_"):
                monkeypatch.delenv(name)

    def test_defaults_without_variables(self) -> None:
        config = QueryMiddlewareConfig.from_env()

        assert config == QueryMiddlewareConfig()

    def test_reads_all_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_MIN_DURATION_MS", "100")
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_MAX_DURATION_MS", "2000")
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_JITTER", "0.25")
        monkeypatch.setenv("QUERY_MIDDLEWARE_RETRYABLE_STATUS_CODES", "0,503")

        config = QueryMiddlewareConfig.from_env()

        assert config.backoff == BackoffConfig(
            min_duration_ms=100, max_duration_ms=2000, max_attempts=3, jitter=0.25
        )
        assert config.retryable_status_codes == [0, 503]

    def test_partial_backoff_keeps_other_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_MAX_ATTEMPTS", "2")

        config = QueryMiddlewareConfig.from_env()

        assert config.backoff.max_attempts == 2
        assert config.backoff.min_duration_ms == 300

    def test_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MYAPP_RETRYABLE_STATUS_CODES", "429")

        config = QueryMiddlewareConfig.from_env(prefix="MYAPP_")

        assert config.retryable_status_codes == [429]

    def test_invalid_value_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QUERY_MIDDLEWARE_BACKOFF_MAX_ATTEMPTS", "not-a-number")

        with pytest.raises(ValueError):
            QueryMiddlewareConfig.from_env()


class TestFromDict:
    def test_nested_backoff(self) -> None:
        config = QueryMiddlewareConfig.from_dict(
            {"backoff": {"max_attempts": 2}, "retryable_status_codes": [503]}
        )

        assert config.backoff.max_attempts == 2
        assert config.retryable_status_codes == [503]

    def test_invalid_dict_raises(self) -> None:
        with pytest.raises(ValidationError):
            QueryMiddlewareConfig.from_dict({"backoff": {"max_attempts": 0}})
