"""Tests for the error taxonomy."""

import pytest

from irbridge.exceptions import (
    AdapterConversionError,
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    ErrorCategory,
    ErrorCode,
    ErrorProvenance,
    MiddlewareError,
    NetworkError,
    ProviderError,
    RateLimitError,
    RequestCancelledError,
    RouterError,
    StreamError,
    ValidationDetail,
    ValidationError,
    category_for_code,
    error_from_code,
    is_retryable,
    map_http_status_to_error,
)


class TestAdapterError:
    """Test the base exception."""

    def test_basic_error(self):
        """Test basic error creation."""
        error = AdapterError("Something broke")
        assert error.message == "Something broke"
        assert error.code == ErrorCode.UNKNOWN_ERROR
        assert error.category == ErrorCategory.UNKNOWN
        assert error.is_retryable is False
        assert str(error) == "[UNKNOWN_ERROR] Something broke"

    def test_error_with_code(self):
        """Test the category follows the code."""
        error = AdapterError("down", code=ErrorCode.PROVIDER_UNAVAILABLE)
        assert error.category == ErrorCategory.PROVIDER
        assert error.is_category(ErrorCategory.PROVIDER)

    def test_cause_is_chained(self):
        """Test the cause becomes __cause__."""
        cause = ValueError("bad")
        error = AdapterError("wrapped", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_to_dict(self):
        """Test serialization."""
        error = AdapterError(
            "oops",
            code=ErrorCode.INTERNAL_ERROR,
            provenance=ErrorProvenance(backend="openai"),
            details={"k": "v"},
        )
        data = error.to_dict()
        assert data["name"] == "AdapterError"
        assert data["code"] == "INTERNAL_ERROR"
        assert data["category"] == "unknown"
        assert data["provenance"] == {"backend": "openai"}
        assert data["details"] == {"k": "v"}


class TestErrorProvenance:
    """Test provenance records."""

    def test_merged_fills_missing_only(self):
        """Test merged keeps existing values."""
        provenance = ErrorProvenance(backend="a")
        merged = provenance.merged(backend="b", router="r")
        assert merged.backend == "a"
        assert merged.router == "r"

    def test_to_dict_skips_none(self):
        """Test empty fields are omitted."""
        assert ErrorProvenance(frontend="f").to_dict() == {"frontend": "f"}


class TestRetryDefaults:
    """Test retryability of each error class."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (AuthenticationError(), False),
            (AuthorizationError(), False),
            (RateLimitError(), True),
            (ValidationError(), False),
            (AdapterConversionError(), False),
            (NetworkError(), True),
            (MiddlewareError(), False),
            (RequestCancelledError(), False),
        ],
    )
    def test_defaults(self, error, expected):
        """Test the default retry flag."""
        assert error.is_retryable is expected

    def test_provider_error_retryable_on_5xx(self):
        """Test provider errors retry only on server errors."""
        assert ProviderError(status_code=502).is_retryable is True
        assert ProviderError(status_code=400).is_retryable is False
        assert ProviderError().is_retryable is False

    def test_stream_error_retryable_when_interrupted(self):
        """Test stream errors retry only when interrupted."""
        assert StreamError(code=ErrorCode.STREAM_INTERRUPTED).is_retryable is True
        assert StreamError(code=ErrorCode.STREAM_PARSE_ERROR).is_retryable is False

    def test_router_error_retryable_when_all_failed(self):
        """Test router errors retry only after exhausting backends."""
        assert RouterError(code=ErrorCode.ALL_BACKENDS_FAILED).is_retryable is True
        assert RouterError(code=ErrorCode.NO_BACKEND_AVAILABLE).is_retryable is False

    def test_authentication_cannot_be_made_retryable(self):
        """Test the flag is fixed for authentication errors."""
        assert AuthenticationError(is_retryable=True).is_retryable is False


class TestSubclassFields:
    """Test subclass specific fields."""

    def test_rate_limit_fields(self):
        """Test rate limit details."""
        error = RateLimitError("slow down", retry_after=30, limit=100, remaining=0)
        assert error.retry_after == 30
        assert error.limit == 100
        assert error.remaining == 0
        assert error.to_dict()["retry_after"] == 30

    def test_validation_details(self):
        """Test validation details are serialized."""
        detail = ValidationDetail(field="parameters.temperature", reason="out of range", value=3.0)
        error = ValidationError("bad", validation_details=[detail])
        assert error.validation_details == [detail]
        assert error.to_dict()["validation_details"][0]["field"] == "parameters.temperature"

    def test_router_error_last_error(self):
        """Test last_error is the final attempted backend's error."""
        first, second = NetworkError("a"), NetworkError("b")
        error = RouterError(
            "all failed",
            code=ErrorCode.ALL_BACKENDS_FAILED,
            attempted_backends=["a", "b"],
            errors={"a": first, "b": second},
        )
        assert error.last_error is second
        assert error.to_dict()["attempted_backends"] == ["a", "b"]

    def test_middleware_error_provenance(self):
        """Test middleware errors record the middleware."""
        error = MiddlewareError("failed", middleware_name="cache")
        assert error.middleware_name == "cache"
        assert error.provenance.middleware == "cache"

    def test_cancelled_timed_out(self):
        """Test timeout flavour of cancellation."""
        assert RequestCancelledError(code=ErrorCode.REQUEST_TIMEOUT).timed_out is True
        assert RequestCancelledError().timed_out is False


class TestHelpers:
    """Test module level helpers."""

    def test_category_for_code(self):
        """Test the code to category map."""
        assert category_for_code(ErrorCode.CONNECTION_TIMEOUT) == ErrorCategory.NETWORK
        assert category_for_code(ErrorCode.REQUEST_TIMEOUT) == ErrorCategory.CANCELLATION

    @pytest.mark.parametrize(
        "status,error_class",
        [
            (401, AuthenticationError),
            (403, AuthorizationError),
            (429, RateLimitError),
            (400, ValidationError),
            (422, ValidationError),
            (500, ProviderError),
            (503, ProviderError),
        ],
    )
    def test_map_http_status(self, status, error_class):
        """Test HTTP status mapping."""
        error = map_http_status_to_error(status, "message")
        assert isinstance(error, error_class)
        assert error.details["status_code"] == status

    def test_map_http_status_codes(self):
        """Test specific provider codes."""
        assert map_http_status_to_error(503, "x").code == ErrorCode.PROVIDER_UNAVAILABLE
        assert map_http_status_to_error(504, "x").code == ErrorCode.PROVIDER_TIMEOUT
        assert map_http_status_to_error(429, "x", retry_after=5).retry_after == 5

    def test_error_from_code(self):
        """Test rebuilding typed errors from codes."""
        assert isinstance(error_from_code("NETWORK_ERROR", "x"), NetworkError)
        assert isinstance(error_from_code("RATE_LIMIT_EXCEEDED", "x"), RateLimitError)
        error = error_from_code("STREAM_INTERRUPTED", "cut")
        assert isinstance(error, StreamError)
        assert error.is_retryable is True

    def test_error_from_unknown_code(self):
        """Test unknown codes fall back to the base class."""
        error = error_from_code("NOT_A_CODE", "x")
        assert type(error) is AdapterError
        assert error.code == ErrorCode.UNKNOWN_ERROR

    def test_is_retryable(self):
        """Test retryability of foreign exceptions."""
        assert is_retryable(NetworkError()) is True
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(ValueError()) is False
