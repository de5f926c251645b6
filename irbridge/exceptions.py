"""Error taxonomy for irbridge.

Every error raised by an adapter, the bridge, the router or a middleware
is an :class:`AdapterError`. Each carries a machine readable code, a
category derived from that code, a retryability flag and the provenance
of the stage that produced it.
"""

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Coarse error categories."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    PROVIDER = "provider"
    ADAPTER = "adapter"
    NETWORK = "network"
    STREAM = "stream"
    ROUTING = "routing"
    MIDDLEWARE = "middleware"
    CANCELLATION = "cancellation"
    UNKNOWN = "unknown"


class ErrorCode(str, Enum):
    """Machine readable error codes."""

    INVALID_API_KEY = "INVALID_API_KEY"
    MISSING_API_KEY = "MISSING_API_KEY"
    EXPIRED_API_KEY = "EXPIRED_API_KEY"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_MESSAGE_FORMAT = "INVALID_MESSAGE_FORMAT"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    UNSUPPORTED_MODEL = "UNSUPPORTED_MODEL"
    UNSUPPORTED_FEATURE = "UNSUPPORTED_FEATURE"
    CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_OVERLOADED = "PROVIDER_OVERLOADED"
    ADAPTER_CONVERSION_ERROR = "ADAPTER_CONVERSION_ERROR"
    ADAPTER_VALIDATION_ERROR = "ADAPTER_VALIDATION_ERROR"
    UNSUPPORTED_CONVERSION = "UNSUPPORTED_CONVERSION"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    DNS_RESOLUTION_FAILED = "DNS_RESOLUTION_FAILED"
    STREAM_ERROR = "STREAM_ERROR"
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"
    STREAM_PARSE_ERROR = "STREAM_PARSE_ERROR"
    STREAM_CANCELLED = "STREAM_CANCELLED"
    NO_BACKEND_AVAILABLE = "NO_BACKEND_AVAILABLE"
    ROUTING_FAILED = "ROUTING_FAILED"
    ALL_BACKENDS_FAILED = "ALL_BACKENDS_FAILED"
    MIDDLEWARE_ERROR = "MIDDLEWARE_ERROR"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_CODE_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_API_KEY: ErrorCategory.AUTHENTICATION,
    ErrorCode.MISSING_API_KEY: ErrorCategory.AUTHENTICATION,
    ErrorCode.EXPIRED_API_KEY: ErrorCategory.AUTHENTICATION,
    ErrorCode.INSUFFICIENT_PERMISSIONS: ErrorCategory.AUTHORIZATION,
    ErrorCode.QUOTA_EXCEEDED: ErrorCategory.AUTHORIZATION,
    ErrorCode.RATE_LIMIT_EXCEEDED: ErrorCategory.RATE_LIMIT,
    ErrorCode.INVALID_REQUEST: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_MESSAGE_FORMAT: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_PARAMETERS: ErrorCategory.VALIDATION,
    ErrorCode.UNSUPPORTED_MODEL: ErrorCategory.VALIDATION,
    ErrorCode.UNSUPPORTED_FEATURE: ErrorCategory.VALIDATION,
    ErrorCode.CONTEXT_LENGTH_EXCEEDED: ErrorCategory.VALIDATION,
    ErrorCode.PROVIDER_ERROR: ErrorCategory.PROVIDER,
    ErrorCode.PROVIDER_UNAVAILABLE: ErrorCategory.PROVIDER,
    ErrorCode.PROVIDER_TIMEOUT: ErrorCategory.PROVIDER,
    ErrorCode.PROVIDER_OVERLOADED: ErrorCategory.PROVIDER,
    ErrorCode.ADAPTER_CONVERSION_ERROR: ErrorCategory.ADAPTER,
    ErrorCode.ADAPTER_VALIDATION_ERROR: ErrorCategory.ADAPTER,
    ErrorCode.UNSUPPORTED_CONVERSION: ErrorCategory.ADAPTER,
    ErrorCode.NETWORK_ERROR: ErrorCategory.NETWORK,
    ErrorCode.CONNECTION_TIMEOUT: ErrorCategory.NETWORK,
    ErrorCode.DNS_RESOLUTION_FAILED: ErrorCategory.NETWORK,
    ErrorCode.STREAM_ERROR: ErrorCategory.STREAM,
    ErrorCode.STREAM_INTERRUPTED: ErrorCategory.STREAM,
    ErrorCode.STREAM_PARSE_ERROR: ErrorCategory.STREAM,
    ErrorCode.STREAM_CANCELLED: ErrorCategory.STREAM,
    ErrorCode.NO_BACKEND_AVAILABLE: ErrorCategory.ROUTING,
    ErrorCode.ROUTING_FAILED: ErrorCategory.ROUTING,
    ErrorCode.ALL_BACKENDS_FAILED: ErrorCategory.ROUTING,
    ErrorCode.MIDDLEWARE_ERROR: ErrorCategory.MIDDLEWARE,
    ErrorCode.REQUEST_CANCELLED: ErrorCategory.CANCELLATION,
    ErrorCode.REQUEST_TIMEOUT: ErrorCategory.CANCELLATION,
    ErrorCode.UNKNOWN_ERROR: ErrorCategory.UNKNOWN,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.UNKNOWN,
}


def category_for_code(code: ErrorCode) -> ErrorCategory:
    """Return the category an error code belongs to."""
    return ERROR_CODE_CATEGORIES.get(code, ErrorCategory.UNKNOWN)


@dataclass(frozen=True)
class ErrorProvenance:
    """Which pipeline stage produced an error.

    Attributes:
        frontend: Frontend adapter name
        backend: Backend adapter name
        middleware: Middleware name
        router: Router name
    """

    frontend: Optional[str] = None
    backend: Optional[str] = None
    middleware: Optional[str] = None
    router: Optional[str] = None

    def merged(self, **kwargs: Optional[str]) -> "ErrorProvenance":
        """Return a copy with missing fields filled from kwargs."""
        updates = {k: v for k, v in kwargs.items() if v is not None and getattr(self, k) is None}
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class AdapterError(Exception):
    """Base exception for all irbridge errors."""

    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        is_retryable: Optional[bool] = None,
        provenance: Optional[ErrorProvenance] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code) if code is not None else self.default_code
        self.is_retryable = self.default_retryable if is_retryable is None else is_retryable
        self.provenance = provenance or ErrorProvenance()
        self.details = details or {}
        self.cause = cause
        self.timestamp = time.time()
        if cause is not None:
            self.__cause__ = cause

    @property
    def category(self) -> ErrorCategory:
        return category_for_code(self.code)

    def is_category(self, category: ErrorCategory) -> bool:
        return self.category == category

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs and error chunks.

        Returns:
            Dictionary representation
        """
        data: dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "is_retryable": self.is_retryable,
            "provenance": self.provenance.to_dict(),
            "timestamp": self.timestamp,
        }
        if self.details:
            data["details"] = self.details
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class AuthenticationError(AdapterError):
    """Invalid, missing or expired credentials."""

    default_code = ErrorCode.INVALID_API_KEY

    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        kwargs["is_retryable"] = False
        super().__init__(message, **kwargs)


class AuthorizationError(AdapterError):
    """Credentials are valid but not allowed to perform the operation."""

    default_code = ErrorCode.INSUFFICIENT_PERMISSIONS

    def __init__(self, message: str = "Permission denied", **kwargs: Any) -> None:
        kwargs["is_retryable"] = False
        super().__init__(message, **kwargs)


class RateLimitError(AdapterError):
    """Rate limit exceeded."""

    default_code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: Optional[float] = None,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        reset_at: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


@dataclass(frozen=True)
class ValidationDetail:
    """A single field level validation failure."""

    field: str
    reason: str
    value: Any = None
    expected: Optional[str] = None


class ValidationError(AdapterError):
    """The request is malformed or carries invalid parameters."""

    default_code = ErrorCode.INVALID_REQUEST

    def __init__(
        self,
        message: str = "Invalid request",
        *,
        validation_details: Optional[list[ValidationDetail]] = None,
        **kwargs: Any,
    ) -> None:
        kwargs["is_retryable"] = False
        super().__init__(message, **kwargs)
        self.validation_details = list(validation_details or [])

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.validation_details:
            data["validation_details"] = [asdict(d) for d in self.validation_details]
        return data


class ProviderError(AdapterError):
    """The upstream provider reported a failure."""

    default_code = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str = "Provider error",
        *,
        status_code: Optional[int] = None,
        provider_details: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        if kwargs.get("is_retryable") is None:
            kwargs["is_retryable"] = status_code is not None and status_code >= 500
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.provider_details = provider_details or {}


class AdapterConversionError(AdapterError):
    """Translating to or from the IR failed."""

    default_code = ErrorCode.ADAPTER_CONVERSION_ERROR

    def __init__(self, message: str = "Conversion failed", **kwargs: Any) -> None:
        kwargs["is_retryable"] = False
        super().__init__(message, **kwargs)


class NetworkError(AdapterError):
    """Connection level failure talking to a provider."""

    default_code = ErrorCode.NETWORK_ERROR
    default_retryable = True

    def __init__(self, message: str = "Network error", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class StreamError(AdapterError):
    """Failure while producing or consuming a stream."""

    default_code = ErrorCode.STREAM_ERROR

    def __init__(self, message: str = "Stream error", **kwargs: Any) -> None:
        if kwargs.get("is_retryable") is None:
            kwargs["is_retryable"] = kwargs.get("code") == ErrorCode.STREAM_INTERRUPTED
        super().__init__(message, **kwargs)


class RouterError(AdapterError):
    """No backend could serve the request."""

    default_code = ErrorCode.ROUTING_FAILED

    def __init__(
        self,
        message: str = "Routing failed",
        *,
        attempted_backends: Optional[list[str]] = None,
        errors: Optional[dict[str, BaseException]] = None,
        **kwargs: Any,
    ) -> None:
        if kwargs.get("is_retryable") is None:
            kwargs["is_retryable"] = kwargs.get("code") == ErrorCode.ALL_BACKENDS_FAILED
        super().__init__(message, **kwargs)
        self.attempted_backends = list(attempted_backends or [])
        self.errors = dict(errors or {})

    @property
    def last_error(self) -> Optional[BaseException]:
        if not self.attempted_backends:
            return self.cause
        return self.errors.get(self.attempted_backends[-1], self.cause)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempted_backends"] = self.attempted_backends
        return data


class MiddlewareError(AdapterError):
    """A middleware raised an unexpected exception."""

    default_code = ErrorCode.MIDDLEWARE_ERROR

    def __init__(
        self,
        message: str = "Middleware failed",
        *,
        middleware_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        kwargs["is_retryable"] = False
        if middleware_name and "provenance" not in kwargs:
            kwargs["provenance"] = ErrorProvenance(middleware=middleware_name)
        super().__init__(message, **kwargs)
        self.middleware_name = middleware_name


class RequestCancelledError(AdapterError):
    """The request was cancelled or its deadline passed."""

    default_code = ErrorCode.REQUEST_CANCELLED

    def __init__(self, message: str = "Request cancelled", **kwargs: Any) -> None:
        kwargs["is_retryable"] = False
        super().__init__(message, **kwargs)

    @property
    def timed_out(self) -> bool:
        return self.code == ErrorCode.REQUEST_TIMEOUT


_CATEGORY_ERRORS: dict[ErrorCategory, type[AdapterError]] = {
    ErrorCategory.AUTHENTICATION: AuthenticationError,
    ErrorCategory.AUTHORIZATION: AuthorizationError,
    ErrorCategory.RATE_LIMIT: RateLimitError,
    ErrorCategory.VALIDATION: ValidationError,
    ErrorCategory.PROVIDER: ProviderError,
    ErrorCategory.ADAPTER: AdapterConversionError,
    ErrorCategory.NETWORK: NetworkError,
    ErrorCategory.STREAM: StreamError,
    ErrorCategory.ROUTING: RouterError,
    ErrorCategory.MIDDLEWARE: MiddlewareError,
    ErrorCategory.CANCELLATION: RequestCancelledError,
}


def error_from_code(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    provenance: Optional[ErrorProvenance] = None,
) -> AdapterError:
    """Rebuild a typed error from a code, e.g. one carried by an error chunk.

    Args:
        code: Error code value
        message: Error message
        details: Optional details
        provenance: Optional provenance

    Returns:
        An AdapterError subclass matching the code's category
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        error_code = ErrorCode.UNKNOWN_ERROR
    error_cls = _CATEGORY_ERRORS.get(category_for_code(error_code), AdapterError)
    details = dict(details or {})
    if error_cls is ProviderError and "status_code" in details:
        return ProviderError(
            message,
            code=error_code,
            status_code=details.get("status_code"),
            details=details,
            provenance=provenance,
        )
    return error_cls(message, code=error_code, details=details, provenance=provenance)


def map_http_status_to_error(
    status_code: int,
    message: str,
    *,
    body: Optional[dict[str, Any]] = None,
    provenance: Optional[ErrorProvenance] = None,
    retry_after: Optional[float] = None,
) -> AdapterError:
    """Map an upstream HTTP status code to the matching error.

    Args:
        status_code: HTTP status code
        message: Error message
        body: Parsed error body
        provenance: Stage that observed the response
        retry_after: Retry-After header value, if any

    Returns:
        Appropriate AdapterError subclass
    """
    kwargs: dict[str, Any] = {"provenance": provenance, "details": {"status_code": status_code}}
    if status_code == 401:
        return AuthenticationError(message, **kwargs)
    if status_code == 403:
        return AuthorizationError(message, **kwargs)
    if status_code == 429:
        return RateLimitError(message, retry_after=retry_after, **kwargs)
    if status_code in (400, 404, 413, 422):
        return ValidationError(message, **kwargs)
    if status_code == 503:
        return ProviderError(
            message,
            code=ErrorCode.PROVIDER_UNAVAILABLE,
            status_code=status_code,
            provider_details=body,
            **kwargs,
        )
    if status_code == 504:
        return ProviderError(
            message,
            code=ErrorCode.PROVIDER_TIMEOUT,
            status_code=status_code,
            provider_details=body,
            **kwargs,
        )
    return ProviderError(message, status_code=status_code, provider_details=body, **kwargs)


def is_retryable(error: BaseException) -> bool:
    """Return True if an error may succeed when attempted again."""
    if isinstance(error, AdapterError):
        return error.is_retryable
    return isinstance(error, (ConnectionError, TimeoutError))
