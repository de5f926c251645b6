"""irbridge - provider-agnostic conversational AI gateway core.

Requests are translated by a frontend adapter into the intermediate
representation (IR), pass through a middleware stack, and are executed by a
backend adapter or a Router spreading load over several backends.
"""

__version__ = "0.1.0"

from irbridge.adapters import (
    AdapterCapabilities,
    AdapterMetadata,
    AdapterRegistry,
    BackendAdapter,
    FrontendAdapter,
    GenericFrontendAdapter,
    MockBackendAdapter,
    register_backend,
    register_frontend,
)
from irbridge.bridge import Bridge, BridgeConfig
from irbridge.cancellation import CancellationToken
from irbridge.events import Event, EventEmitter
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
    ValidationError,
)
from irbridge.middleware import Middleware, MiddlewareContext, MiddlewareStack, StreamingMiddleware
from irbridge.router import ModelTranslationConfig, ParallelDispatchResult, Router
from irbridge.types import (
    IRChatRequest,
    IRChatResponse,
    IRMessage,
    IRMetadata,
    IRParameters,
    IRStreamChunk,
    IRUsage,
    IRWarning,
)

__all__ = [
    "__version__",
    # Adapters
    "AdapterCapabilities",
    "AdapterMetadata",
    "AdapterRegistry",
    "BackendAdapter",
    "FrontendAdapter",
    "GenericFrontendAdapter",
    "MockBackendAdapter",
    "register_backend",
    "register_frontend",
    # Bridge and router
    "Bridge",
    "BridgeConfig",
    "ModelTranslationConfig",
    "ParallelDispatchResult",
    "Router",
    # Cancellation and events
    "CancellationToken",
    "Event",
    "EventEmitter",
    # Exceptions
    "AdapterConversionError",
    "AdapterError",
    "AuthenticationError",
    "AuthorizationError",
    "ErrorCategory",
    "ErrorCode",
    "ErrorProvenance",
    "MiddlewareError",
    "NetworkError",
    "ProviderError",
    "RateLimitError",
    "RequestCancelledError",
    "RouterError",
    "StreamError",
    "ValidationError",
    # Middleware
    "Middleware",
    "MiddlewareContext",
    "MiddlewareStack",
    "StreamingMiddleware",
    # Types
    "IRChatRequest",
    "IRChatResponse",
    "IRMessage",
    "IRMetadata",
    "IRParameters",
    "IRStreamChunk",
    "IRUsage",
    "IRWarning",
]
