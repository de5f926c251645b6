"""Middleware stack and built-in middleware."""

from .base import (
    FunctionMiddleware,
    Middleware,
    MiddlewareContext,
    MiddlewareStack,
    NextFunction,
    StreamingMiddleware,
    StreamNextFunction,
)
from .caching import (
    CacheControl,
    CacheKeyBuilder,
    CacheStorage,
    CachingMiddleware,
    InMemoryCacheStorage,
)
from .capabilities import CapabilityMiddleware
from .logging import LoggingMiddleware
from .retry import RetryConfig, RetryMiddleware
from .telemetry import GatewayMetrics, TelemetryMiddleware

__all__ = [
    "FunctionMiddleware",
    "Middleware",
    "MiddlewareContext",
    "MiddlewareStack",
    "NextFunction",
    "StreamingMiddleware",
    "StreamNextFunction",
    "CacheControl",
    "CacheKeyBuilder",
    "CacheStorage",
    "CachingMiddleware",
    "InMemoryCacheStorage",
    "CapabilityMiddleware",
    "LoggingMiddleware",
    "RetryConfig",
    "RetryMiddleware",
    "GatewayMetrics",
    "TelemetryMiddleware",
]
