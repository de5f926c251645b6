"""Adapter contracts, registry and built-in adapters."""

from .base import (
    AdapterCapabilities,
    AdapterMetadata,
    BackendAdapter,
    FrontendAdapter,
    ListModelsResult,
    ModelInfo,
    supports_operation,
)
from .registry import AdapterRegistry, register_backend, register_frontend
from .generic import GenericFrontendAdapter
from .mock import (
    MockBackendAdapter,
    MockResponse,
    create_echo_backend,
    create_error_backend,
)

__all__ = [
    "AdapterCapabilities",
    "AdapterMetadata",
    "BackendAdapter",
    "FrontendAdapter",
    "ListModelsResult",
    "ModelInfo",
    "supports_operation",
    "AdapterRegistry",
    "register_backend",
    "register_frontend",
    "GenericFrontendAdapter",
    "MockBackendAdapter",
    "MockResponse",
    "create_echo_backend",
    "create_error_backend",
]
