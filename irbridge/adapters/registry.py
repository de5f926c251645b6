"""Adapter registry for building adapters from configuration."""

from typing import Any, Callable, Type, TypeVar

from .base import BackendAdapter, FrontendAdapter

B = TypeVar("B", bound=Type[BackendAdapter])
F = TypeVar("F", bound=Type[FrontendAdapter])


class AdapterRegistry:
    """Registry mapping adapter type names to adapter classes."""

    _backends: dict[str, Type[BackendAdapter]] = {}
    _frontends: dict[str, Type[FrontendAdapter]] = {}

    @classmethod
    def register_backend(cls, type_name: str, adapter_class: Type[BackendAdapter]) -> None:
        """Register a backend adapter class.

        Args:
            type_name: The adapter type identifier used in configuration
            adapter_class: The backend class
        """
        cls._backends[type_name] = adapter_class

    @classmethod
    def register_frontend(cls, type_name: str, adapter_class: Type[FrontendAdapter]) -> None:
        """Register a frontend adapter class.

        Args:
            type_name: The adapter type identifier used in configuration
            adapter_class: The frontend class
        """
        cls._frontends[type_name] = adapter_class

    @classmethod
    def get_backend(cls, type_name: str) -> Type[BackendAdapter]:
        """Get a backend class by type name.

        Raises:
            KeyError: If the type is not registered
        """
        if type_name not in cls._backends:
            raise KeyError(f"Backend adapter '{type_name}' is not registered")
        return cls._backends[type_name]

    @classmethod
    def get_frontend(cls, type_name: str) -> Type[FrontendAdapter]:
        """Get a frontend class by type name.

        Raises:
            KeyError: If the type is not registered
        """
        if type_name not in cls._frontends:
            raise KeyError(f"Frontend adapter '{type_name}' is not registered")
        return cls._frontends[type_name]

    @classmethod
    def create_backend(cls, type_name: str, **kwargs: Any) -> BackendAdapter:
        """Instantiate a registered backend."""
        return cls.get_backend(type_name)(**kwargs)

    @classmethod
    def create_frontend(cls, type_name: str, **kwargs: Any) -> FrontendAdapter:
        """Instantiate a registered frontend."""
        return cls.get_frontend(type_name)(**kwargs)

    @classmethod
    def list_backends(cls) -> list[str]:
        return list(cls._backends.keys())

    @classmethod
    def list_frontends(cls) -> list[str]:
        return list(cls._frontends.keys())

    @classmethod
    def unregister(cls, type_name: str) -> None:
        cls._backends.pop(type_name, None)
        cls._frontends.pop(type_name, None)


def register_backend(type_name: str) -> Callable[[B], B]:
    """Decorator to register a backend adapter.

    Usage:
        @register_backend("my-provider")
        class MyBackend(BackendAdapter):
            ...
    """
    def decorator(adapter_class: B) -> B:
        AdapterRegistry.register_backend(type_name, adapter_class)
        return adapter_class
    return decorator


def register_frontend(type_name: str) -> Callable[[F], F]:
    """Decorator to register a frontend adapter."""
    def decorator(adapter_class: F) -> F:
        AdapterRegistry.register_frontend(type_name, adapter_class)
        return adapter_class
    return decorator

