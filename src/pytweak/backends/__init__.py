"""Store registry and factory."""
from __future__ import annotations

from typing import Any

from .base import BaseStore, FirewallRule, FirewallStore, TaskStore

_REGISTRY: dict[str, type[BaseStore]] = {}


def register_backend(backend: type[BaseStore]) -> type[BaseStore]:
    """Register a store class and return it for decorator use."""
    _REGISTRY[backend.name] = backend
    return backend


def get_backend(name: str, **options: Any) -> BaseStore:
    backend_cls = _REGISTRY.get(name.lower())
    if backend_cls is None:
        raise ValueError(f"No backend named {name!r}")
    return backend_cls(**options)


def available_backends() -> list[str]:
    return sorted(_REGISTRY)


# register default backends
from . import memory_backend, winreg_backend, yaml_backend  # noqa: F401,E402

__all__ = [
    "BaseStore",
    "FirewallRule",
    "FirewallStore",
    "TaskStore",
    "available_backends",
    "get_backend",
    "register_backend",
]
