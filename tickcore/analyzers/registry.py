"""Analyzer registry for discovering and instantiating analyzers.

Usage:
    @register_analyzer("my_analyzer")
    class MyAnalyzer(BaseAnalyzer):
        ...

    analyzer = create_analyzer("my_analyzer", scheduler=scheduler)
    names = list_analyzers()
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Global registry: analyzer_name -> analyzer_class
_REGISTRY: dict[str, type] = {}


def register_analyzer(name: str):
    """Decorator to register an analyzer class under a given name.

    Raises:
        ValueError: If an analyzer with the same name is already registered.
    """

    def decorator(cls):
        if name in _REGISTRY:
            raise ValueError(
                f"Analyzer '{name}' is already registered by {_REGISTRY[name].__name__}"
            )
        _REGISTRY[name] = cls
        cls.name = name
        logger.debug("Registered analyzer: %s -> %s", name, cls.__name__)
        return cls

    return decorator


def get_analyzer_class(name: str) -> type:
    """Get the analyzer class by name (without instantiating).

    Raises:
        KeyError: If no analyzer is registered under the given name.
    """
    cls = _REGISTRY.get(name)
    if cls is None:
        available = ", ".join(sorted(_REGISTRY.keys())) or "(none)"
        raise KeyError(f"Unknown analyzer '{name}'. Available: {available}")
    return cls


def create_analyzer(name: str, **kwargs: Any):
    """Create an analyzer instance by name.

    Args:
        name: Registered analyzer name.
        **kwargs: Arguments passed to the analyzer constructor.
    """
    return get_analyzer_class(name)(**kwargs)


def list_analyzers() -> list[str]:
    """Return a sorted list of registered analyzer names."""
    return sorted(_REGISTRY.keys())
