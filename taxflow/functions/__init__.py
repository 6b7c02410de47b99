"""Built-in function providers."""

from __future__ import annotations

from typing import Optional

from ..registry import FunctionRegistry
from . import standard
from .property import (
    InMemoryPropertySource,
    Property,
    PropertyDataSource,
    PropertyFunctions,
    PropertyValuation,
)


def register_standard_functions(
    registry: FunctionRegistry, property_source: Optional[PropertyDataSource] = None
) -> None:
    """Register the general-purpose and property functions on ``registry``."""
    standard.register(registry)
    PropertyFunctions(property_source or InMemoryPropertySource(), registry).register()


__all__ = [
    "InMemoryPropertySource",
    "Property",
    "PropertyDataSource",
    "PropertyFunctions",
    "PropertyValuation",
    "register_standard_functions",
]
