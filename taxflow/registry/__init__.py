"""Function and workflow registries."""

from __future__ import annotations

from .functions import FunctionEntry, FunctionRegistry, Invocable
from .workflows import WorkflowRegistry, load_definition

__all__ = [
    "FunctionEntry",
    "FunctionRegistry",
    "Invocable",
    "WorkflowRegistry",
    "load_definition",
]
