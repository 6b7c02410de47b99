"""General-purpose functions available to every workflow."""

from __future__ import annotations

from typing import Any, Dict

from ..registry import FunctionRegistry

_OPERATIONS = ("add", "subtract", "multiply", "divide")


def echo(parameters: Dict[str, Any]) -> Dict[str, Any]:
    return parameters


def concatenate(parameters: Dict[str, Any]) -> str:
    strings = parameters.get("strings")
    if not isinstance(strings, list):
        raise ValueError("'strings' must be a list")
    return "".join(str(s) for s in strings)


def calculate(parameters: Dict[str, Any]) -> float:
    """Fold ``values`` left to right with ``operation``."""
    operation = parameters.get("operation")
    values = parameters.get("values")
    if not values or not isinstance(values, list):
        raise ValueError("Invalid values array")
    if operation not in _OPERATIONS:
        raise ValueError(f"Unsupported operation: {operation}")

    result = values[0]
    for value in values[1:]:
        if operation == "add":
            result += value
        elif operation == "subtract":
            result -= value
        elif operation == "multiply":
            result *= value
        else:
            if value == 0:
                raise ZeroDivisionError("Division by zero")
            result /= value
    return result


def register(registry: FunctionRegistry) -> None:
    registry.register("echo", echo, description="Return the parameters unchanged")
    registry.register("concatenate", concatenate, description="Join a list of strings")
    registry.register(
        "calculate", calculate, description="Apply an arithmetic operation to values"
    )
