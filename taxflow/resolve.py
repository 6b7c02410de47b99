"""Parameter resolution against workflow input and prior step results."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import ParameterResolutionError
from .parameters import InputRef, LiteralParam, StepRef, parse_parameter

logger = logging.getLogger(__name__)

_MISSING = object()


def _walk(obj: Any, path: str) -> Any:
    if not path:
        return obj
    current = obj
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return current


def get_by_path(obj: Any, path: str, default: Any = None) -> Any:
    """Return the value at dotted ``path`` inside ``obj``.

    Mapping keys and sequence indices are supported. Any missing intermediate
    yields ``default`` instead of raising. An empty path returns ``obj``.
    """
    value = _walk(obj, path)
    return default if value is _MISSING else value


def resolve(
    param: Any,
    input: Mapping[str, Any],
    step_results: Mapping[str, Any],
    strict: bool = False,
) -> Any:
    """Resolve one parameter to the value passed to a function.

    Missing references resolve to ``None`` unless ``strict`` is set, in which
    case a :class:`ParameterResolutionError` is raised.
    """
    param = parse_parameter(param)
    match param:
        case LiteralParam(value=value):
            return value
        case InputRef(path=path):
            value = _walk(input, path)
            if value is _MISSING:
                if strict:
                    raise ParameterResolutionError(
                        f"Input path '{path}' not found",
                        details={"root": "input", "path": path},
                    )
                logger.debug(f"Input path '{path}' missing; resolving to None")
                return None
            return value
        case StepRef(step=step, path=path):
            if step not in step_results:
                if strict:
                    raise ParameterResolutionError(
                        f"Step '{step}' has no result",
                        details={"root": "steps", "step": step, "path": path},
                    )
                logger.debug(f"Step '{step}' has no result; resolving to None")
                return None
            value = _walk(step_results[step], path)
            if value is _MISSING:
                if strict:
                    raise ParameterResolutionError(
                        f"Path '{path}' not found in result of step '{step}'",
                        details={"root": "steps", "step": step, "path": path},
                    )
                return None
            return value
    raise TypeError(f"Unsupported parameter type: {type(param).__name__}")


def resolve_parameters(
    params: Mapping[str, Any],
    input: Mapping[str, Any],
    step_results: Mapping[str, Any],
    strict: bool = False,
) -> dict[str, Any]:
    """Resolve every declared parameter of a step."""
    return {
        name: resolve(value, input, step_results, strict=strict)
        for name, value in params.items()
    }


__all__ = ["get_by_path", "resolve", "resolve_parameters"]
