"""Typed step parameters.

A step parameter is either a literal value, a reference into the workflow
input, or a reference into the raw result of an earlier step. Definitions
written as JSON or YAML use the string form ``$input.<path>`` and
``$steps.<step>.<path>``; those strings are parsed into the typed variants
once, when the definition is validated, and rendered back to the string
form when the definition is serialized.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import INPUT_ROOT, REFERENCE_MARKER, STEPS_ROOT


class LiteralParam(BaseModel):
    """A value passed to the function unchanged."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["literal"] = "literal"
    value: Any = None


class InputRef(BaseModel):
    """Dotted path into the workflow input."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["input"] = "input"
    path: str = ""


class StepRef(BaseModel):
    """Dotted path into a prior step's raw result."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["step"] = "step"
    step: str
    path: str = ""


Parameter = Annotated[
    Union[LiteralParam, InputRef, StepRef], Field(discriminator="kind")
]


def parse_parameter(value: Any) -> LiteralParam | InputRef | StepRef:
    """Convert a raw definition value into a typed parameter."""
    if isinstance(value, (LiteralParam, InputRef, StepRef)):
        return value
    if not isinstance(value, str) or not value.startswith(REFERENCE_MARKER):
        return LiteralParam(value=value)

    # "$$..." escapes a literal string that starts with the marker
    if value.startswith(REFERENCE_MARKER * 2):
        return LiteralParam(value=value[len(REFERENCE_MARKER) :])

    parts = value[len(REFERENCE_MARKER) :].split(".")
    if parts[0] == INPUT_ROOT:
        return InputRef(path=".".join(parts[1:]))
    if parts[0] == STEPS_ROOT and len(parts) >= 2 and parts[1]:
        return StepRef(step=parts[1], path=".".join(parts[2:]))
    return LiteralParam(value=value)


def render_parameter(param: LiteralParam | InputRef | StepRef) -> Any:
    """Render a typed parameter back to its definition-file form."""
    if isinstance(param, InputRef):
        return ".".join(
            part for part in (REFERENCE_MARKER + INPUT_ROOT, param.path) if part
        )
    if isinstance(param, StepRef):
        return ".".join(
            part
            for part in (REFERENCE_MARKER + STEPS_ROOT, param.step, param.path)
            if part
        )
    if isinstance(param.value, str) and param.value.startswith(REFERENCE_MARKER):
        return REFERENCE_MARKER + param.value
    return param.value


__all__ = [
    "LiteralParam",
    "InputRef",
    "StepRef",
    "Parameter",
    "parse_parameter",
    "render_parameter",
]
