"""Workflow definition contracts."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from .constants import DEFAULT_WORKFLOW_VERSION
from .parameters import Parameter, parse_parameter, render_parameter


class RetryHandler(BaseModel):
    """Re-attempt a failed step with exponential backoff.

    ``max_attempts`` counts re-attempts after the first failure, so the
    default of ``0`` disables retries. Backoff fields left unset fall back to
    the engine's configured defaults.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action: Literal["retry"] = "retry"
    max_attempts: int = Field(default=0, ge=0, alias="maxAttempts")
    backoff_base: Optional[float] = Field(default=None, ge=0, alias="backoffBase")
    backoff_factor: Optional[float] = Field(default=None, ge=1, alias="backoffFactor")
    jitter: Optional[float] = Field(default=None, ge=0)


class NextHandler(BaseModel):
    """Absorb the error and continue the workflow at ``target``."""

    model_config = ConfigDict(frozen=True)

    action: Literal["next"] = "next"
    target: str


class FallbackHandler(BaseModel):
    """Absorb the error and use ``result`` as the step's raw result."""

    model_config = ConfigDict(frozen=True)

    action: Literal["fallback"] = "fallback"
    result: Any = None


class TerminateHandler(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Literal["terminate"] = "terminate"


ErrorHandler = Annotated[
    Union[RetryHandler, NextHandler, FallbackHandler, TerminateHandler],
    Field(discriminator="action"),
]


class StepSpec(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True)

    name: str
    function: str
    parameters: Dict[str, Parameter] = Field(default_factory=dict)
    output: Dict[str, str] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _parse_parameters(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {name: parse_parameter(raw) for name, raw in value.items()}
        return value

    @field_serializer("parameters")
    def _render_parameters(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        return {name: render_parameter(param) for name, param in parameters.items()}


class WorkflowDefinition(BaseModel):
    """A named, ordered sequence of steps. Immutable once validated."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepSpec]
    error_handlers: Dict[str, ErrorHandler] = Field(
        default_factory=dict, alias="errorHandlers"
    )
    timeout: Optional[float] = Field(default=None, gt=0)
    version: str = DEFAULT_WORKFLOW_VERSION

    @model_validator(mode="after")
    def _check_steps(self) -> "WorkflowDefinition":
        if not self.steps:
            raise ValueError(f"Workflow '{self.name}' must declare at least one step")
        names = [step.name for step in self.steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {', '.join(duplicates)}")
        for step_name, handler in self.error_handlers.items():
            if step_name not in names:
                raise ValueError(f"Error handler declared for unknown step '{step_name}'")
            if isinstance(handler, NextHandler) and handler.target not in names:
                raise ValueError(
                    f"Error handler for '{step_name}' targets unknown step '{handler.target}'"
                )
        return self

    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def index_of(self, name: str) -> int:
        return self.step_names().index(name)

    def handler_for(self, step_name: str) -> Optional[ErrorHandler]:
        return self.error_handlers.get(step_name)

    def output_collisions(self) -> Dict[str, List[str]]:
        """Return output keys declared by more than one step."""
        owners: Dict[str, List[str]] = {}
        for step in self.steps:
            for key in step.output:
                owners.setdefault(key, []).append(step.name)
        return {key: steps for key, steps in owners.items() if len(steps) > 1}

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON/YAML definition form."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "RetryHandler",
    "NextHandler",
    "FallbackHandler",
    "TerminateHandler",
    "ErrorHandler",
    "StepSpec",
    "WorkflowDefinition",
]
