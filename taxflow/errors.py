"""Error taxonomy for the function and workflow engine."""

from __future__ import annotations

from typing import Any, Optional


class TaxflowError(Exception):
    """Base class for engine errors carrying a stable error code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class FunctionNotFound(TaxflowError):
    """Raised when a named function is absent from the registry."""

    code = "FUNCTION_NOT_FOUND"

    def __init__(self, name: str) -> None:
        super().__init__(f"Function '{name}' not found")
        self.name = name


class FunctionExecutionError(TaxflowError):
    """Raised when a function handler fails."""

    code = "FUNCTION_EXECUTION_ERROR"

    def __init__(self, name: str, original: BaseException) -> None:
        super().__init__(
            f"Error executing function '{name}': {original}",
            details={"function": name, "type": type(original).__name__},
        )
        self.name = name
        self.original = original


class WorkflowNotFound(TaxflowError):
    code = "WORKFLOW_NOT_FOUND"

    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow '{name}' not found")
        self.name = name


class WorkflowAlreadyExists(TaxflowError):
    code = "WORKFLOW_ALREADY_EXISTS"

    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow with name '{name}' already exists")
        self.name = name


class InvalidWorkflowDefinition(TaxflowError):
    code = "INVALID_WORKFLOW"


class ParameterResolutionError(TaxflowError):
    """Raised in strict mode when a reference points at missing data."""

    code = "PARAMETER_RESOLUTION_ERROR"


class WorkflowExecutionError(TaxflowError):
    """An error escaped step-level handling and terminated a workflow."""

    code = "WORKFLOW_EXECUTION_ERROR"


class StepFailed(WorkflowExecutionError):
    """Wraps the unrecovered failure of a single step."""

    def __init__(self, step: str, cause: BaseException, attempts: int = 1) -> None:
        cause_code = getattr(cause, "code", None)
        details: dict[str, Any] = {"step": step, "attempts": attempts}
        if cause_code:
            details["cause"] = cause_code
        if isinstance(cause, TaxflowError) and cause.details is not None:
            details["causeDetails"] = cause.details
        super().__init__(f"Step '{step}' failed: {cause}", details=details)
        self.step = step
        self.cause = cause
        self.attempts = attempts


class WorkflowTimeout(WorkflowExecutionError):
    code = "WORKFLOW_TIMEOUT"

    def __init__(self, workflow: str, timeout: float, step: Optional[str] = None) -> None:
        super().__init__(
            f"Workflow '{workflow}' exceeded its timeout of {timeout}s",
            details={"step": step, "timeout": timeout},
        )
        self.step = step


class ResultNotSerializable(TaxflowError):
    """Raised when a function returns a value that is not JSON-compatible."""

    code = "RESULT_NOT_SERIALIZABLE"

    def __init__(self, name: str, original: BaseException) -> None:
        super().__init__(
            f"Result of function '{name}' is not JSON-compatible: {original}",
            details={"function": name},
        )
        self.name = name
        self.original = original


class DefinitionStoreError(TaxflowError):
    """Raised when the workflow definition store cannot be read or written."""

    code = "DEFINITION_STORE_ERROR"


class ExecutionNotFound(TaxflowError):
    code = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' not found")
        self.execution_id = execution_id


__all__ = [
    "TaxflowError",
    "FunctionNotFound",
    "FunctionExecutionError",
    "WorkflowNotFound",
    "WorkflowAlreadyExists",
    "InvalidWorkflowDefinition",
    "ParameterResolutionError",
    "WorkflowExecutionError",
    "StepFailed",
    "WorkflowTimeout",
    "ResultNotSerializable",
    "DefinitionStoreError",
    "ExecutionNotFound",
]
