"""Request/response surface over the workflow engine.

Requests and responses are JSON-object shapes with camelCase keys. Every
failure is turned into an ``{"code", "message"}`` error body; tracebacks
are logged and never returned.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .engine import WorkflowEngine
from .errors import TaxflowError
from .persistence import ErrorDetail, Execution, ExecutionStatus

logger = logging.getLogger(__name__)


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ErrorBody(_Wire):
    code: str
    message: str
    details: Optional[Any] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorBody":
        if isinstance(error, TaxflowError):
            return cls(code=error.code, message=error.message, details=error.details)
        if isinstance(error, ValidationError):
            return cls(
                code="INVALID_REQUEST",
                message="Invalid request",
                details=error.errors(
                    include_url=False, include_context=False, include_input=False
                ),
            )
        return cls(code="INTERNAL_ERROR", message="Internal error")

    @classmethod
    def from_detail(cls, detail: ErrorDetail) -> "ErrorBody":
        return cls(code=detail.code, message=detail.message, details=detail.details)


class FunctionCallRequest(_Wire):
    function_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    call_id: Optional[str] = None


class FunctionCallResponse(_Wire):
    call_id: Optional[str] = None
    status: Literal["success", "error"]
    result: Any = None
    error: Optional[ErrorBody] = None
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class WorkflowRunRequest(_Wire):
    workflow_name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class WorkflowRunResponse(_Wire):
    execution_id: Optional[str] = None
    status: ExecutionStatus
    output: Optional[Dict[str, Any]] = None
    error: Optional[ErrorBody] = None

    @classmethod
    def from_execution(cls, execution: Execution) -> "WorkflowRunResponse":
        if execution.status == ExecutionStatus.FAILED:
            error = (
                ErrorBody.from_detail(execution.error)
                if execution.error
                else ErrorBody(code="WORKFLOW_EXECUTION_ERROR", message="Workflow failed")
            )
            return cls(execution_id=execution.id, status=execution.status, error=error)
        return cls(
            execution_id=execution.id, status=execution.status, output=execution.output
        )


class EngineService:
    """Turns engine calls into structured responses."""

    def __init__(self, engine: WorkflowEngine) -> None:
        self.engine = engine

    async def invoke_function(
        self, request: Union[FunctionCallRequest, Mapping[str, Any]]
    ) -> FunctionCallResponse:
        call_id = request.get("callId") if isinstance(request, Mapping) else None
        try:
            if not isinstance(request, FunctionCallRequest):
                request = FunctionCallRequest.model_validate(request)
            call_id = request.call_id or str(uuid.uuid4())
            result = await self.engine.invoke_function(
                request.function_name, request.parameters
            )
        except (TaxflowError, ValidationError) as e:
            logger.warning(f"Error invoking function: {e}")
            return FunctionCallResponse(
                call_id=call_id, status="error", error=ErrorBody.from_exception(e)
            )
        except Exception as e:
            logger.exception("Unexpected error invoking function")
            return FunctionCallResponse(
                call_id=call_id, status="error", error=ErrorBody.from_exception(e)
            )
        logger.info(f"Function '{request.function_name}' invoked successfully")
        return FunctionCallResponse(call_id=call_id, status="success", result=result)

    async def run_workflow(
        self, request: Union[WorkflowRunRequest, Mapping[str, Any]]
    ) -> WorkflowRunResponse:
        try:
            if not isinstance(request, WorkflowRunRequest):
                request = WorkflowRunRequest.model_validate(request)
        except ValidationError as e:
            logger.warning(f"Invalid workflow request: {e}")
            return WorkflowRunResponse(
                status=ExecutionStatus.FAILED, error=ErrorBody.from_exception(e)
            )
        execution = await self.engine.execute_workflow(request.workflow_name, request.input)
        return WorkflowRunResponse.from_execution(execution)

    async def get_execution(self, execution_id: str) -> Dict[str, Any]:
        """Return the execution record as a JSON object.

        Raises:
            ExecutionNotFound: If no execution has ``execution_id``.
        """
        execution = await self.engine.get_execution(execution_id)
        return execution.model_dump(mode="json", by_alias=True)

    async def health(self) -> Dict[str, Any]:
        running = await self.engine.list_executions(ExecutionStatus.RUNNING)
        return {
            "status": "ok",
            "functionsRegistered": len(self.engine.functions),
            "workflowsRegistered": len(self.engine.workflows),
            "activeWorkflowExecutions": len(running),
        }
