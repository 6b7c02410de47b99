"""Data models for execution records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorDetail(BaseModel):
    """Structured failure captured on a failed execution."""

    code: str
    message: str
    step: Optional[str] = None
    details: Optional[Any] = None


class Execution(BaseModel):
    """Run-time record of one workflow invocation.

    ``id`` is ``None`` only for detached records returned when a workflow
    fails before any execution was created; those are never stored.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorDetail] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    current_step: Optional[str] = None
    step_results: dict[str, Any] = Field(default_factory=dict)
    attempts: dict[str, int] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    def merged(self, fields: dict[str, Any]) -> "Execution":
        """Return a copy with ``fields`` applied and re-validated."""
        data = self.model_dump()
        data.update(fields)
        return Execution.model_validate(data)
