"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Any, Protocol

from .models import Execution, ExecutionStatus


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends."""

    async def create(self, execution: Execution) -> None:
        """Persist a new execution record."""

    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution | None:
        """Merge ``fields`` into the stored record.

        Returns the updated record, or ``None`` when the id is unknown.
        """

    async def get(self, execution_id: str) -> Execution | None:
        """Retrieve an execution by id."""

    async def list(self, status: ExecutionStatus | None = None) -> list[Execution]:
        """Return persisted executions, oldest first."""
