"""In-memory implementation of the execution repository."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

from ..constants import DEFAULT_MAX_EXECUTIONS
from .models import Execution, ExecutionStatus
from .repository import ExecutionRepository

logger = logging.getLogger(__name__)


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. At most ``max_executions`` records
    are kept; the oldest terminal records are evicted first and running
    records are never evicted.
    """

    def __init__(self, max_executions: int = DEFAULT_MAX_EXECUTIONS) -> None:
        self._executions: OrderedDict[str, Execution] = OrderedDict()
        self.max_executions = max_executions

    # ------------------------------------------------------------------
    def _evict(self) -> None:
        overflow = len(self._executions) - self.max_executions
        if overflow <= 0:
            return
        victims = [
            execution_id
            for execution_id, execution in self._executions.items()
            if execution.is_terminal
        ][:overflow]
        for execution_id in victims:
            del self._executions[execution_id]
        if victims:
            logger.debug(f"Evicted {len(victims)} terminal execution records")

    async def create(self, execution: Execution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)
        self._evict()

    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution | None:
        current = self._executions.get(execution_id)
        if current is None:
            return None
        updated = current.merged(fields)
        self._executions[execution_id] = updated
        if updated.is_terminal:
            self._evict()
        return updated.model_copy(deep=True)

    async def get(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list(self, status: ExecutionStatus | None = None) -> list[Execution]:
        return [
            execution.model_copy(deep=True)
            for execution in self._executions.values()
            if status is None or execution.status == status
        ]
