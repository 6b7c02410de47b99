"""Execution tracker: the engine's view of execution records."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from .persistence import Execution, ExecutionRepository, ExecutionStatus

logger = logging.getLogger(__name__)


class ExecutionTracker:
    """Create, update and look up execution records.

    Updates for one execution id are serialized with a per-id lock so that
    concurrent writers never interleave a read-modify-write; there is no
    version check, so the last writer wins. Records for different ids never
    share a lock.
    """

    def __init__(self, repository: ExecutionRepository) -> None:
        self._repository = repository
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def repository(self) -> ExecutionRepository:
        return self._repository

    def _lock_for(self, execution_id: str) -> asyncio.Lock:
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = self._locks.setdefault(execution_id, asyncio.Lock())
        return lock

    async def create(
        self,
        workflow_id: Optional[str],
        input: Dict[str, Any],
        workflow_name: Optional[str] = None,
        current_step: Optional[str] = None,
    ) -> Execution:
        execution = Execution(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            status=ExecutionStatus.RUNNING,
            input=input,
            current_step=current_step,
        )
        await self._repository.create(execution)
        logger.debug(f"Created execution {execution.id} for workflow {workflow_name}")
        return execution

    async def update(self, execution_id: str, **fields: Any) -> Optional[Execution]:
        """Merge ``fields`` into the record; ``None`` if the id is unknown."""
        async with self._lock_for(execution_id):
            updated = await self._repository.update(execution_id, fields)
            if updated is not None and updated.is_terminal:
                self._locks.pop(execution_id, None)
        if updated is None:
            logger.warning(f"Update for unknown execution {execution_id} ignored")
        return updated

    async def get(self, execution_id: str) -> Optional[Execution]:
        return await self._repository.get(execution_id)

    async def list(self, status: Optional[ExecutionStatus] = None) -> list[Execution]:
        return await self._repository.list(status)
