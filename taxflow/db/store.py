"""Durable lookup and creation of workflow definitions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..contracts import WorkflowDefinition
from .models import StoredWorkflow

logger = logging.getLogger(__name__)


def _to_record(definition: WorkflowDefinition) -> StoredWorkflow:
    return StoredWorkflow(
        name=definition.name,
        description=definition.description,
        version=definition.version,
        document=definition.to_document(),
    )


class WorkflowDefinitionStore(Protocol):
    """Protocol for workflow definition persistence backends."""

    async def get_by_name(self, name: str) -> Optional[StoredWorkflow]:
        """Return the stored workflow called ``name`` if present."""

    async def create(self, definition: WorkflowDefinition) -> StoredWorkflow:
        """Persist ``definition`` and return the stored record.

        If a record with the same name already exists, that record is
        returned instead.
        """

    async def update(self, definition: WorkflowDefinition) -> StoredWorkflow:
        """Overwrite the stored record named ``definition.name``."""


class InMemoryDefinitionStore(WorkflowDefinitionStore):
    """Keep stored workflows in local memory."""

    def __init__(self) -> None:
        self._records: Dict[str, StoredWorkflow] = {}

    async def get_by_name(self, name: str) -> Optional[StoredWorkflow]:
        return self._records.get(name)

    async def create(self, definition: WorkflowDefinition) -> StoredWorkflow:
        return self._records.setdefault(definition.name, _to_record(definition))

    async def update(self, definition: WorkflowDefinition) -> StoredWorkflow:
        record = self._records.get(definition.name)
        if record is None:
            return await self.create(definition)
        record.description = definition.description
        record.version = definition.version
        record.document = definition.to_document()
        return record


class WorkflowDefinitionDB(WorkflowDefinitionStore):
    """Async SQLModel store for workflow definitions."""

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_db(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    async def get_by_name(self, name: str) -> Optional[StoredWorkflow]:
        async with self.session() as session:
            result = await session.execute(
                select(StoredWorkflow).where(StoredWorkflow.name == name)
            )
            return result.scalars().first()

    async def create(self, definition: WorkflowDefinition) -> StoredWorkflow:
        record = _to_record(definition)
        async with self.session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                # another writer stored the same name first
                await session.rollback()
                existing = await self.get_by_name(definition.name)
                if existing is None:
                    raise
                logger.debug(f"Workflow definition already stored: {definition.name}")
                return existing
            await session.refresh(record)
        logger.info(f"Stored workflow definition: {definition.name}")
        return record

    async def update(self, definition: WorkflowDefinition) -> StoredWorkflow:
        async with self.session() as session:
            result = await session.execute(
                select(StoredWorkflow).where(StoredWorkflow.name == definition.name)
            )
            record = result.scalars().first()
            if record is None:
                return await self.create(definition)
            record.description = definition.description
            record.version = definition.version
            record.document = definition.to_document()
            session.add(record)
            await session.commit()
            await session.refresh(record)
        logger.info(f"Updated stored workflow definition: {definition.name}")
        return record

    async def dispose(self) -> None:
        await self.engine.dispose()


def get_definition_store(database_url: Optional[str] = None) -> WorkflowDefinitionStore:
    """Return a definition store for ``database_url`` (in-memory when unset)."""
    if not database_url:
        return InMemoryDefinitionStore()
    return WorkflowDefinitionDB(database_url)
