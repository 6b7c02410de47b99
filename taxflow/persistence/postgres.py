"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

from typing import Any

import asyncpg

from .models import Execution, ExecutionStatus
from .repository import ExecutionRepository


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution records using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                workflow_name TEXT,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                document JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def create(self, execution: Execution) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO executions (id, workflow_id, workflow_name, status, started_at, document) VALUES ($1, $2, $3, $4, $5, $6)",
                execution.id,
                execution.workflow_id,
                execution.workflow_name,
                execution.status.value,
                execution.started_at,
                execution.model_dump_json(),
            )
        finally:
            await conn.close()

    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution | None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT document::text AS document FROM executions WHERE id = $1 FOR UPDATE",
                    execution_id,
                )
                if not row:
                    return None
                updated = Execution.model_validate_json(row["document"]).merged(fields)
                await conn.execute(
                    "UPDATE executions SET status = $1, document = $2 WHERE id = $3",
                    updated.status.value,
                    updated.model_dump_json(),
                    execution_id,
                )
        finally:
            await conn.close()
        return updated

    async def get(self, execution_id: str) -> Execution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document::text AS document FROM executions WHERE id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return Execution.model_validate_json(row["document"])

    async def list(self, status: ExecutionStatus | None = None) -> list[Execution]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch(
                    "SELECT document::text AS document FROM executions ORDER BY started_at"
                )
            else:
                rows = await conn.fetch(
                    "SELECT document::text AS document FROM executions WHERE status = $1 ORDER BY started_at",
                    status.value,
                )
        finally:
            await conn.close()
        return [Execution.model_validate_json(r["document"]) for r in rows]
