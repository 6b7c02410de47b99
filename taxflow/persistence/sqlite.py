"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any

from .models import Execution, ExecutionStatus
from .repository import ExecutionRepository


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution records using SQLite.

    Each record is stored as a JSON document alongside the columns used for
    filtering.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                workflow_name TEXT,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _merge(self, execution_id: str, fields: dict[str, Any]) -> Execution | None:
        with self._write_lock:
            row = self._fetchone(
                "SELECT document FROM executions WHERE id = ?", execution_id
            )
            if not row:
                return None
            updated = Execution.model_validate_json(row["document"]).merged(fields)
            self._execute(
                "UPDATE executions SET status = ?, document = ? WHERE id = ?",
                updated.status.value,
                updated.model_dump_json(),
                execution_id,
            )
            return updated

    # ------------------------------------------------------------------
    # Repository API
    async def create(self, execution: Execution) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO executions (id, workflow_id, workflow_name, status, started_at, document) VALUES (?, ?, ?, ?, ?, ?)",
            execution.id,
            execution.workflow_id,
            execution.workflow_name,
            execution.status.value,
            execution.started_at.isoformat(),
            execution.model_dump_json(),
        )

    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution | None:
        return await asyncio.to_thread(self._merge, execution_id, fields)

    async def get(self, execution_id: str) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM executions WHERE id = ?",
            execution_id,
        )
        if not row:
            return None
        return Execution.model_validate_json(row["document"])

    async def list(self, status: ExecutionStatus | None = None) -> list[Execution]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM executions ORDER BY started_at, rowid",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM executions WHERE status = ? ORDER BY started_at, rowid",
                status.value,
            )
        return [Execution.model_validate_json(row["document"]) for row in rows]
