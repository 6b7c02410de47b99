from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredWorkflow(SQLModel, table=True):
    """Persisted form of a workflow definition."""

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    version: str = Field(default="1.0.0")
    enabled: bool = Field(default=True)
    document: dict = Field(sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
