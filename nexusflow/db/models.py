from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRow(SQLModel, table=True):
    """A saved workflow; ``document`` holds its canonical IR."""

    id: str = Field(primary_key=True)
    name: str
    is_active: bool = True
    document: str
    saved_at: datetime = Field(default_factory=_utcnow)


class PipelineRow(SQLModel, table=True):
    """Source index over the pipelines inside a saved workflow."""

    id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflowrow.id", index=True)
    source_type: str
    source_id: Optional[int] = Field(default=None, index=True)
    destination: Optional[str] = None
    is_active: bool = True
