"""Data models for execution logs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..contracts import IRModel

LogStatus = Literal["SUCCESS", "FAILED", "RETRY", "DROPPED", "PENDING"]

TERMINAL_STATUSES = ("SUCCESS", "FAILED", "DROPPED")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionLogEntry(IRModel):
    """One pipeline run (or one dropped record) as seen by operators."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data_id: str
    source: str
    destination: Optional[str] = None
    host: Optional[str] = None
    data_sent: Any = None
    data_received: Any = None
    message: Optional[str] = None
    status: LogStatus = "PENDING"
    retry_count: int = Field(default=0, ge=0)
    workflow_id: Optional[str] = None
    pipeline_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class LogFilter(BaseModel):
    """Criteria for listing log entries. Unset fields match everything."""

    status: Optional[LogStatus] = None
    source: Optional[str] = None
    destination: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("date_from", "date_to")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def matches(self, entry: ExecutionLogEntry) -> bool:
        if self.status and entry.status != self.status:
            return False
        if self.source and entry.source != self.source:
            return False
        if self.destination and entry.destination != self.destination:
            return False
        if self.date_from and entry.created_at < self.date_from:
            return False
        if self.date_to and entry.created_at > self.date_to:
            return False
        return True


class LogPage(BaseModel):
    items: List[ExecutionLogEntry] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class LogStats(IRModel):
    """Aggregate counters for the log dashboard."""

    total_logs: int = 0
    success_count: int = 0
    failed_count: int = 0
    retry_count: int = 0
    dropped_count: int = 0
    today_count: int = 0
    last_24_hours: int = Field(default=0, alias="last24Hours")
    by_source: Dict[str, int] = Field(default_factory=dict)
    by_destination: Dict[str, int] = Field(default_factory=dict)
