"""Repository abstraction for execution log persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .models import ExecutionLogEntry, LogFilter, LogPage, LogStats


class LogRepository(Protocol):
    """Protocol for execution log backends."""

    async def append(self, entry: ExecutionLogEntry) -> None:
        """Persist a new entry."""

    async def update(self, entry: ExecutionLogEntry) -> None:
        """Replace the stored entry with the same id."""

    async def delete(self, entry_id: str) -> None:
        """Remove an entry if present."""

    async def get(self, entry_id: str) -> ExecutionLogEntry | None:
        """Retrieve an entry by id."""

    async def query(
        self, filters: Optional[LogFilter] = None, limit: int = 50, offset: int = 0
    ) -> LogPage:
        """Return matching entries, newest first."""

    async def stats(self, now: Optional[datetime] = None) -> LogStats:
        """Return aggregate counters."""

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete entries whose ``expires_at`` has passed; return the count."""
