"""In-memory implementation of the log repository."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Optional

from .models import ExecutionLogEntry, LogFilter, LogPage, LogStats, utcnow
from .repository import LogRepository


class InMemoryLogRepository(LogRepository):
    """Store execution logs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ExecutionLogEntry] = {}

    async def append(self, entry: ExecutionLogEntry) -> None:
        self._entries[entry.id] = entry

    async def update(self, entry: ExecutionLogEntry) -> None:
        if entry.id in self._entries:
            self._entries[entry.id] = entry

    async def delete(self, entry_id: str) -> None:
        self._entries.pop(entry_id, None)

    async def get(self, entry_id: str) -> ExecutionLogEntry | None:
        return self._entries.get(entry_id)

    async def query(
        self, filters: Optional[LogFilter] = None, limit: int = 50, offset: int = 0
    ) -> LogPage:
        filters = filters or LogFilter()
        matched = sorted(
            (e for e in self._entries.values() if filters.matches(e)),
            key=lambda e: e.created_at,
            reverse=True,
        )
        return LogPage(
            items=matched[offset : offset + limit],
            total=len(matched),
            limit=limit,
            offset=offset,
        )

    async def stats(self, now: Optional[datetime] = None) -> LogStats:
        now = now or utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        entries = list(self._entries.values())
        statuses = Counter(e.status for e in entries)
        return LogStats(
            total_logs=len(entries),
            success_count=statuses["SUCCESS"],
            failed_count=statuses["FAILED"],
            retry_count=statuses["RETRY"],
            dropped_count=statuses["DROPPED"],
            today_count=sum(1 for e in entries if e.created_at >= today),
            last_24_hours=sum(
                1 for e in entries if e.created_at >= now - timedelta(hours=24)
            ),
            by_source=dict(Counter(e.source for e in entries)),
            by_destination=dict(
                Counter(e.destination for e in entries if e.destination)
            ),
        )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        expired = [
            e.id for e in self._entries.values() if e.expires_at and e.expires_at <= now
        ]
        for entry_id in expired:
            del self._entries[entry_id]
        return len(expired)
