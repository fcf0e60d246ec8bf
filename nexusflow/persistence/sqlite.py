"""SQLite implementation of the log repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .models import ExecutionLogEntry, LogFilter, LogPage, LogStats, utcnow
from .repository import LogRepository

_COLUMNS = (
    "id, data_id, source, destination, host, data_sent, data_received, message, "
    "status, retry_count, workflow_id, pipeline_id, created_at, updated_at, expires_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so timestamps compare correctly as strings."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _from_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteLogRepository(LogRepository):
    """Persist execution logs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_logs (
                id TEXT PRIMARY KEY,
                data_id TEXT NOT NULL,
                source TEXT NOT NULL,
                destination TEXT,
                host TEXT,
                data_sent TEXT,
                data_received TEXT,
                message TEXT,
                status TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                workflow_id TEXT,
                pipeline_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                expires_at TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_execution_logs_created ON execution_logs (created_at)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _row_params(entry: ExecutionLogEntry) -> Tuple[Any, ...]:
        return (
            entry.id,
            entry.data_id,
            entry.source,
            entry.destination,
            entry.host,
            json.dumps(entry.data_sent, default=str),
            json.dumps(entry.data_received, default=str),
            entry.message,
            entry.status,
            entry.retry_count,
            entry.workflow_id,
            entry.pipeline_id,
            _ts(entry.created_at),
            _ts(entry.updated_at),
            _ts(entry.expires_at),
        )

    @staticmethod
    def _to_entry(row: sqlite3.Row) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            id=row["id"],
            data_id=row["data_id"],
            source=row["source"],
            destination=row["destination"],
            host=row["host"],
            data_sent=json.loads(row["data_sent"]) if row["data_sent"] else None,
            data_received=json.loads(row["data_received"]) if row["data_received"] else None,
            message=row["message"],
            status=row["status"],
            retry_count=row["retry_count"],
            workflow_id=row["workflow_id"],
            pipeline_id=row["pipeline_id"],
            created_at=_from_ts(row["created_at"]),
            updated_at=_from_ts(row["updated_at"]),
            expires_at=_from_ts(row["expires_at"]),
        )

    @staticmethod
    def _where(filters: LogFilter) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column in ("status", "source", "destination"):
            value = getattr(filters, column)
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        if filters.date_from:
            clauses.append("created_at >= ?")
            params.append(_ts(filters.date_from))
        if filters.date_to:
            clauses.append("created_at <= ?")
            params.append(_ts(filters.date_to))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    # ------------------------------------------------------------------
    # Repository API
    async def append(self, entry: ExecutionLogEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO execution_logs ({_COLUMNS}) VALUES ({', '.join('?' * 15)})",
            *self._row_params(entry),
        )

    async def update(self, entry: ExecutionLogEntry) -> None:
        params = self._row_params(entry)
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_logs
            SET data_id = ?, source = ?, destination = ?, host = ?, data_sent = ?,
                data_received = ?, message = ?, status = ?, retry_count = ?,
                workflow_id = ?, pipeline_id = ?, created_at = ?, updated_at = ?,
                expires_at = ?
            WHERE id = ?
            """,
            *params[1:],
            params[0],
        )

    async def delete(self, entry_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM execution_logs WHERE id = ?", entry_id
        )

    async def get(self, entry_id: str) -> ExecutionLogEntry | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM execution_logs WHERE id = ?",
            entry_id,
        )
        return self._to_entry(row) if row else None

    async def query(
        self, filters: Optional[LogFilter] = None, limit: int = 50, offset: int = 0
    ) -> LogPage:
        where, params = self._where(filters or LogFilter())
        total_row = await asyncio.to_thread(
            self._fetchone, f"SELECT COUNT(*) AS n FROM execution_logs{where}", *params
        )
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM execution_logs{where} "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            *params,
            limit,
            offset,
        )
        return LogPage(
            items=[self._to_entry(r) for r in rows],
            total=total_row["n"],
            limit=limit,
            offset=offset,
        )

    async def stats(self, now: Optional[datetime] = None) -> LogStats:
        now = now or utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(status = 'SUCCESS'), 0) AS success,
                COALESCE(SUM(status = 'FAILED'), 0) AS failed,
                COALESCE(SUM(status = 'RETRY'), 0) AS retry,
                COALESCE(SUM(status = 'DROPPED'), 0) AS dropped,
                COALESCE(SUM(created_at >= ?), 0) AS today,
                COALESCE(SUM(created_at >= ?), 0) AS last_day
            FROM execution_logs
            """,
            _ts(today),
            _ts(now - timedelta(hours=24)),
        )
        by_source = await asyncio.to_thread(
            self._fetchall,
            "SELECT source AS k, COUNT(*) AS n FROM execution_logs GROUP BY source",
        )
        by_destination = await asyncio.to_thread(
            self._fetchall,
            "SELECT destination AS k, COUNT(*) AS n FROM execution_logs "
            "WHERE destination IS NOT NULL GROUP BY destination",
        )
        return LogStats(
            total_logs=row["total"],
            success_count=row["success"],
            failed_count=row["failed"],
            retry_count=row["retry"],
            dropped_count=row["dropped"],
            today_count=row["today"],
            last_24_hours=row["last_day"],
            by_source={r["k"]: r["n"] for r in by_source},
            by_destination={r["k"]: r["n"] for r in by_destination},
        )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        return await asyncio.to_thread(
            self._execute,
            "DELETE FROM execution_logs WHERE expires_at IS NOT NULL AND expires_at <= ?",
            _ts(now or utcnow()),
        )
