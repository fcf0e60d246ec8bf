"""Persistence layer for execution logs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import NexusflowConfig, load_config
from .inmemory import InMemoryLogRepository
from .models import ExecutionLogEntry, LogFilter, LogPage, LogStats
from .repository import LogRepository
from .sqlite import SQLiteLogRepository

_repository_instance: LogRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[NexusflowConfig] = None
) -> LogRepository:
    """Factory function to obtain a log repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``NEXUSFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("NEXUSFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryLogRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteLogRepository(path)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ExecutionLogEntry",
    "LogFilter",
    "LogPage",
    "LogStats",
    "LogRepository",
    "InMemoryLogRepository",
    "SQLiteLogRepository",
    "get_repository",
]
