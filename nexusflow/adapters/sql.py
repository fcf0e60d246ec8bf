"""SQL destinations over SQLAlchemy async engines."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..contracts import DestinationRef
from ..query import PLACEHOLDER, Statement
from .base import AdapterResult, DestinationAdapter, DestinationRequest

logger = logging.getLogger(__name__)


def _driver_text(engine: AsyncEngine, statement: Statement) -> str:
    """Rewrite ``?`` placeholders for drivers that expect ``%s``."""
    if statement.params and engine.dialect.paramstyle in ("format", "pyformat"):
        return statement.text.replace("%", "%%").replace(PLACEHOLDER, "%s")
    return statement.text


class SqlAdapter(DestinationAdapter):
    """Execute synthesized statements on database and SAP HANA destinations.

    Both destination kinds are plain SQLAlchemy URLs; HANA is reached
    through its SQLAlchemy dialect. Engines are created on first use and
    pooled per destination.
    """

    def __init__(
        self,
        databases: Optional[Mapping[int, str]] = None,
        sap: Optional[Mapping[int, str]] = None,
    ) -> None:
        self._urls: Dict[str, str] = {}
        for dest_id, url in (databases or {}).items():
            self._urls[f"database:{dest_id}"] = url
        for dest_id, url in (sap or {}).items():
            self._urls[f"sap:{dest_id}"] = url
        self._engines: Dict[str, AsyncEngine] = {}

    def _engine(self, destination: DestinationRef) -> Optional[AsyncEngine]:
        key = str(destination)
        if key not in self._engines:
            url = self._urls.get(key)
            if url is None:
                return None
            self._engines[key] = create_async_engine(url)
        return self._engines[key]

    async def execute(
        self, destination: DestinationRef, request: DestinationRequest
    ) -> AdapterResult:
        if not isinstance(request, Statement):
            return AdapterResult(success=False, error="SQL destinations take statements")
        started = time.perf_counter()
        try:
            engine = self._engine(destination)
            if engine is None:
                return AdapterResult(
                    success=False, error=f"no connection configured for {destination}"
                )
            async with engine.begin() as conn:
                result = await conn.exec_driver_sql(
                    _driver_text(engine, request), request.params
                )
                data: Any = None
                if result.returns_rows:
                    data = [dict(row._mapping) for row in result.fetchall()]
                rows = result.rowcount
        except SQLAlchemyError as e:
            logger.warning(f"Query on {destination} failed: {e}")
            return AdapterResult(
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
            )

        return AdapterResult(
            success=True,
            rows_affected=len(data) if data is not None else rows,
            latency_ms=(time.perf_counter() - started) * 1000,
            data=data,
        )

    async def close(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
