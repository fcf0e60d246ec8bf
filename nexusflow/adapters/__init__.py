"""Destination adapters and factory."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import NexusflowConfig, load_config
from ..contracts import DestinationRef
from .base import AdapterResult, DestinationAdapter, DestinationRequest, RestRequest
from .inmemory import InMemoryAdapter
from .rest import RestAdapter
from .sql import SqlAdapter


class AdapterRouter(DestinationAdapter):
    """Dispatch each call to the adapter registered for its destination kind."""

    def __init__(self, adapters: Dict[str, DestinationAdapter]) -> None:
        self._adapters = adapters

    async def execute(
        self, destination: DestinationRef, request: DestinationRequest
    ) -> AdapterResult:
        adapter = self._adapters.get(destination.kind)
        if adapter is None:
            return AdapterResult(
                success=False, error=f"no adapter for '{destination.kind}' destinations"
            )
        return await adapter.execute(destination, request)

    async def close(self) -> None:
        closed = set()
        for adapter in self._adapters.values():
            if id(adapter) not in closed:
                closed.add(id(adapter))
                await adapter.close()


def build_adapter(config: Optional[NexusflowConfig] = None) -> DestinationAdapter:
    """Build the adapter stack for the configured destinations."""

    config = config or load_config()
    sql = SqlAdapter(config.destinations.database, config.destinations.sap)
    rest = RestAdapter(config.destinations.rest)
    return AdapterRouter({"database": sql, "sap": sql, "rest": rest})


__all__ = [
    "AdapterResult",
    "AdapterRouter",
    "DestinationAdapter",
    "InMemoryAdapter",
    "RestAdapter",
    "RestRequest",
    "SqlAdapter",
    "build_adapter",
]
