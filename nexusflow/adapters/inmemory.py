"""Recording adapter for tests and dry runs."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ..contracts import DestinationRef
from .base import AdapterResult, DestinationAdapter, DestinationRequest, RestRequest


class InMemoryAdapter(DestinationAdapter):
    """Record every call and answer with scripted results.

    ``failures`` maps a destination (``"database:1"``) to the number of calls
    that should fail before calls start succeeding. ``responses`` maps a
    destination to the ``data`` returned on success.
    """

    def __init__(
        self,
        failures: Optional[Dict[str, int]] = None,
        responses: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
    ) -> None:
        self.calls: List[Tuple[DestinationRef, DestinationRequest]] = []
        self._failures = dict(failures or {})
        self._responses = dict(responses or {})
        self._delay = delay

    def calls_to(self, destination: str) -> List[DestinationRequest]:
        return [req for ref, req in self.calls if str(ref) == destination]

    async def execute(
        self, destination: DestinationRef, request: DestinationRequest
    ) -> AdapterResult:
        self.calls.append((destination, request))
        if self._delay:
            await asyncio.sleep(self._delay)

        key = str(destination)
        remaining = self._failures.get(key, 0)
        if remaining > 0:
            self._failures[key] = remaining - 1
            return AdapterResult(
                success=False,
                http_status=500 if isinstance(request, RestRequest) else None,
                error=f"scripted failure for {key}",
            )

        if isinstance(request, RestRequest):
            return AdapterResult(
                success=True, http_status=200, data=self._responses.get(key)
            )
        return AdapterResult(success=True, rows_affected=1, data=self._responses.get(key))
