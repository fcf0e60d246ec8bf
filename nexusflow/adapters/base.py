"""Destination adapter contract."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from ..contracts import DestinationRef
from ..query import Statement


class RestRequest(BaseModel):
    """One outgoing REST call. ``method`` falls back to the destination's."""

    method: Optional[str] = None
    path: Optional[str] = None
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)


class AdapterResult(BaseModel):
    """Outcome of one destination call."""

    success: bool
    rows_affected: Optional[int] = None
    http_status: Optional[int] = None
    latency_ms: float = 0.0
    error: Optional[str] = None
    data: Any = None


DestinationRequest = Union[Statement, RestRequest]


class DestinationAdapter(metaclass=abc.ABCMeta):
    """Executes requests against destinations it owns connections for.

    Implementations report failures as unsuccessful results instead of
    raising, so the executor applies one error policy to every backend.
    """

    @abc.abstractmethod
    async def execute(
        self, destination: DestinationRef, request: DestinationRequest
    ) -> AdapterResult:
        """Run ``request`` against ``destination``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release pooled connections (no-op by default)."""
        pass
