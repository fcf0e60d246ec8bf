"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import InboundRecord
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, InboundRecord]]):
    """Simple in-process queue for unit tests."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, InboundRecord]]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.acked: List[str] = []

    async def publish(self, queue: str, record: InboundRecord) -> None:
        """Publish record to in-memory queue."""
        raw = (record.to_json(), record)
        async with self._lock:
            self._queues[queue].append(raw)

    async def subscribe(
        self, queue: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, InboundRecord], InboundRecord]]:
        """Consume records from ``queue`` until ``lifespan`` elapses."""
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            async with self._lock:
                raw_message = self._queues[queue].popleft() if self._queues[queue] else None
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: Tuple[str, InboundRecord]) -> None:
        self.acked.append(raw_message[1].data_id)
