"""Redis transport for cross-process ingestion."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from ..contracts import InboundRecord
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis list used as a work queue."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, queue: str, record: InboundRecord) -> None:
        """Push record onto the Redis list."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(queue, record.to_json())

    async def subscribe(
        self, queue: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, InboundRecord]]:
        """Pop records from the Redis list until ``lifespan`` elapses."""
        if not self._redis:
            await self.connect()

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue, timeout=1)
            if not result:
                continue

            _, raw = result
            try:
                record = InboundRecord.from_json(raw)
            except PydanticValidationError as e:
                logger.error(f"Discarding malformed record on {queue}: {e}")
                continue
            yield raw, record

    async def ack(self, raw_message: str) -> None:
        """No-op acknowledgment (message already popped)."""
        pass
