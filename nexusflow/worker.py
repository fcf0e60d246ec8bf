"""Ingestion worker: routes inbound records to their pipelines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Set

from .arena import PipelineArena
from .audit import ExecutionLogger
from .contracts import InboundRecord
from .execute import PipelineExecutor, RunResult
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class IngestWorker:
    """Consume records from a transport and run every matching pipeline.

    Each record is handled in its own task, so a slow destination or a delay
    step never holds up other records. At most ``max_concurrency`` records
    are in flight at once.
    """

    def __init__(
        self,
        transport: BaseTransport,
        arena: PipelineArena,
        executor: PipelineExecutor,
        execution_logger: Optional[ExecutionLogger] = None,
        queue: str = "nexusflow:inbound",
        dropped_retention_hours: Optional[float] = 24.0,
        max_concurrency: int = 100,
    ) -> None:
        self._transport = transport
        self._arena = arena
        self._executor = executor
        self._log = execution_logger
        self._queue = queue
        self._dropped_retention_hours = dropped_retention_hours
        self._max_concurrency = max_concurrency

    async def start(self, lifespan: Optional[float] = None) -> int:
        """Process records until ``lifespan`` elapses. Returns records handled.

        Records still in flight when the lifespan ends are awaited before
        returning.
        """
        logger.info(f"Worker consuming {self._queue} ({len(self._arena)} pipeline(s))")
        semaphore = asyncio.Semaphore(self._max_concurrency)
        in_flight: Set[asyncio.Task] = set()
        dispatched = 0
        failed = 0

        def _done(task: asyncio.Task) -> None:
            nonlocal failed
            in_flight.discard(task)
            semaphore.release()
            if not task.cancelled() and task.exception() is not None:
                failed += 1
                logger.error(f"Record task failed: {task.exception()!r}")

        async for raw_message, record in self._transport.subscribe(
            self._queue, lifespan=lifespan
        ):
            await semaphore.acquire()
            task = asyncio.create_task(self._process(raw_message, record))
            in_flight.add(task)
            task.add_done_callback(_done)
            dispatched += 1

        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        return dispatched - failed

    async def _process(self, raw_message: Any, record: InboundRecord) -> None:
        await self.handle(record)
        await self._transport.ack(raw_message)

    async def handle(self, record: InboundRecord) -> List[RunResult]:
        """Run ``record`` through all of its pipelines concurrently."""
        matches = self._arena.for_source(record.source_type, record.source_id)
        if not matches:
            if self._log is not None:
                await self._log.dropped(record, self._dropped_retention_hours)
            else:
                logger.info(f"Dropped record {record.data_id}: no active pipeline")
            return []

        outcomes = await asyncio.gather(
            *(self._executor.run(p, record, wf) for p, wf in matches),
            return_exceptions=True,
        )
        results: List[RunResult] = []
        for (pipeline, _), outcome in zip(matches, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Pipeline {pipeline.id} crashed on record {record.data_id}: {outcome!r}"
                )
                continue
            results.append(outcome)
        return results
