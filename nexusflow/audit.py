"""Execution logger: one log entry per pipeline run."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from .contracts import InboundRecord, Pipeline, Workflow
from .persistence import LogRepository
from .persistence.models import ExecutionLogEntry, utcnow

logger = logging.getLogger(__name__)


def source_label(record: InboundRecord) -> str:
    return f"{record.source_type}:{record.source_id}"


def destination_label(pipeline: Pipeline) -> Optional[str]:
    """``kind:id`` of the pipeline destination, or of its step destinations."""
    ref = pipeline.destination_ref()
    if ref is not None:
        return str(ref)
    refs = [str(r) for r in (s.destination_ref() for s in pipeline.steps) if r is not None]
    return ",".join(dict.fromkeys(refs)) or None


class ExecutionLogger:
    """Track a run through PENDING, RETRY and a terminal status.

    Entries are immutable; every transition stores a new version under the
    same id. Entries in a terminal status are never touched again.
    """

    def __init__(self, repository: LogRepository) -> None:
        self._repository = repository

    async def start(
        self,
        record: InboundRecord,
        pipeline: Pipeline,
        workflow: Optional[Workflow] = None,
    ) -> ExecutionLogEntry:
        created = utcnow()
        entry = ExecutionLogEntry(
            data_id=record.data_id,
            source=source_label(record),
            destination=destination_label(pipeline),
            host=record.host,
            data_sent=record.payload,
            status="PENDING",
            workflow_id=pipeline.workflow_id or (workflow.id if workflow else None),
            pipeline_id=pipeline.id,
            created_at=created,
            updated_at=created,
            expires_at=(
                created + timedelta(hours=workflow.retention_hours) if workflow else None
            ),
        )
        await self._repository.append(entry)
        logger.debug(f"Run {entry.id} started for pipeline {pipeline.id}")
        return entry

    def _check_open(self, entry: ExecutionLogEntry) -> None:
        if entry.is_terminal:
            raise ValueError(f"log entry {entry.id} is already {entry.status}")

    async def retry(self, entry: ExecutionLogEntry, message: str) -> ExecutionLogEntry:
        self._check_open(entry)
        updated = entry.model_copy(
            update={
                "status": "RETRY",
                "retry_count": entry.retry_count + 1,
                "message": message,
                "updated_at": utcnow(),
            }
        )
        await self._repository.update(updated)
        logger.info(f"Run {entry.id} retrying ({updated.retry_count}): {message}")
        return updated

    async def finish(
        self,
        entry: ExecutionLogEntry,
        success: bool,
        message: str,
        data_sent: Any = None,
        data_received: Any = None,
        workflow: Optional[Workflow] = None,
    ) -> ExecutionLogEntry:
        """Record the terminal status of a run.

        FAILED entries of a workflow with ``delete_failed_immediately`` are
        removed from the repository; the returned entry still describes them.
        """
        self._check_open(entry)
        update = {
            "status": "SUCCESS" if success else "FAILED",
            "message": message,
            "updated_at": utcnow(),
            "data_received": data_received,
        }
        if data_sent is not None:
            update["data_sent"] = data_sent
        final = entry.model_copy(update=update)

        if not success and workflow is not None and workflow.delete_failed_immediately:
            await self._repository.delete(entry.id)
            logger.info(f"Run {entry.id} failed; entry discarded: {message}")
            return final

        await self._repository.update(final)
        if success:
            logger.info(f"Run {entry.id} succeeded")
        else:
            logger.warning(f"Run {entry.id} failed: {message}")
        return final

    async def dropped(
        self, record: InboundRecord, retention_hours: Optional[float] = None
    ) -> ExecutionLogEntry:
        """Log a record that no active pipeline accepts."""
        created = utcnow()
        entry = ExecutionLogEntry(
            data_id=record.data_id,
            source=source_label(record),
            host=record.host,
            data_sent=record.payload,
            status="DROPPED",
            message="No active pipeline for this source",
            created_at=created,
            updated_at=created,
            expires_at=created + timedelta(hours=retention_hours) if retention_hours else None,
        )
        await self._repository.append(entry)
        logger.info(f"Dropped record {record.data_id} from {entry.source}")
        return entry
