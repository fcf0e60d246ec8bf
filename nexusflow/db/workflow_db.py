from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..audit import destination_label
from ..compiler import dump_ir, load_ir, validate_workflow
from ..contracts import Workflow
from ..errors import ConfigError
from .models import PipelineRow, WorkflowRow

logger = logging.getLogger(__name__)


class WorkflowStore:
    """Async store for compiled workflows.

    A save replaces the workflow and all of its pipelines; a delete removes
    both. Reads go back through ``load_ir`` so stored documents are
    re-validated.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine) as session:
            yield session

    async def save(self, workflow: Workflow) -> None:
        """Replace the stored copy of ``workflow`` and its pipelines.

        Raises:
            ConfigError: if the workflow fails validation; nothing is written.
        """
        issues = validate_workflow(workflow)
        if issues:
            raise ConfigError(issues)
        async with self.session() as session:
            await session.execute(delete(PipelineRow).where(PipelineRow.workflow_id == workflow.id))
            await session.merge(
                WorkflowRow(
                    id=workflow.id,
                    name=workflow.name,
                    is_active=workflow.is_active,
                    document=dump_ir(workflow),
                )
            )
            await session.flush()
            for pipeline in workflow.pipelines:
                session.add(
                    PipelineRow(
                        id=pipeline.id,
                        workflow_id=workflow.id,
                        source_type=pipeline.source_type,
                        source_id=pipeline.source_id,
                        destination=destination_label(pipeline),
                        is_active=pipeline.is_active,
                    )
                )
            await session.commit()
        logger.info(f"Saved workflow {workflow.id} with {len(workflow.pipelines)} pipeline(s)")

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        async with self.session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            return load_ir(row.document) if row else None

    async def list(self) -> List[Workflow]:
        async with self.session() as session:
            rows = (await session.execute(select(WorkflowRow).order_by(WorkflowRow.id))).scalars().all()
            return [load_ir(row.document) for row in rows]

    async def pipeline_ids(self, workflow_id: str) -> List[str]:
        async with self.session() as session:
            result = await session.execute(
                select(PipelineRow.id).where(PipelineRow.workflow_id == workflow_id)
            )
            return list(result.scalars().all())

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow and its pipelines. Returns whether it existed."""
        async with self.session() as session:
            await session.execute(delete(PipelineRow).where(PipelineRow.workflow_id == workflow_id))
            result = await session.execute(delete(WorkflowRow).where(WorkflowRow.id == workflow_id))
            await session.commit()
        if result.rowcount:
            logger.info(f"Deleted workflow {workflow_id}")
        return bool(result.rowcount)
