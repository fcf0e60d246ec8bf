"""Read-only index of pipelines built from saved workflows."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .contracts import Pipeline, Workflow

SourceKey = Tuple[str, Optional[int]]


class PipelineArena:
    """Flat, immutable lookup of routable pipelines.

    Built once from the saved workflows and shared by every run. Only active
    pipelines of active workflows are routed by source.
    """

    def __init__(self, workflows: Iterable[Workflow] = ()) -> None:
        pipelines: Dict[str, Pipeline] = {}
        owners: Dict[str, Workflow] = {}
        by_source: Dict[SourceKey, List[str]] = {}
        for workflow in workflows:
            for pipeline in workflow.pipelines:
                pipelines[pipeline.id] = pipeline
                owners[pipeline.id] = workflow
                if workflow.is_active and pipeline.is_active:
                    by_source.setdefault(pipeline.source_key(), []).append(pipeline.id)

        self._pipelines: Mapping[str, Pipeline] = MappingProxyType(pipelines)
        self._owners: Mapping[str, Workflow] = MappingProxyType(owners)
        self._by_source: Mapping[SourceKey, Tuple[str, ...]] = MappingProxyType(
            {key: tuple(ids) for key, ids in by_source.items()}
        )

    def __len__(self) -> int:
        return len(self._pipelines)

    def get(self, pipeline_id: str) -> Optional[Pipeline]:
        return self._pipelines.get(pipeline_id)

    def workflow_of(self, pipeline_id: str) -> Optional[Workflow]:
        return self._owners.get(pipeline_id)

    def for_source(self, source_type: str, source_id: int) -> List[Tuple[Pipeline, Workflow]]:
        """Active pipelines fed by one source, in save order."""
        ids = self._by_source.get((source_type, source_id), ())
        return [(self._pipelines[i], self._owners[i]) for i in ids]
