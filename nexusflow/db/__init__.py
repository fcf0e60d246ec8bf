from .models import PipelineRow, WorkflowRow
from .workflow_db import WorkflowStore

__all__ = [
    "PipelineRow",
    "WorkflowRow",
    "WorkflowStore",
]
