"""nexusflow: compiled integration pipelines from sources to SQL, SAP and REST."""

from .arena import PipelineArena
from .audit import ExecutionLogger
from .compiler import AuthoringGraph, compile_graph, dump_ir, load_ir, to_graph
from .contracts import FieldMapping, InboundRecord, Pipeline, Workflow, WorkflowStep
from .execute import PipelineExecutor, RunResult
from .persistence import get_repository
from .transports import get_transport
from .worker import IngestWorker

__version__ = "0.1.0"
__all__ = [
    "AuthoringGraph",
    "ExecutionLogger",
    "FieldMapping",
    "InboundRecord",
    "IngestWorker",
    "Pipeline",
    "PipelineArena",
    "PipelineExecutor",
    "RunResult",
    "Workflow",
    "WorkflowStep",
    "compile_graph",
    "dump_ir",
    "get_repository",
    "get_transport",
    "load_ir",
    "to_graph",
]
