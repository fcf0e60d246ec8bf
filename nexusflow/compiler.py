"""
Pipeline compiler.

Translates an authored connection graph into a flat, validated workflow IR
and serializes that IR deterministically. Validation collects every problem
before failing so the author sees all of them at once; nothing is emitted
for a graph with problems.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from .conditions import validate_expression
from .contracts import (
    DEFAULT_RETENTION_HOURS,
    DEFAULT_TIMEOUT_SECONDS,
    Dialect,
    FieldMapping,
    HttpMethod,
    IRModel,
    OnError,
    Pipeline,
    QueryType,
    SapPipelineConfig,
    Workflow,
    WorkflowStep,
)
from .errors import ConfigError, ConfigIssue, ValidationError
from .mapping.transforms import is_known_transform
from .query import KEYED_OPERATIONS, check_operation
from .steps import destination_step

logger = logging.getLogger(__name__)

NodeKind = Literal["sender_app", "mqtt_source", "database", "rest", "sap"]

SOURCE_KINDS = ("sender_app", "mqtt_source")
DESTINATION_KINDS = ("database", "rest", "sap")

_SOURCE_FIELDS = {"sender_app": "application_id", "mqtt_source": "mqtt_source_id"}
_DESTINATION_FIELDS = {
    "database": "destination_id",
    "rest": "rest_destination_id",
    "sap": "sap_destination_id",
}


class GraphNode(IRModel):
    """A canvas node bound to one source or destination identity."""

    id: str
    kind: NodeKind
    ref_id: int
    label: Optional[str] = None


class EdgePipelineConfig(IRModel):
    """Pipeline settings the author attached to an edge."""

    target_table: Optional[str] = None
    field_mappings: List[FieldMapping] = Field(default_factory=list)
    sap_config: Optional[SapPipelineConfig] = None
    query_type: Optional[QueryType] = None
    primary_key: Optional[str] = None
    custom_query: Optional[str] = None
    dialect: Optional[Dialect] = None
    rest_method: Optional[HttpMethod] = None
    rest_path: Optional[str] = None
    is_active: bool = True
    on_error: OnError = "stop"
    max_retries: int = 0
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


class GraphEdge(IRModel):
    """A source → destination connection, optionally with sequential steps."""

    id: str
    source: str
    target: Optional[str] = None
    pipeline: Optional[EdgePipelineConfig] = None
    steps: List[WorkflowStep] = Field(default_factory=list)


class WorkflowHeader(IRModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    delete_failed_immediately: bool = False
    retention_hours: float = DEFAULT_RETENTION_HOURS


class AuthoringGraph(IRModel):
    """The editor's document: workflow header plus nodes and edges."""

    workflow: WorkflowHeader
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


# --- Validation ---


def _issue(code: str, field: str, message: str) -> ConfigIssue:
    return ConfigIssue(code=code, field=field, message=message)


def _validate_mappings(
    mappings: Sequence[FieldMapping], prefix: str
) -> List[ConfigIssue]:
    issues: List[ConfigIssue] = []
    columns: Dict[str, int] = {}
    sources: Dict[str, int] = {}
    for i, mapping in enumerate(mappings):
        path = f"{prefix}.fieldMappings[{i}]"
        column = mapping.destination_column
        if column in columns:
            issues.append(
                _issue(
                    "DuplicateDestinationColumn",
                    f"{path}.destinationColumn",
                    f"column '{column}' is already mapped by fieldMappings[{columns[column]}]",
                )
            )
        else:
            columns[column] = i
        if mapping.source_field in sources:
            issues.append(
                _issue(
                    "DuplicateSourceField",
                    f"{path}.sourceField",
                    f"source field '{mapping.source_field}' is already mapped",
                )
            )
        else:
            sources[mapping.source_field] = i
        if mapping.transform_type and not is_known_transform(mapping.transform_type):
            issues.append(
                _issue(
                    "UnknownTransform",
                    f"{path}.transformType",
                    f"unknown transform '{mapping.transform_type}'",
                )
            )
    return issues


def _validate_query(
    step: WorkflowStep,
    prefix: str,
    operation: QueryType,
    table: Optional[str],
    primary_key: Optional[str],
    dialect: Dialect,
    custom_query: Optional[str] = None,
    schema_required: bool = False,
    schema: Optional[str] = None,
) -> List[ConfigIssue]:
    issues: List[ConfigIssue] = []
    try:
        check_operation(operation, dialect, primary_key, f"{prefix}.queryType")
    except ConfigError as exc:
        issues.extend(exc.issues)

    if not table and not (operation == "select" and custom_query):
        issues.append(_issue("MissingTargetTable", f"{prefix}.table", "target table is required"))
    if schema_required and not schema:
        issues.append(_issue("MissingTargetTable", f"{prefix}.schema", "target schema is required"))
    if operation != "select" and not step.field_mappings:
        issues.append(
            _issue(
                "MissingFieldMappings",
                f"{prefix}.fieldMappings",
                "at least one field mapping is required",
            )
        )
    mapped = {m.destination_column for m in step.field_mappings}
    if operation in KEYED_OPERATIONS and primary_key and primary_key not in mapped:
        issues.append(
            _issue(
                "MissingPrimaryKey",
                f"{prefix}.primaryKey",
                f"primary key column '{primary_key}' must be mapped",
            )
        )
    return issues


def _validate_rest_template(step: WorkflowStep, prefix: str) -> List[ConfigIssue]:
    if not step.rest_body_template:
        return []
    try:
        json.loads(step.rest_body_template)
    except ValueError as exc:
        return [
            _issue(
                "InvalidStepSettings",
                f"{prefix}.restBodyTemplate",
                f"body template is not valid JSON: {exc}",
            )
        ]
    return []


def validate_step(step: WorkflowStep, prefix: str, step_count: int) -> List[ConfigIssue]:
    """Validate one step. ``step_count`` bounds branch targets."""
    issues: List[ConfigIssue] = []
    if step.max_retries < 0:
        issues.append(_issue("InvalidStepSettings", f"{prefix}.maxRetries", "must be >= 0"))
    if step.timeout_seconds <= 0:
        issues.append(_issue("InvalidStepSettings", f"{prefix}.timeoutSeconds", "must be > 0"))
    issues.extend(_validate_mappings(step.field_mappings, prefix))

    if step.step_type == "rest_call":
        if step.rest_destination_id is None:
            issues.append(
                _issue("UnresolvedDestination", f"{prefix}.restDestinationId", "REST destination is required")
            )
        issues.extend(_validate_rest_template(step, prefix))

    elif step.step_type == "db_query":
        if step.database_config_id is None:
            issues.append(
                _issue("UnresolvedDestination", f"{prefix}.databaseConfigId", "database destination is required")
            )
        issues.extend(
            _validate_query(
                step,
                prefix,
                step.db_query_type or "insert",
                step.db_target_table,
                step.db_primary_key,
                step.db_dialect or "ansi",
                custom_query=step.db_extended_query,
            )
        )

    elif step.step_type == "sap_query":
        if step.sap_destination_id is None:
            issues.append(
                _issue("UnresolvedDestination", f"{prefix}.sapDestinationId", "SAP destination is required")
            )
        issues.extend(
            _validate_query(
                step,
                prefix,
                step.sap_query_type or "insert",
                step.sap_table,
                step.sap_primary_key,
                "hana",
                schema_required=True,
                schema=step.sap_schema,
            )
        )

    elif step.step_type == "transform":
        expression = step.transform_expression
        if not expression:
            issues.append(
                _issue("InvalidStepSettings", f"{prefix}.transformExpression", "key map is required")
            )

    elif step.step_type == "condition":
        for problem in validate_expression(step.condition_expression, f"{prefix}.conditionExpression"):
            field, _, message = problem.partition(": ")
            issues.append(_issue("InvalidCondition", field, message))
        for attr, name in (("on_true_step", "onTrueStep"), ("on_false_step", "onFalseStep")):
            target = getattr(step, attr)
            if target is not None and not 1 <= target <= step_count:
                issues.append(
                    _issue(
                        "DanglingStepReference",
                        f"{prefix}.{name}",
                        f"step {target} does not exist (valid: 1..{step_count})",
                    )
                )

    elif step.step_type == "delay":
        if step.delay_seconds is None or step.delay_seconds < 0:
            issues.append(
                _issue("InvalidStepSettings", f"{prefix}.delaySeconds", "must be >= 0")
            )
    return issues


def validate_pipeline(pipeline: Pipeline, prefix: str) -> List[ConfigIssue]:
    """Validate structural constraints of one pipeline."""
    issues: List[ConfigIssue] = []

    own = _SOURCE_FIELDS[pipeline.source_type]
    other = _SOURCE_FIELDS["mqtt_source" if pipeline.source_type == "sender_app" else "sender_app"]
    if getattr(pipeline, own) is None or getattr(pipeline, other) is not None:
        issues.append(
            _issue(
                "UnresolvedSource",
                f"{prefix}.sourceType",
                f"'{pipeline.source_type}' pipelines need exactly one source identity",
            )
        )

    set_destinations = [k for k, f in _DESTINATION_FIELDS.items() if getattr(pipeline, f) is not None]
    if pipeline.destination_type is None:
        if set_destinations or not pipeline.is_sequential:
            issues.append(
                _issue("UnresolvedDestination", f"{prefix}.destinationType", "destination is required")
            )
    elif set_destinations != [pipeline.destination_type]:
        issues.append(
            _issue(
                "UnresolvedDestination",
                f"{prefix}.destinationType",
                f"'{pipeline.destination_type}' pipelines need exactly one destination identity",
            )
        )

    steps = sorted(pipeline.steps, key=lambda s: s.step_order)
    orders = [s.step_order for s in steps]
    if orders != list(range(1, len(steps) + 1)):
        issues.append(
            _issue(
                "InvalidStepOrder",
                f"{prefix}.steps",
                f"stepOrder must be contiguous from 1, got {orders}",
            )
        )
    for i, step in enumerate(steps):
        issues.extend(validate_step(step, f"{prefix}.steps[{i}]", len(steps)))

    if pipeline.destination_ref() is not None:
        final = destination_step(pipeline, len(steps) + 1)
        if pipeline.destination_type == "rest":
            issues.extend(_validate_mappings(pipeline.field_mappings, prefix))
        else:
            issues.extend(validate_step(final, prefix, len(steps)))
    return issues


def validate_workflow(workflow: Workflow) -> List[ConfigIssue]:
    """Return every structural problem in ``workflow`` (empty = valid)."""
    issues: List[ConfigIssue] = []
    if workflow.retention_hours <= 0:
        issues.append(
            _issue("InvalidRetention", "retentionHours", "retention must be greater than 0 hours")
        )
    seen = set()
    for i, pipeline in enumerate(workflow.pipelines):
        if pipeline.id in seen:
            issues.append(_issue("DuplicatePipeline", f"pipelines[{i}].id", f"duplicate id '{pipeline.id}'"))
        seen.add(pipeline.id)
        issues.extend(validate_pipeline(pipeline, f"pipelines[{i}]"))
    return issues


# --- Compilation ---


def _build_pipeline(
    graph: AuthoringGraph,
    index: int,
    edge: GraphEdge,
    nodes: Dict[str, GraphNode],
    issues: List[ConfigIssue],
) -> Optional[Pipeline]:
    prefix = f"edges[{index}]"
    source = nodes.get(edge.source)
    if source is None or source.kind not in SOURCE_KINDS:
        issues.append(
            _issue(
                "UnresolvedSource",
                f"{prefix}.source",
                f"node '{edge.source}' is not a sender app or MQTT source",
            )
        )
        return None

    fields: Dict[str, Any] = {
        "id": f"{graph.workflow.id}:{edge.id}",
        "workflow_id": graph.workflow.id,
        "source_type": source.kind,
        _SOURCE_FIELDS[source.kind]: source.ref_id,
        "steps": edge.steps,
    }

    if edge.target is not None:
        target = nodes.get(edge.target)
        if target is None or target.kind not in DESTINATION_KINDS:
            issues.append(
                _issue(
                    "UnresolvedDestination",
                    f"{prefix}.target",
                    f"node '{edge.target}' is not a destination",
                )
            )
            return None
        fields["destination_type"] = target.kind
        fields[_DESTINATION_FIELDS[target.kind]] = target.ref_id
    elif not edge.steps:
        issues.append(
            _issue("UnresolvedDestination", f"{prefix}.target", "edge has no destination")
        )
        return None

    if edge.pipeline is not None:
        fields.update(edge.pipeline.model_dump(exclude_none=True))
    return Pipeline(**fields)


def compile_graph(graph: AuthoringGraph) -> Workflow:
    """Compile ``graph`` into a validated workflow IR.

    Raises:
        ConfigError: carrying every problem found; nothing is emitted.
    """
    issues: List[ConfigIssue] = []
    nodes: Dict[str, GraphNode] = {}
    for i, node in enumerate(graph.nodes):
        if node.id in nodes:
            issues.append(_issue("DuplicateNode", f"nodes[{i}].id", f"duplicate node id '{node.id}'"))
        nodes[node.id] = node

    pipelines: List[Pipeline] = []
    for index, edge in enumerate(graph.edges):
        pipeline = _build_pipeline(graph, index, edge, nodes, issues)
        if pipeline is None:
            continue
        pipelines.append(pipeline)
        issues.extend(validate_pipeline(pipeline, f"edges[{index}]"))

    header = graph.workflow
    workflow = Workflow(
        id=header.id,
        name=header.name,
        description=header.description,
        is_active=header.is_active,
        delete_failed_immediately=header.delete_failed_immediately,
        retention_hours=header.retention_hours,
        pipelines=pipelines,
    )
    if header.retention_hours <= 0:
        issues.append(
            _issue("InvalidRetention", "workflow.retentionHours", "retention must be greater than 0 hours")
        )

    if issues:
        logger.info(f"Rejected workflow {header.id}: {len(issues)} problem(s)")
        raise ConfigError(issues)
    logger.info(f"Compiled workflow {header.id} with {len(pipelines)} pipeline(s)")
    return workflow


def to_graph(workflow: Workflow) -> AuthoringGraph:
    """Rebuild an authoring graph from a compiled workflow.

    Node ids are derived from identities (``<kind>-<id>``), so the graph is
    stable and recompiles to the same IR.
    """
    nodes: Dict[str, GraphNode] = {}
    edges: List[GraphEdge] = []
    prefix = f"{workflow.id}:"
    config_fields = set(EdgePipelineConfig.model_fields)

    for pipeline in workflow.pipelines:
        source_id = f"{pipeline.source_type}-{pipeline.source_id}"
        nodes.setdefault(
            source_id,
            GraphNode(id=source_id, kind=pipeline.source_type, ref_id=pipeline.source_id),
        )
        target_id = None
        ref = pipeline.destination_ref()
        if ref is not None:
            target_id = f"{ref.kind}-{ref.id}"
            nodes.setdefault(target_id, GraphNode(id=target_id, kind=ref.kind, ref_id=ref.id))

        edge_id = pipeline.id[len(prefix):] if pipeline.id.startswith(prefix) else pipeline.id
        config = EdgePipelineConfig(
            **pipeline.model_dump(include=config_fields, exclude_none=True)
        )
        edges.append(
            GraphEdge(
                id=edge_id,
                source=source_id,
                target=target_id,
                pipeline=config,
                steps=pipeline.steps,
            )
        )

    header = WorkflowHeader(
        id=workflow.id,
        name=workflow.name,
        description=workflow.description,
        is_active=workflow.is_active,
        delete_failed_immediately=workflow.delete_failed_immediately,
        retention_hours=workflow.retention_hours,
    )
    return AuthoringGraph(workflow=header, nodes=list(nodes.values()), edges=edges)


# --- Serialization ---


def dump_ir(workflow: Workflow) -> str:
    """Serialize ``workflow`` to canonical JSON (sorted keys, compact)."""
    return json.dumps(workflow.to_wire(), sort_keys=True, separators=(",", ":"))


def load_ir(data: Union[str, bytes, Dict[str, Any]]) -> Workflow:
    """Load and re-validate a workflow IR document.

    Raises:
        ValidationError: if the document is malformed or breaks an invariant.
    """
    try:
        raw = json.loads(data) if isinstance(data, (str, bytes)) else data
        workflow = Workflow.model_validate(raw)
    except (ValueError, PydanticValidationError) as exc:
        logger.error(f"Malformed workflow IR: {exc}")
        raise ValidationError(f"malformed workflow IR: {exc}") from exc

    issues = validate_workflow(workflow)
    if issues:
        message = "; ".join(str(i) for i in issues)
        logger.error(f"Workflow IR {workflow.id} failed validation: {message}")
        raise ValidationError(f"invalid workflow IR: {message}")
    return workflow


def load_graph(data: Union[str, bytes, Dict[str, Any]]) -> AuthoringGraph:
    """Parse an authoring graph document.

    Raises:
        ValidationError: if the document does not match the graph shape.
    """
    try:
        raw = json.loads(data) if isinstance(data, (str, bytes)) else data
        return AuthoringGraph.model_validate(raw)
    except (ValueError, PydanticValidationError) as exc:
        raise ValidationError(f"malformed authoring graph: {exc}") from exc
