"""Pipeline IR contracts shared by the compiler, the executor and storage."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


SourceType = Literal["sender_app", "mqtt_source"]
DestinationType = Literal["database", "rest", "sap"]
NullHandling = Literal["skip", "use_default", "required"]
QueryType = Literal["insert", "update", "upsert", "select", "delete"]
Dialect = Literal["ansi", "mysql", "hana"]
StepType = Literal["rest_call", "db_query", "sap_query", "transform", "condition", "delay"]
OnError = Literal["stop", "skip", "retry"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETENTION_HOURS = 24.0


class IRModel(BaseModel):
    """Base for wire-format models: camelCase aliases, immutable once built."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Return the JSON-shaped wire representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _parse_json_text(value: Any) -> Any:
    """Accept JSON documents authored as text (the editor stores them so)."""
    if isinstance(value, str):
        if not value.strip():
            return None
        return json.loads(value)
    return value


class DestinationRef(IRModel):
    """Identity of one destination as known to the adapter layer."""

    kind: DestinationType
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


class FieldMapping(IRModel):
    """Binds one source field to one destination column."""

    source_field: str
    destination_column: str
    data_type: Optional[str] = None
    transform_type: Optional[str] = None
    transform_param: Optional[str] = None
    default_value: Optional[Any] = None
    null_handling: NullHandling = "required"


class SapPipelineConfig(IRModel):
    """SAP HANA target embedded in a pipeline."""

    query_type: QueryType = "insert"
    target_schema: Optional[str] = Field(default=None, alias="schema")
    table: Optional[str] = None
    primary_key: Optional[str] = None


class WorkflowStep(IRModel):
    """One unit of work in a sequential pipeline."""

    step_order: int
    step_name: str
    step_type: StepType
    on_error: OnError = "stop"
    max_retries: int = 0
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    is_active: bool = True
    input_mapping: Optional[Dict[str, Any]] = None
    output_variable: Optional[str] = None
    field_mappings: List[FieldMapping] = Field(default_factory=list)

    # rest_call
    rest_destination_id: Optional[int] = None
    rest_method: Optional[HttpMethod] = None
    rest_path: Optional[str] = None
    rest_body_template: Optional[str] = None

    # db_query
    database_config_id: Optional[int] = None
    db_query_type: Optional[QueryType] = None
    db_target_table: Optional[str] = None
    db_primary_key: Optional[str] = None
    db_extended_query: Optional[str] = None
    db_dialect: Optional[Dialect] = None

    # sap_query
    sap_destination_id: Optional[int] = None
    sap_query_type: Optional[QueryType] = None
    sap_schema: Optional[str] = None
    sap_table: Optional[str] = None
    sap_primary_key: Optional[str] = None

    # transform
    transform_expression: Optional[Dict[str, str]] = None

    # condition
    condition_expression: Optional[Dict[str, Any]] = None
    on_true_step: Optional[int] = None
    on_false_step: Optional[int] = None

    # delay
    delay_seconds: Optional[float] = None

    @field_validator(
        "input_mapping", "transform_expression", "condition_expression", mode="before"
    )
    @classmethod
    def _decode_json_text(cls, value: Any) -> Any:
        return _parse_json_text(value)

    @property
    def output_name(self) -> str:
        """Variable that always receives this step's output."""
        return f"step{self.step_order}_output"

    def destination_ref(self) -> Optional[DestinationRef]:
        if self.step_type == "rest_call" and self.rest_destination_id is not None:
            return DestinationRef(kind="rest", id=self.rest_destination_id)
        if self.step_type == "db_query" and self.database_config_id is not None:
            return DestinationRef(kind="database", id=self.database_config_id)
        if self.step_type == "sap_query" and self.sap_destination_id is not None:
            return DestinationRef(kind="sap", id=self.sap_destination_id)
        return None


class Pipeline(IRModel):
    """One source-to-destination flow, optionally expanded into steps."""

    id: str
    workflow_id: Optional[str] = None
    source_type: SourceType
    application_id: Optional[int] = None
    mqtt_source_id: Optional[int] = None
    destination_type: Optional[DestinationType] = None
    destination_id: Optional[int] = None
    rest_destination_id: Optional[int] = None
    sap_destination_id: Optional[int] = None
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
    steps: List[WorkflowStep] = Field(default_factory=list)

    @property
    def is_sequential(self) -> bool:
        return bool(self.steps)

    @property
    def source_id(self) -> Optional[int]:
        if self.source_type == "sender_app":
            return self.application_id
        return self.mqtt_source_id

    def source_key(self) -> Tuple[str, Optional[int]]:
        return (self.source_type, self.source_id)

    def destination_ref(self) -> Optional[DestinationRef]:
        ids = {
            "database": self.destination_id,
            "rest": self.rest_destination_id,
            "sap": self.sap_destination_id,
        }
        if self.destination_type is None or ids[self.destination_type] is None:
            return None
        return DestinationRef(kind=self.destination_type, id=ids[self.destination_type])

    def operation(self) -> QueryType:
        if self.destination_type == "sap" and self.sap_config is not None:
            return self.sap_config.query_type
        return self.query_type or "insert"

    def primary_key_column(self) -> Optional[str]:
        if self.destination_type == "sap" and self.sap_config is not None:
            return self.sap_config.primary_key
        return self.primary_key

    def table_name(self) -> Optional[str]:
        if self.destination_type == "sap" and self.sap_config and self.sap_config.table:
            return self.sap_config.table
        return self.target_table

    def table_schema(self) -> Optional[str]:
        if self.destination_type == "sap" and self.sap_config is not None:
            return self.sap_config.target_schema
        return None

    def effective_dialect(self) -> Dialect:
        if self.dialect is not None:
            return self.dialect
        return "hana" if self.destination_type == "sap" else "ansi"


class Workflow(IRModel):
    """A named set of pipelines saved and replaced as a whole."""

    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    delete_failed_immediately: bool = False
    retention_hours: float = DEFAULT_RETENTION_HOURS
    pipelines: List[Pipeline] = Field(default_factory=list)

    def pipeline(self, pipeline_id: str) -> Optional[Pipeline]:
        return next((p for p in self.pipelines if p.id == pipeline_id), None)


class InboundRecord(IRModel):
    """A record delivered by the ingestion layer, attributed to one source."""

    data_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_type: SourceType
    source_id: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    host: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def source_key(self) -> Tuple[str, int]:
        return (self.source_type, self.source_id)

    def to_json(self) -> str:
        """Serialize record to JSON."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "InboundRecord":
        """Deserialize record from JSON."""
        return cls.model_validate_json(data)
