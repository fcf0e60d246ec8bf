"""End-to-end: authoring graph to saved workflow to worker to destination."""

import pytest

from nexusflow import (
    ExecutionLogger,
    InboundRecord,
    IngestWorker,
    PipelineArena,
    PipelineExecutor,
    compile_graph,
)
from nexusflow.adapters import AdapterRouter, InMemoryAdapter, SqlAdapter
from nexusflow.compiler import load_graph
from nexusflow.config import ExecutorConfig
from nexusflow.contracts import DestinationRef
from nexusflow.db import WorkflowStore
from nexusflow.persistence import LogFilter, SQLiteLogRepository
from nexusflow.query import Statement
from nexusflow.transports.inmemory import InMemoryTransport

FAST = ExecutorConfig(retry_backoff_base=0.0, retry_jitter=0.0)

GRAPH = {
    "workflow": {"id": "sensors", "name": "Sensors", "retentionHours": 48},
    "nodes": [
        {"id": "app", "kind": "sender_app", "refId": 7},
        {"id": "gw", "kind": "mqtt_source", "refId": 2},
        {"id": "db", "kind": "database", "refId": 3},
        {"id": "api", "kind": "rest", "refId": 5},
    ],
    "edges": [
        {
            "id": "readings",
            "source": "app",
            "target": "db",
            "pipeline": {
                "targetTable": "readings",
                "fieldMappings": [
                    {"sourceField": "temperature", "destinationColumn": "temp_c", "dataType": "number"},
                    {"sourceField": "deviceId", "destinationColumn": "device"},
                ],
            },
        },
        {
            "id": "alerts",
            "source": "gw",
            "steps": [
                {
                    "stepOrder": 1,
                    "stepName": "Hot?",
                    "stepType": "condition",
                    "conditionExpression": {"field": "temperature", "operator": "gte", "value": 30},
                    "onTrueStep": 2,
                    "onFalseStep": 3,
                },
                {
                    "stepOrder": 2,
                    "stepName": "Alert",
                    "stepType": "rest_call",
                    "restDestinationId": 5,
                    "restPath": "/alerts",
                    "restBodyTemplate": "{\"device\": \"{{trigger.deviceId}}\", \"value\": \"{{trigger.temperature}}\"}",
                    "outputVariable": "alert",
                },
                {
                    "stepOrder": 3,
                    "stepName": "Store",
                    "stepType": "db_query",
                    "databaseConfigId": 3,
                    "dbTargetTable": "readings",
                    "inputMapping": {"temperature": "$trigger.temperature", "deviceId": "$trigger.deviceId"},
                    "fieldMappings": [
                        {"sourceField": "temperature", "destinationColumn": "temp_c", "dataType": "number"},
                        {"sourceField": "deviceId", "destinationColumn": "device"},
                    ],
                },
            ],
        },
    ],
}


async def load_arena(tmp_path):
    store = WorkflowStore(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    await store.init_db()
    await store.save(compile_graph(load_graph(GRAPH)))
    workflows = await store.list()
    await store.close()
    return PipelineArena(workflows)


@pytest.mark.asyncio
async def test_reading_is_inserted_and_logged(tmp_path):
    arena = await load_arena(tmp_path)
    adapter = InMemoryAdapter()
    repository = SQLiteLogRepository(tmp_path / "logs.db")
    log = ExecutionLogger(repository)
    transport = InMemoryTransport()
    worker = IngestWorker(transport, arena, PipelineExecutor(adapter, log, FAST), log, queue="in")

    await transport.publish(
        "in",
        InboundRecord(
            data_id="r-1",
            source_type="sender_app",
            source_id=7,
            payload={"temperature": "25.5", "deviceId": "sensor-001", "extra": True},
        ),
    )
    assert await worker.start(lifespan=0.3) == 1

    [statement] = adapter.calls_to("database:3")
    assert statement.text == 'INSERT INTO readings ("temp_c","device") VALUES (?,?)'
    assert statement.params == (25.5, "sensor-001")

    page = await repository.query(LogFilter(status="SUCCESS"))
    [entry] = page.items
    assert entry.data_id == "r-1"
    assert entry.source == "sender_app:7"
    assert entry.destination == "database:3"
    assert entry.pipeline_id == "sensors:readings"
    assert (entry.expires_at - entry.created_at).total_seconds() == 48 * 3600


@pytest.mark.asyncio
async def test_rows_land_in_a_real_database(tmp_path):
    arena = await load_arena(tmp_path)
    sql = SqlAdapter({3: f"sqlite+aiosqlite:///{tmp_path / 'dest.db'}"})
    rest = InMemoryAdapter(responses={"rest:5": {"alertId": 1}})
    adapter = AdapterRouter({"database": sql, "rest": rest})
    await sql.execute(
        DestinationRef(kind="database", id=3),
        Statement(text="CREATE TABLE readings (temp_c REAL, device TEXT)"),
    )
    repository = SQLiteLogRepository(tmp_path / "logs.db")
    log = ExecutionLogger(repository)
    worker = IngestWorker(InMemoryTransport(), arena, PipelineExecutor(adapter, log, FAST), log)

    try:
        [direct] = await worker.handle(
            InboundRecord(source_type="sender_app", source_id=7, payload={"temperature": 21, "deviceId": "a"})
        )
        [hot] = await worker.handle(
            InboundRecord(source_type="mqtt_source", source_id=2, payload={"temperature": 35, "deviceId": "b"})
        )
        [cold] = await worker.handle(
            InboundRecord(source_type="mqtt_source", source_id=2, payload={"temperature": 12, "deviceId": "c"})
        )
        rows = await sql.execute(
            DestinationRef(kind="database", id=3),
            Statement(text="SELECT temp_c, device FROM readings ORDER BY device"),
        )
    finally:
        await adapter.close()

    assert [r.status for r in (direct, hot, cold)] == ["Completed"] * 3
    assert [o.step_order for o in hot.outcomes] == [1, 2, 3]
    assert hot.scope.variables["alert"] == {"alertId": 1}
    assert [o.step_order for o in cold.outcomes] == [1, 3]
    assert [req.body for req in rest.calls_to("rest:5")] == [{"device": "b", "value": 35}]
    assert rows.data == [
        {"temp_c": 21.0, "device": "a"},
        {"temp_c": 35.0, "device": "b"},
        {"temp_c": 12.0, "device": "c"},
    ]

    stats = await repository.stats()
    assert stats.success_count == 3
    assert stats.by_source == {"sender_app:7": 1, "mqtt_source:2": 2}


@pytest.mark.asyncio
async def test_failing_destination_is_retried_then_logged(tmp_path):
    graph = {**GRAPH, "edges": [dict(GRAPH["edges"][0])]}
    graph["edges"][0]["pipeline"] = {**graph["edges"][0]["pipeline"], "onError": "retry", "maxRetries": 2}
    arena = PipelineArena([compile_graph(load_graph(graph))])
    adapter = InMemoryAdapter(failures={"database:3": 2})
    repository = SQLiteLogRepository(tmp_path / "logs.db")
    log = ExecutionLogger(repository)
    worker = IngestWorker(InMemoryTransport(), arena, PipelineExecutor(adapter, log, FAST), log)

    [result] = await worker.handle(
        InboundRecord(source_type="sender_app", source_id=7, payload={"temperature": 1, "deviceId": "x"})
    )

    assert result.status == "Completed"
    assert len(adapter.calls) == 3
    entry = await repository.get(result.log_entry.id)
    assert (entry.status, entry.retry_count) == ("SUCCESS", 2)
