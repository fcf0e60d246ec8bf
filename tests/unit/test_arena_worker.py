import asyncio

import pytest

from nexusflow.adapters import InMemoryAdapter
from nexusflow.arena import PipelineArena
from nexusflow.audit import ExecutionLogger
from nexusflow.config import ExecutorConfig
from nexusflow.contracts import FieldMapping, InboundRecord, Pipeline, Workflow
from nexusflow.execute import PipelineExecutor
from nexusflow.persistence import InMemoryLogRepository, LogFilter
from nexusflow.steps import default_step
from nexusflow.transports.inmemory import InMemoryTransport
from nexusflow.worker import IngestWorker

MAPPINGS = [FieldMapping(source_field="deviceId", destination_column="device")]


def db_pipeline(pid, app_id=7, dest=3, **extra):
    return Pipeline(
        id=pid,
        source_type="sender_app",
        application_id=app_id,
        destination_type="database",
        destination_id=dest,
        target_table="readings",
        field_mappings=MAPPINGS,
        **extra,
    )


def make_worker(workflows, adapter=None):
    adapter = adapter or InMemoryAdapter()
    repository = InMemoryLogRepository()
    log = ExecutionLogger(repository)
    executor = PipelineExecutor(
        adapter, log, ExecutorConfig(retry_backoff_base=0.0, retry_jitter=0.0)
    )
    transport = InMemoryTransport()
    worker = IngestWorker(transport, PipelineArena(workflows), executor, log, queue="in")
    return worker, transport, adapter, repository


def test_arena_routes_only_active_pipelines():
    active = Workflow(
        id="wf",
        name="w",
        pipelines=[db_pipeline("wf:a"), db_pipeline("wf:b", is_active=False), db_pipeline("wf:c", app_id=8)],
    )
    paused = Workflow(id="wf2", name="w2", is_active=False, pipelines=[db_pipeline("wf2:a")])
    arena = PipelineArena([active, paused])

    assert len(arena) == 4
    assert [p.id for p, _ in arena.for_source("sender_app", 7)] == ["wf:a"]
    assert arena.for_source("mqtt_source", 7) == []
    assert arena.get("wf:b").is_active is False
    assert arena.workflow_of("wf2:a").id == "wf2"
    assert arena.get("missing") is None


@pytest.mark.asyncio
async def test_record_fans_out_to_every_matching_pipeline():
    workflow = Workflow(
        id="wf", name="w", pipelines=[db_pipeline("wf:a"), db_pipeline("wf:b", dest=4)]
    )
    worker, _, adapter, repository = make_worker([workflow])

    results = await worker.handle(
        InboundRecord(source_type="sender_app", source_id=7, payload={"deviceId": "s-1"})
    )

    assert [r.status for r in results] == ["Completed", "Completed"]
    assert len(adapter.calls_to("database:3")) == 1
    assert len(adapter.calls_to("database:4")) == 1
    assert (await repository.query(LogFilter(status="SUCCESS"))).total == 2


@pytest.mark.asyncio
async def test_unmatched_record_is_dropped():
    worker, _, adapter, repository = make_worker([Workflow(id="wf", name="w")])

    results = await worker.handle(InboundRecord(source_type="mqtt_source", source_id=1))

    assert results == []
    assert adapter.calls == []
    page = await repository.query()
    assert [e.status for e in page.items] == ["DROPPED"]


@pytest.mark.asyncio
async def test_start_consumes_and_acks():
    workflow = Workflow(id="wf", name="w", pipelines=[db_pipeline("wf:a")])
    worker, transport, adapter, _ = make_worker([workflow])
    for n in range(3):
        await transport.publish(
            "in",
            InboundRecord(
                data_id=f"r{n}", source_type="sender_app", source_id=7, payload={"deviceId": n}
            ),
        )

    handled = await worker.start(lifespan=0.3)

    assert handled == 3
    assert sorted(transport.acked) == ["r0", "r1", "r2"]
    assert len(adapter.calls) == 3


@pytest.mark.asyncio
async def test_slow_records_do_not_hold_up_each_other():
    delayed = Pipeline(
        id="wf:slow",
        source_type="sender_app",
        application_id=7,
        steps=[default_step("delay", 1, delay_seconds=0.5)],
    )
    worker, transport, _, repository = make_worker([Workflow(id="wf", name="w", pipelines=[delayed])])
    for n in range(4):
        await transport.publish(
            "in", InboundRecord(data_id=f"r{n}", source_type="sender_app", source_id=7)
        )

    loop = asyncio.get_running_loop()
    started = loop.time()
    handled = await worker.start(lifespan=1.0)
    elapsed = loop.time() - started

    assert handled == 4
    assert sorted(transport.acked) == ["r0", "r1", "r2", "r3"]
    assert elapsed < 1.4
    assert (await repository.query(LogFilter(status="SUCCESS"))).total == 4


@pytest.mark.asyncio
async def test_records_in_flight_at_shutdown_are_finished():
    delayed = Pipeline(
        id="wf:slow",
        source_type="sender_app",
        application_id=7,
        steps=[default_step("delay", 1, delay_seconds=0.4)],
    )
    worker, transport, _, _ = make_worker([Workflow(id="wf", name="w", pipelines=[delayed])])
    await transport.publish("in", InboundRecord(data_id="late", source_type="sender_app", source_id=7))

    assert await worker.start(lifespan=0.1) == 1
    assert transport.acked == ["late"]
