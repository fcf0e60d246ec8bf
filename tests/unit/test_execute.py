import pytest

from nexusflow.adapters import InMemoryAdapter
from nexusflow.audit import ExecutionLogger
from nexusflow.config import ExecutorConfig
from nexusflow.contracts import FieldMapping, Pipeline, Workflow
from nexusflow.execute import PipelineExecutor, render_template
from nexusflow.errors import MappingError
from nexusflow.persistence import InMemoryLogRepository
from nexusflow.steps import default_step

FAST = ExecutorConfig(retry_backoff_base=0.0, retry_jitter=0.0)
RECORD = {"temperature": 25.5, "deviceId": "sensor-001"}
MAPPINGS = [
    FieldMapping(source_field="temperature", destination_column="temp_c", data_type="number"),
    FieldMapping(source_field="deviceId", destination_column="device"),
]


def simple_pipeline(**overrides):
    fields = dict(
        id="wf:e1",
        workflow_id="wf",
        source_type="sender_app",
        application_id=7,
        destination_type="database",
        destination_id=3,
        target_table="readings",
        field_mappings=MAPPINGS,
    )
    fields.update(overrides)
    return Pipeline(**fields)


def sequential_pipeline(*steps):
    return Pipeline(id="wf:e2", source_type="sender_app", application_id=7, steps=list(steps))


def db_step(order, **overrides):
    fields = dict(database_config_id=3, db_target_table="readings", field_mappings=MAPPINGS)
    fields.update(overrides)
    return default_step("db_query", order, **fields)


def make_executor(adapter, repository=None, config=FAST):
    repository = repository or InMemoryLogRepository()
    return PipelineExecutor(adapter, ExecutionLogger(repository), config), repository


@pytest.mark.asyncio
async def test_simple_pipeline_inserts_and_logs_success():
    adapter = InMemoryAdapter()
    executor, repository = make_executor(adapter)

    result = await executor.run(simple_pipeline(), RECORD)

    assert result.status == "Completed"
    [request] = adapter.calls_to("database:3")
    assert request.text == 'INSERT INTO readings ("temp_c","device") VALUES (?,?)'
    assert request.params == (25.5, "sensor-001")
    entry = await repository.get(result.log_entry.id)
    assert entry.status == "SUCCESS"
    assert entry.retry_count == 0
    assert entry.data_sent == {"temp_c": 25.5, "device": "sensor-001"}


@pytest.mark.asyncio
async def test_retry_makes_max_retries_plus_one_attempts_then_fails():
    adapter = InMemoryAdapter(failures={"database:3": 10})
    executor, repository = make_executor(adapter)

    result = await executor.run(simple_pipeline(on_error="retry", max_retries=2), RECORD)

    assert result.status == "Aborted"
    assert len(adapter.calls) == 3
    assert result.outcomes[0].state == "Failed"
    assert result.outcomes[0].attempts == 3
    entry = await repository.get(result.log_entry.id)
    assert entry.status == "FAILED"
    assert entry.retry_count == 2


@pytest.mark.asyncio
async def test_retry_recovers():
    adapter = InMemoryAdapter(failures={"database:3": 1})
    executor, repository = make_executor(adapter)

    result = await executor.run(simple_pipeline(on_error="retry", max_retries=2), RECORD)

    assert result.status == "Completed"
    assert result.outcomes[0].attempts == 2
    entry = await repository.get(result.log_entry.id)
    assert (entry.status, entry.retry_count) == ("SUCCESS", 1)


@pytest.mark.asyncio
async def test_stop_does_not_retry():
    adapter = InMemoryAdapter(failures={"database:3": 1})
    executor, _ = make_executor(adapter)

    result = await executor.run(simple_pipeline(max_retries=5), RECORD)

    assert result.status == "Aborted"
    assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_skip_continues_with_unchanged_scope():
    adapter = InMemoryAdapter(failures={"rest:5": 1})
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(
        default_step("rest_call", 1, rest_destination_id=5, on_error="skip"),
        db_step(2),
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Completed"
    assert [o.state for o in result.outcomes] == ["Skipped", "Succeeded"]
    assert "step1_output" not in result.scope.variables
    assert adapter.calls_to("database:3")[0].params == (25.5, "sensor-001")


@pytest.mark.asyncio
async def test_mapping_errors_abort_even_when_skipping():
    adapter = InMemoryAdapter()
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(db_step(1, on_error="skip"), default_step("delay", 2, delay_seconds=0))

    result = await executor.run(pipeline, {"temperature": 1})

    assert result.status == "Aborted"
    assert MappingError.MISSING_REQUIRED_FIELD in result.error
    assert len(result.outcomes) == 1
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_inactive_steps_are_skipped():
    adapter = InMemoryAdapter()
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(
        default_step("rest_call", 1, rest_destination_id=5, is_active=False),
        db_step(2),
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Completed"
    assert [o.state for o in result.outcomes] == ["Skipped", "Succeeded"]
    assert adapter.calls_to("rest:5") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("temperature, alerted", [(40, True), (10, False)])
async def test_condition_branches(temperature, alerted):
    adapter = InMemoryAdapter()
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(
        default_step(
            "condition",
            1,
            condition_expression={"field": "temperature", "operator": "gt", "value": 30},
            on_true_step=2,
            on_false_step=3,
        ),
        default_step("rest_call", 2, rest_destination_id=5),
        db_step(
            3,
            input_mapping={"temperature": "$trigger.temperature", "deviceId": "$trigger.deviceId"},
        ),
    )

    result = await executor.run(pipeline, {"temperature": temperature, "deviceId": "s-1"})

    assert result.status == "Completed"
    assert bool(adapter.calls_to("rest:5")) is alerted
    assert len(adapter.calls_to("database:3")) == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_failure():
    adapter = InMemoryAdapter(delay=0.5)
    executor, _ = make_executor(adapter)

    result = await executor.run(simple_pipeline(timeout_seconds=0.05), RECORD)

    assert result.status == "Aborted"
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_delay_is_not_bounded_by_timeout():
    executor, _ = make_executor(InMemoryAdapter())
    pipeline = sequential_pipeline(
        default_step("delay", 1, delay_seconds=0.1, timeout_seconds=0.01)
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Completed"
    assert result.scope.last == RECORD


@pytest.mark.asyncio
async def test_condition_loops_are_bounded():
    executor, _ = make_executor(
        InMemoryAdapter(), config=ExecutorConfig(max_step_transitions=5)
    )
    pipeline = sequential_pipeline(
        default_step(
            "condition",
            1,
            condition_expression={"field": "deviceId", "operator": "exists"},
            on_true_step=1,
        )
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Aborted"
    assert "exceeded 5 step transitions" in result.error
    assert len(result.outcomes) == 5


@pytest.mark.asyncio
async def test_outputs_are_bound_and_referenced():
    adapter = InMemoryAdapter()
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(
        default_step(
            "transform",
            1,
            transform_expression={"temp_c": "temperature"},
            output_variable="normalized",
        ),
        db_step(
            2,
            input_mapping={"t": "$normalized.temp_c", "d": "$trigger.deviceId"},
            field_mappings=[
                FieldMapping(source_field="t", destination_column="temp_c"),
                FieldMapping(source_field="d", destination_column="device"),
            ],
        ),
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Completed"
    assert result.scope.variables["normalized"] == {"deviceId": "sensor-001", "temp_c": 25.5}
    assert result.scope.variables["step1_output"] == result.scope.variables["normalized"]
    assert result.scope.variables["step2_output"] == {"rowsAffected": 1}
    assert adapter.calls_to("database:3")[0].params == (25.5, "sensor-001")


@pytest.mark.asyncio
async def test_unresolved_reference_aborts():
    executor, _ = make_executor(InMemoryAdapter())
    pipeline = sequential_pipeline(
        default_step("rest_call", 1, rest_destination_id=5, input_mapping={"x": "$missing"})
    )

    result = await executor.run(pipeline, RECORD)

    assert result.status == "Aborted"
    assert MappingError.UNRESOLVED_VARIABLE in result.error


@pytest.mark.asyncio
async def test_rest_body_template():
    adapter = InMemoryAdapter(responses={"rest:5": {"id": 99}})
    executor, _ = make_executor(adapter)
    pipeline = sequential_pipeline(
        default_step(
            "rest_call",
            1,
            rest_destination_id=5,
            rest_path="/readings",
            rest_body_template='{"device": "{{trigger.deviceId}}", "reading": "{{input.temperature}}", "label": "T={{trigger.temperature}}"}',
        )
    )

    result = await executor.run(pipeline, RECORD)

    [request] = adapter.calls_to("rest:5")
    assert request.method == "POST"
    assert request.path == "/readings"
    assert request.body == {"device": "sensor-001", "reading": 25.5, "label": "T=25.5"}
    assert result.scope.variables["step1_output"] == {"id": 99}


def test_render_template_nested():
    context = {"trigger": {"a": {"b": [1, 2]}}, "input": "x"}
    assert render_template({"list": ["{{trigger.a.b}}", "{{ input }}"], "n": 3}, context) == {
        "list": [[1, 2], "x"],
        "n": 3,
    }


@pytest.mark.asyncio
async def test_failed_entries_are_deleted_when_workflow_asks():
    adapter = InMemoryAdapter(failures={"database:3": 1})
    executor, repository = make_executor(adapter)
    workflow = Workflow(id="wf", name="w", delete_failed_immediately=True)

    result = await executor.run(simple_pipeline(), RECORD, workflow)

    assert result.log_entry.status == "FAILED"
    assert await repository.get(result.log_entry.id) is None


class ExplodingAdapter(InMemoryAdapter):
    async def execute(self, destination, request):
        raise RuntimeError("driver exploded")


@pytest.mark.asyncio
async def test_unexpected_adapter_errors_end_the_run_as_failed():
    executor, repository = make_executor(ExplodingAdapter())

    result = await executor.run(simple_pipeline(on_error="retry", max_retries=3), RECORD)

    assert result.status == "Aborted"
    assert "driver exploded" in result.error
    assert result.outcomes[0].state == "Failed"
    page = await repository.query()
    assert [e.status for e in page.items] == ["FAILED"]
    assert "driver exploded" in page.items[0].message
