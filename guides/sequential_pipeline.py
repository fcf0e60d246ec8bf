"""Build a sequential pipeline in code and run one record through it."""

import asyncio

from nexusflow import (
    ExecutionLogger,
    PipelineExecutor,
    compile_graph,
    get_repository,
)
from nexusflow.adapters import InMemoryAdapter
from nexusflow.compiler import AuthoringGraph
from nexusflow.steps import StepSequence


def build_graph() -> AuthoringGraph:
    # Branch targets must point at existing steps, so they are set last
    steps = (
        StepSequence()
        .add(
            "condition",
            condition_expression={"field": "temperature", "operator": "gt", "value": 30},
        )
        .add("rest_call", rest_destination_id=5, rest_path="/alerts")
        .add(
            "db_query",
            database_config_id=3,
            db_target_table="readings",
            input_mapping={"temperature": "$trigger.temperature", "deviceId": "$trigger.deviceId"},
            field_mappings=[
                {"sourceField": "temperature", "destinationColumn": "temp_c", "dataType": "number"},
                {"sourceField": "deviceId", "destinationColumn": "device"},
            ],
        )
    )
    steps = steps.replace(0, steps[0].model_copy(update={"on_true_step": 2, "on_false_step": 3}))
    return AuthoringGraph.model_validate(
        {
            "workflow": {"id": "guide", "name": "Guide"},
            "nodes": [{"id": "app", "kind": "sender_app", "refId": 7}],
            "edges": [{"id": "alerts", "source": "app", "steps": [s.to_wire() for s in steps]}],
        }
    )


async def main():
    workflow = compile_graph(build_graph())
    adapter = InMemoryAdapter()
    executor = PipelineExecutor(adapter, ExecutionLogger(get_repository()))

    result = await executor.run(
        workflow.pipelines[0], {"temperature": 35, "deviceId": "sensor-001"}, workflow
    )

    print(f"Run {result.status}")
    for outcome in result.outcomes:
        print(f"  {outcome.step_order}. {outcome.step_name}: {outcome.state}")
    for ref, request in adapter.calls:
        print(f"  -> {ref}: {request}")


if __name__ == "__main__":
    asyncio.run(main())
