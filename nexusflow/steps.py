"""Ordered step list used by the authoring flow.

Every structural edit returns a new, committed sequence. Committing
renumbers ``stepOrder`` to 1..n and rewrites condition branch targets so
they keep pointing at the same step.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .contracts import Pipeline, StepType, WorkflowStep

STEP_LABELS: Dict[str, str] = {
    "rest_call": "REST Call",
    "db_query": "DB Query",
    "sap_query": "SAP Query",
    "transform": "Transform",
    "condition": "Condition",
    "delay": "Delay",
}

_TYPE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "rest_call": {"rest_method": "POST"},
    "db_query": {"db_query_type": "insert"},
    "sap_query": {"sap_query_type": "insert"},
    "delay": {"delay_seconds": 5},
}


def default_step(step_type: StepType, order: int, **overrides: Any) -> WorkflowStep:
    """Create a step with the editor's defaults for ``step_type``."""
    fields: Dict[str, Any] = {
        "step_order": order,
        "step_name": f"{STEP_LABELS[step_type]} {order}",
        "step_type": step_type,
        "on_error": "stop",
        "max_retries": 0,
        "timeout_seconds": 30,
        "is_active": True,
    }
    fields.update(_TYPE_DEFAULTS.get(step_type, {}))
    fields.update(overrides)
    return WorkflowStep(**fields)


class StepSequence:
    """Immutable ordered list of workflow steps."""

    def __init__(self, steps: Sequence[WorkflowStep] = ()) -> None:
        self._steps: Tuple[WorkflowStep, ...] = tuple(steps)

    def __iter__(self) -> Iterator[WorkflowStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> WorkflowStep:
        return self._steps[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StepSequence):
            return NotImplemented
        return self._steps == other._steps

    @property
    def steps(self) -> List[WorkflowStep]:
        return list(self._steps)

    def is_contiguous(self) -> bool:
        return [s.step_order for s in self._steps] == list(range(1, len(self._steps) + 1))

    @classmethod
    def commit(
        cls,
        steps: Sequence[WorkflowStep],
        previous_orders: Sequence[Optional[int]],
    ) -> "StepSequence":
        """Renumber ``steps`` to 1..n and remap branch targets.

        ``previous_orders[i]`` is the ``stepOrder`` step ``i`` had before the
        edit (``None`` for a newly added step). A branch target whose step no
        longer exists is cleared, so the condition falls through.
        """
        remap = {
            old: new
            for new, old in enumerate(previous_orders, start=1)
            if old is not None
        }
        committed = []
        for new_order, step in enumerate(steps, start=1):
            update: Dict[str, Any] = {"step_order": new_order}
            if step.step_type == "condition":
                for attr in ("on_true_step", "on_false_step"):
                    target = getattr(step, attr)
                    if target is not None:
                        update[attr] = remap.get(target)
            committed.append(step.model_copy(update=update))
        return cls(committed)

    def _orders(self) -> List[Optional[int]]:
        return [s.step_order for s in self._steps]

    def add(self, step_type: StepType, **overrides: Any) -> "StepSequence":
        """Append a new default step of ``step_type``."""
        step = default_step(step_type, len(self._steps) + 1, **overrides)
        return self.commit(list(self._steps) + [step], self._orders() + [None])

    def insert(self, index: int, step: WorkflowStep) -> "StepSequence":
        steps = list(self._steps)
        orders = self._orders()
        steps.insert(index, step)
        orders.insert(index, None)
        return self.commit(steps, orders)

    def remove(self, index: int) -> "StepSequence":
        steps = list(self._steps)
        orders = self._orders()
        del steps[index]
        del orders[index]
        return self.commit(steps, orders)

    def move(self, from_index: int, to_index: int) -> "StepSequence":
        """Move the step at ``from_index`` so it ends up at ``to_index``."""
        steps = list(self._steps)
        orders = self._orders()
        steps.insert(to_index, steps.pop(from_index))
        orders.insert(to_index, orders.pop(from_index))
        return self.commit(steps, orders)

    def toggle(self, index: int) -> "StepSequence":
        step = self._steps[index]
        return self.replace(index, step.model_copy(update={"is_active": not step.is_active}))

    def replace(self, index: int, step: WorkflowStep) -> "StepSequence":
        steps = list(self._steps)
        steps[index] = step
        return self.commit(steps, self._orders())


def destination_step(pipeline: Pipeline, order: int) -> Optional[WorkflowStep]:
    """Express a pipeline's own destination as a step.

    Returns ``None`` when the pipeline has no destination. Simple pipelines
    run as this single step; sequential pipelines run it after their last
    authored step.
    """
    ref = pipeline.destination_ref()
    if ref is None:
        return None

    common: Dict[str, Any] = {
        "step_order": order,
        "step_name": f"{pipeline.destination_type} destination",
        "on_error": pipeline.on_error,
        "max_retries": pipeline.max_retries,
        "timeout_seconds": pipeline.timeout_seconds,
        "field_mappings": pipeline.field_mappings,
    }
    if ref.kind == "rest":
        return WorkflowStep(
            step_type="rest_call",
            rest_destination_id=ref.id,
            rest_method=pipeline.rest_method,
            rest_path=pipeline.rest_path,
            **common,
        )
    if ref.kind == "sap":
        return WorkflowStep(
            step_type="sap_query",
            sap_destination_id=ref.id,
            sap_query_type=pipeline.operation(),
            sap_schema=pipeline.table_schema(),
            sap_table=pipeline.table_name(),
            sap_primary_key=pipeline.primary_key_column(),
            **common,
        )
    return WorkflowStep(
        step_type="db_query",
        database_config_id=ref.id,
        db_query_type=pipeline.operation(),
        db_target_table=pipeline.table_name(),
        db_primary_key=pipeline.primary_key_column(),
        db_extended_query=pipeline.custom_query,
        db_dialect=pipeline.dialect,
        **common,
    )


def plan_steps(pipeline: Pipeline) -> List[WorkflowStep]:
    """Ordered steps a run of ``pipeline`` executes."""
    steps = sorted(pipeline.steps, key=lambda s: s.step_order)
    final = destination_step(pipeline, len(steps) + 1)
    if final is not None:
        steps.append(final)
    return steps
