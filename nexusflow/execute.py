"""Pipeline execution engine.

Runs one inbound record through one pipeline as a state machine over the
pipeline's planned steps. Every step result is bound into an immutable
``Scope``; condition steps redirect control, failures are handled by each
step's ``onError`` policy, and the run is recorded by the execution logger.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from .adapters import DestinationAdapter, RestRequest
from .audit import ExecutionLogger
from .conditions import evaluate
from .config import ExecutorConfig
from .contracts import InboundRecord, Pipeline, Workflow, WorkflowStep
from .errors import (
    ConfigError,
    DestinationError,
    MappingError,
    StepError,
    ValidationError,
)
from .mapping import MISSING, as_payload, lookup, resolve_mappings
from .persistence.models import ExecutionLogEntry
from .query import Statement, TableTarget, synthesize
from .scope import Scope
from .steps import plan_steps
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)

StepState = Literal["Succeeded", "Failed", "Skipped"]
RunStatus = Literal["Completed", "Aborted"]

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


@dataclass(frozen=True)
class StepOutcome:
    step_order: int
    step_name: str
    state: StepState
    attempts: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class RunResult:
    """Terminal state of one pipeline run."""

    status: RunStatus
    outcomes: Tuple[StepOutcome, ...]
    scope: Scope
    log_entry: Optional[ExecutionLogEntry] = None
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "Completed"


@dataclass
class _Run:
    """Mutable bookkeeping for a run in progress."""

    entry: Optional[ExecutionLogEntry]
    outcomes: List[StepOutcome] = field(default_factory=list)
    data_sent: Any = None
    data_received: Any = None


def _resolve_placeholder(expression: str, context: Mapping[str, Any]) -> Any:
    name, _, path = expression.partition(".")
    if name not in context:
        raise MappingError(
            MappingError.UNRESOLVED_VARIABLE, expression, f"'{{{{{expression}}}}}' is not bound"
        )
    value = context[name]
    if path:
        value = lookup(value, path) if isinstance(value, Mapping) else MISSING
        if value is MISSING:
            raise MappingError(
                MappingError.UNRESOLVED_VARIABLE,
                expression,
                f"'{{{{{expression}}}}}' does not resolve to a value",
            )
    return value


def render_template(template: Any, context: Mapping[str, Any]) -> Any:
    """Fill ``{{name.path}}`` placeholders in a parsed JSON template.

    A string that is exactly one placeholder takes the value with its type;
    placeholders embedded in longer strings are interpolated as text.
    """
    if isinstance(template, dict):
        return {k: render_template(v, context) for k, v in template.items()}
    if isinstance(template, list):
        return [render_template(v, context) for v in template]
    if not isinstance(template, str):
        return template

    whole = _PLACEHOLDER.fullmatch(template.strip())
    if whole:
        return _resolve_placeholder(whole.group(1), context)

    def _text(match: re.Match) -> str:
        value = _resolve_placeholder(match.group(1), context)
        return value if isinstance(value, str) else json.dumps(value, default=str)

    return _PLACEHOLDER.sub(_text, template)


def _require_record(step: WorkflowStep, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise StepError(
            f"step {step.step_order} ({step.step_type}) needs an object input, "
            f"got {type(value).__name__}"
        )
    return value


class PipelineExecutor:
    """Execute pipelines against destination adapters."""

    def __init__(
        self,
        adapter: DestinationAdapter,
        execution_logger: Optional[ExecutionLogger] = None,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        self._adapter = adapter
        self._log = execution_logger
        self._config = config or ExecutorConfig()

    async def run(
        self,
        pipeline: Pipeline,
        record: Union[InboundRecord, Mapping[str, Any]],
        workflow: Optional[Workflow] = None,
    ) -> RunResult:
        """Run ``record`` through ``pipeline`` and return the terminal state."""
        if not isinstance(record, InboundRecord):
            record = InboundRecord(
                source_type=pipeline.source_type,
                source_id=pipeline.source_id or 0,
                payload=dict(record),
            )

        entry = None
        if self._log is not None:
            entry = await self._log.start(record, pipeline, workflow)
        run = _Run(entry=entry)
        scope = Scope.start(record.payload)

        steps = plan_steps(pipeline)
        by_order: Dict[int, WorkflowStep] = {s.step_order: s for s in steps}
        current = steps[0].step_order if steps else None
        transitions = 0
        error: Optional[str] = None

        while current is not None and current in by_order:
            transitions += 1
            if transitions > self._config.max_step_transitions:
                error = (
                    f"run exceeded {self._config.max_step_transitions} step transitions"
                )
                break

            step = by_order[current]
            if not step.is_active:
                run.outcomes.append(StepOutcome(step.step_order, step.step_name, "Skipped"))
                current += 1
                continue

            try:
                output, branch, attempts = await self._attempt(step, scope, run)
            except (MappingError, ValidationError, ConfigError) as e:
                run.outcomes.append(
                    StepOutcome(step.step_order, step.step_name, "Failed", 1, str(e))
                )
                error = f"Step {step.step_order} ({step.step_name}): {e}"
                break
            except StepError as e:
                attempts = e.attempts
                if step.on_error == "skip":
                    logger.info(
                        f"Pipeline {pipeline.id}: skipping failed step {step.step_order}: {e}"
                    )
                    run.outcomes.append(
                        StepOutcome(step.step_order, step.step_name, "Skipped", attempts, str(e))
                    )
                    current += 1
                    continue
                run.outcomes.append(
                    StepOutcome(step.step_order, step.step_name, "Failed", attempts, str(e))
                )
                error = f"Step {step.step_order} ({step.step_name}): {e}"
                break
            except Exception as e:
                logger.exception(
                    f"Pipeline {pipeline.id}: step {step.step_order} raised unexpectedly"
                )
                run.outcomes.append(
                    StepOutcome(step.step_order, step.step_name, "Failed", 1, repr(e))
                )
                error = f"Step {step.step_order} ({step.step_name}): unexpected error {e!r}"
                break

            run.outcomes.append(
                StepOutcome(step.step_order, step.step_name, "Succeeded", attempts)
            )
            scope = scope.bind(output, step.output_name, step.output_variable)

            if step.step_type == "condition":
                target = step.on_true_step if branch else step.on_false_step
                current = target if target is not None else current + 1
            else:
                current += 1

        status: RunStatus = "Aborted" if error else "Completed"
        if error:
            logger.warning(f"Pipeline {pipeline.id} aborted: {error}")
        else:
            logger.info(f"Pipeline {pipeline.id} completed for record {record.data_id}")

        if self._log is not None and run.entry is not None:
            message = error or f"Delivered {record.data_id} through pipeline {pipeline.id}"
            run.entry = await self._log.finish(
                run.entry,
                success=error is None,
                message=message,
                data_sent=run.data_sent,
                data_received=run.data_received,
                workflow=workflow,
            )
        return RunResult(
            status=status,
            outcomes=tuple(run.outcomes),
            scope=scope,
            log_entry=run.entry,
            error=error,
        )

    async def _attempt(
        self, step: WorkflowStep, scope: Scope, run: _Run
    ) -> Tuple[Any, bool, int]:
        """Invoke ``step`` under its timeout and retry policy.

        Returns ``(output, branch, attempts)``. A final ``StepError`` carries
        the number of attempts made in its ``attempts`` attribute.
        """
        allowed = 1 + step.max_retries if step.on_error == "retry" else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                output, branch = await self._invoke_with_timeout(step, scope, run)
                return output, branch, attempt
            except StepError as e:
                if attempt >= allowed:
                    e.attempts = attempt
                    raise
                message = f"Step {step.step_order} attempt {attempt} failed: {e}"
                logger.info(message)
                if self._log is not None and run.entry is not None:
                    run.entry = await self._log.retry(run.entry, message)
                await schedule_retry(
                    attempt,
                    base=self._config.retry_backoff_base,
                    jitter=self._config.retry_jitter,
                    max_delay=self._config.retry_max_delay,
                )

    async def _invoke_with_timeout(
        self, step: WorkflowStep, scope: Scope, run: _Run
    ) -> Tuple[Any, bool]:
        if step.step_type == "delay":
            return await self._invoke(step, scope, run)
        try:
            return await asyncio.wait_for(
                self._invoke(step, scope, run), timeout=step.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise DestinationError(
                f"step timed out after {step.timeout_seconds}s", timed_out=True
            ) from e

    async def _invoke(
        self, step: WorkflowStep, scope: Scope, run: _Run
    ) -> Tuple[Any, bool]:
        step_input = scope.render_input(step.input_mapping)

        if step.step_type == "rest_call":
            return await self._rest_call(step, scope, step_input, run), True

        if step.step_type in ("db_query", "sap_query"):
            return await self._query(step, step_input, run), True

        if step.step_type == "transform":
            record = _require_record(step, step_input)
            renamed = dict(record)
            for new_key, old_key in (step.transform_expression or {}).items():
                value = lookup(record, old_key)
                if value is MISSING:
                    continue
                renamed.pop(old_key, None)
                renamed[new_key] = value
            return renamed, True

        if step.step_type == "condition":
            result = evaluate(step.condition_expression or {}, step_input)
            logger.debug(f"Condition step {step.step_order} evaluated to {result}")
            return step_input, result

        if step.step_type == "delay":
            await asyncio.sleep(step.delay_seconds or 0)
            return step_input, True

        raise ValidationError(f"unknown step type '{step.step_type}'")

    async def _rest_call(
        self, step: WorkflowStep, scope: Scope, step_input: Any, run: _Run
    ) -> Any:
        if step.rest_body_template:
            try:
                template = json.loads(step.rest_body_template)
            except ValueError as e:
                raise ValidationError(f"body template is not valid JSON: {e}") from e
            body = render_template(template, scope.template_context(step_input))
        elif step.field_mappings:
            body = as_payload(
                resolve_mappings(_require_record(step, step_input), step.field_mappings)
            )
        else:
            body = step_input

        request = RestRequest(method=step.rest_method, path=step.rest_path, body=body)
        return await self._send(step, request, body, run)

    async def _query(self, step: WorkflowStep, step_input: Any, run: _Run) -> Any:
        record = _require_record(step, step_input)
        fields = resolve_mappings(record, step.field_mappings)
        if step.step_type == "sap_query":
            target = TableTarget(
                dialect="hana", table=step.sap_table or "", table_schema=step.sap_schema
            )
            statement = synthesize(
                target, fields, step.sap_query_type or "insert", step.sap_primary_key
            )
        else:
            target = TableTarget(
                dialect=step.db_dialect or "ansi", table=step.db_target_table or ""
            )
            statement = synthesize(
                target,
                fields,
                step.db_query_type or "insert",
                step.db_primary_key,
                step.db_extended_query,
            )
        return await self._send(step, statement, as_payload(fields), run)

    async def _send(
        self,
        step: WorkflowStep,
        request: Union[RestRequest, Statement],
        sent: Any,
        run: _Run,
    ) -> Any:
        ref = step.destination_ref()
        if ref is None:
            raise ValidationError(f"step {step.step_order} has no destination")

        result = await self._adapter.execute(ref, request)
        run.data_sent = sent
        run.data_received = result.data
        if not result.success:
            raise DestinationError(
                result.error or f"{ref} call failed", http_status=result.http_status
            )
        logger.debug(f"Step {step.step_order} delivered to {ref} in {result.latency_ms:.1f}ms")

        if result.data is not None:
            return result.data
        if result.rows_affected is not None:
            return {"rowsAffected": result.rows_affected}
        return {"status": result.http_status}
