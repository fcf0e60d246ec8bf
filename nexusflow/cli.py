"""Command line interface for nexusflow pipelines."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from nexusflow import (
    ExecutionLogger,
    IngestWorker,
    PipelineArena,
    PipelineExecutor,
    get_repository,
    get_transport,
)
from nexusflow.adapters import InMemoryAdapter, build_adapter
from nexusflow.compiler import compile_graph, dump_ir, load_graph, load_ir
from nexusflow.config import load_config
from nexusflow.contracts import InboundRecord
from nexusflow.db import WorkflowStore
from nexusflow.errors import ConfigError, ValidationError
from nexusflow.mapping import ColumnInfo, auto_map
from nexusflow.persistence import LogFilter
from nexusflow.transports import InMemoryTransport

app = typer.Typer(help="CLI for nexusflow pipelines")

workflow_app = typer.Typer(help="Compile, validate and run workflows")
worker_app = typer.Typer(help="Run ingestion workers")
logs_app = typer.Typer(help="Inspect execution logs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(worker_app, name="worker")
app.add_typer(logs_app, name="logs")


def _read_document(path: Path) -> dict:
    if not path.exists():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _report_issues(error: ConfigError) -> None:
    for issue in error.issues:
        typer.secho(f"{issue.code}\t{issue.field}\t{issue.message}", fg=typer.colors.RED)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Logging level (default from config)"),
) -> None:
    """nexusflow CLI entry point."""
    level = log_level or load_config().log_level
    logging.basicConfig(level=level.upper())


@workflow_app.command("compile")
def workflow_compile(
    graph_file: Path,
    output: Optional[Path] = typer.Option(None, help="Write the IR here instead of stdout"),
    save: bool = typer.Option(False, help="Store the compiled workflow"),
) -> None:
    """
    Compile an authoring graph (JSON or YAML) into workflow IR.

    Every problem in the graph is reported; nothing is written when any exist.

    Example:
        nexusflow workflow compile graph.json --output workflow.ir.json
    """
    try:
        workflow = compile_graph(load_graph(_read_document(graph_file)))
    except ConfigError as e:
        _report_issues(e)
        raise typer.Exit(code=1)
    except ValidationError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    ir = dump_ir(workflow)
    if output:
        output.write_text(ir)
        typer.echo(f"Wrote {workflow.id} to {output}")
    else:
        typer.echo(ir)

    if save:
        store = WorkflowStore(load_config().workflow_store_url)

        async def _save() -> None:
            await store.init_db()
            await store.save(workflow)
            await store.close()

        asyncio.run(_save())
        typer.echo(f"Saved workflow {workflow.id}")


@workflow_app.command("validate")
def workflow_validate(ir_file: Path) -> None:
    """Check that a workflow IR file loads and passes validation."""
    if not ir_file.exists():
        typer.secho(f"File not found: {ir_file}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflow = load_ir(ir_file.read_text())
    except ValidationError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {workflow.id} is valid ({len(workflow.pipelines)} pipeline(s))")


@workflow_app.command("run")
def workflow_run(
    ir_file: Path,
    record_file: Path,
    dry_run: bool = typer.Option(False, help="Record destination calls instead of sending"),
) -> None:
    """
    Run one inbound record through a workflow's matching pipelines.

    The record file holds an inbound record: sourceType, sourceId, payload.

    Example:
        nexusflow workflow run workflow.ir.json record.json --dry-run
    """
    try:
        workflow = load_ir(ir_file.read_text())
    except ValidationError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    record = InboundRecord.model_validate(_read_document(record_file))

    config = load_config()
    adapter = InMemoryAdapter() if dry_run else build_adapter(config)
    execution_logger = ExecutionLogger(get_repository())
    executor = PipelineExecutor(adapter, execution_logger, config.executor)
    worker = IngestWorker(InMemoryTransport(), PipelineArena([workflow]), executor, execution_logger)

    async def _run():
        try:
            return await worker.handle(record)
        finally:
            await adapter.close()

    results = asyncio.run(_run())
    if not results:
        typer.echo("DROPPED: no active pipeline for this source")
        return
    for result in results:
        entry = result.log_entry
        pipeline_id = entry.pipeline_id if entry else "-"
        typer.echo(f"{pipeline_id}\t{result.status}")
        for outcome in result.outcomes:
            line = f"  {outcome.step_order}. {outcome.step_name}: {outcome.state}"
            if outcome.error:
                line += f" ({outcome.error})"
            typer.echo(line)
    if dry_run:
        for ref, request in adapter.calls:
            typer.echo(f"{ref}\t{request.model_dump_json()}")
    if any(not r.completed for r in results):
        raise typer.Exit(code=1)


@workflow_app.command("automap")
def workflow_automap(
    fields: List[str] = typer.Option(..., "--field", help="Source field name (repeatable)"),
    columns: List[str] = typer.Option(
        ..., "--column", help="Destination column, optionally 'name:type:nullable'"
    ),
) -> None:
    """Suggest field mappings by case-insensitive name match."""
    infos = []
    for column in columns:
        name, _, rest = column.partition(":")
        data_type, _, nullable = rest.partition(":")
        infos.append(
            ColumnInfo(
                name=name,
                data_type=data_type or None,
                is_nullable=(nullable.lower() in ("1", "true", "yes")) if nullable else None,
            )
        )
    mappings = auto_map(fields, infos)
    typer.echo(json.dumps([m.to_wire() for m in mappings], indent=2))


@worker_app.command("start")
def worker_start(
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    queue: Optional[str] = typer.Option(None, help="Queue to consume (default from config)"),
) -> None:
    """
    Route records from the configured transport through saved workflows.

    Example:
        nexusflow worker start --lifespan 300
    """
    config = load_config()

    async def _start() -> int:
        store = WorkflowStore(config.workflow_store_url)
        await store.init_db()
        workflows = await store.list()
        await store.close()

        adapter = build_adapter(config)
        execution_logger = ExecutionLogger(get_repository(config=config))
        worker = IngestWorker(
            get_transport(config=config),
            PipelineArena(workflows),
            PipelineExecutor(adapter, execution_logger, config.executor),
            execution_logger,
            queue=queue or config.transport.queue,
        )
        try:
            return await worker.start(lifespan=lifespan)
        finally:
            await adapter.close()

    typer.echo("Starting worker")
    handled = asyncio.run(_start())
    typer.echo(f"Worker stopped after {handled} record(s)")


@logs_app.command("list")
def logs_list(
    status: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    date_from: Optional[datetime] = typer.Option(None, help="Only entries created at or after this time (UTC)"),
    date_to: Optional[datetime] = typer.Option(None, help="Only entries created at or before this time (UTC)"),
    limit: int = 50,
    offset: int = 0,
) -> None:
    """List execution log entries, newest first."""
    repo = get_repository()
    filters = LogFilter(
        status=status,
        source=source,
        destination=destination,
        date_from=date_from,
        date_to=date_to,
    )
    page = asyncio.run(
        repo.query(
            filters,
            limit=limit,
            offset=offset,
        )
    )
    if not page.items:
        typer.echo("No log entries found")
        return
    for entry in page.items:
        typer.echo(
            f"{entry.created_at.isoformat()}\t{entry.status}\t{entry.source}\t"
            f"{entry.destination or '-'}\t{entry.retry_count}\t{entry.message or ''}"
        )
    typer.echo(f"{len(page.items)} of {page.total}")


@logs_app.command("stats")
def logs_stats() -> None:
    """Print aggregate log counters as JSON."""
    stats = asyncio.run(get_repository().stats())
    typer.echo(json.dumps(stats.to_wire(), indent=2, sort_keys=True))


@logs_app.command("purge")
def logs_purge() -> None:
    """Delete entries whose retention has expired."""
    removed = asyncio.run(get_repository().purge_expired())
    typer.echo(f"Purged {removed} expired log entries")


if __name__ == "__main__":
    app()
