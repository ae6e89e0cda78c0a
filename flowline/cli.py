"""Command line interface for flowline."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from flowline.config import load_config
from flowline.dispatch import Dispatcher
from flowline.errors import (
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WorkflowNotCompletedError,
)
from flowline.factory import WorkflowFactory
from flowline.handlers import default_registry
from flowline.persistence import get_repository
from flowline.queries import get_workflow_results, get_workflow_status
from flowline.runner import TaskRunner

app = typer.Typer(help="CLI for flowline workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
worker_app = typer.Typer(help="Commands for running the task dispatcher")

app.add_typer(workflow_app, name="workflow")
app.add_typer(worker_app, name="worker")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level for flowline loggers"),
) -> None:
    """flowline CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@workflow_app.command("create")
def workflow_create(
    definition_path: Path,
    client_id: str = typer.Option(..., help="Client identifier for the workflow"),
    payload_file: Optional[Path] = typer.Option(
        None, help="File whose contents become every task's input document"
    ),
) -> None:
    """
    Create a workflow from a YAML definition.

    The definition lists steps with ``taskType``, ``stepNumber`` and optional
    ``name``/``dependsOn``. Tasks are queued for the dispatcher.

    Example:
        flowline workflow create example_workflow.yml --client-id client-1 \\
            --payload-file area.geojson
    """
    store = get_repository()
    config = load_config()
    factory = WorkflowFactory(
        store,
        default_registry(store),
        strict_handlers=config.dispatcher.strict_handlers,
    )
    payload = payload_file.read_text() if payload_file else None
    try:
        workflow = asyncio.run(
            factory.create_workflow_from_yaml(definition_path, client_id, payload)
        )
    except (ValidationError, ConfigurationError, PersistenceError) as exc:
        typer.secho(f"Workflow rejected: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow created: {workflow.workflow_id}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflows with their current status."""
    store = get_repository()
    workflows = asyncio.run(store.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.workflow_id}\t{wf.status.value}\t{wf.name or ''}")


@workflow_app.command("status")
def workflow_status(workflow_id: str) -> None:
    """
    Show a workflow's status and task progress.

    Example:
        flowline workflow status 3f6c...
        # Output: Workflow 3f6c...: in_progress (2/3 tasks completed)
    """
    store = get_repository()
    try:
        view = asyncio.run(get_workflow_status(store, workflow_id))
    except NotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Workflow {view.workflow_id}: {view.status.value} "
        f"({view.completed_tasks}/{view.total_tasks} tasks completed)"
    )


@workflow_app.command("results")
def workflow_results(workflow_id: str) -> None:
    """Print the final report of a completed or failed workflow as JSON."""
    store = get_repository()
    try:
        view = asyncio.run(get_workflow_results(store, workflow_id))
    except NotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    except WorkflowNotCompletedError as exc:
        typer.echo(f"Workflow is not yet completed (current status: {exc.current_status})")
        raise typer.Exit(code=2)
    typer.echo(json.dumps(view.model_dump(mode="json"), indent=2))


@worker_app.command("run")
def worker_run(
    poll_interval: Optional[float] = typer.Option(
        None, help="Seconds between polls (default from configuration)"
    ),
    max_iterations: Optional[int] = typer.Option(
        None, help="Stop after this many polls (default: run indefinitely)"
    ),
    recover: bool = typer.Option(
        True, help="Recompute stale workflow aggregates before polling"
    ),
) -> None:
    """
    Run the dispatcher that executes ready tasks one at a time.

    Example:
        flowline worker run --poll-interval 1
    """
    config = load_config()
    store = get_repository()
    dispatcher = Dispatcher(
        store,
        TaskRunner(store, default_registry(store)),
        poll_interval=(
            poll_interval if poll_interval is not None else config.dispatcher.poll_interval
        ),
    )

    async def _serve() -> int:
        if recover:
            await dispatcher.recover()
        return await dispatcher.run(max_iterations=max_iterations)

    typer.echo("Starting dispatcher")
    try:
        executed = asyncio.run(_serve())
    except KeyboardInterrupt:
        typer.echo("Dispatcher interrupted")
        return
    typer.echo(f"Dispatcher finished after running {executed} tasks")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
) -> None:
    """Serve the HTTP status and results endpoints."""
    import uvicorn

    from flowline.api import create_app

    config = load_config()
    uvicorn.run(
        create_app(get_repository(), strict_handlers=config.dispatcher.strict_handlers),
        host=host or config.api.host,
        port=port or config.api.port,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
