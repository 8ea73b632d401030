"""
CLI ``jobspine jobs``: job definition management and execution history.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import typer

from jobspine.cli.utils import fail, make_store, output_item, output_items
from jobspine.core.errors import JobspineError, JobNotFoundError
from jobspine.scheduling.cron import CronTrigger
from jobspine.scheduling.models import UNSET, JobCreate, JobStatus, JobUpdate
from jobspine.scheduling.store import SqlJobStore

app = typer.Typer(no_args_is_help=True)

LIST_COLUMNS = [
    "id",
    "name",
    "task_type",
    "cron_expression",
    "enabled",
    "next_run_at",
    "last_run_status",
]
HISTORY_COLUMNS = [
    "execution_id",
    "retry_attempt",
    "status",
    "started_at",
    "duration_ms",
    "error_message",
]


def _require(store: SqlJobStore, name: str):
    job = store.get_job_by_name(name)
    if job is None:
        fail(JobNotFoundError(name))
    return job


@app.command("list")
def list_jobs(
    enabled_only: bool = typer.Option(False, "--enabled-only"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List job definitions."""
    store = make_store(database)
    output_items(
        store.list_jobs(enabled_only=enabled_only),
        as_json=json_out,
        title="Jobs",
        columns=LIST_COLUMNS,
    )


@app.command("show")
def show_job(
    name: str = typer.Argument(..., help="Job name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a job definition."""
    store = make_store(database)
    output_item(_require(store, name), as_json=json_out, title=f"Job: {name}")


@app.command("create")
def create_job(
    name: str = typer.Argument(..., help="Unique job name"),
    task_type: str = typer.Argument(..., help="Registered task type"),
    cron: str = typer.Option(..., "--cron", help="5-field cron expression (UTC)"),
    payload: str = typer.Option("{}", "--payload", help="JSON payload for the task"),
    description: str | None = typer.Option(None, "--description"),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    allow_concurrent: bool = typer.Option(False, "--allow-concurrent"),
    max_concurrent: int | None = typer.Option(None, "--max-concurrent"),
    max_retries: int | None = typer.Option(None, "--max-retries"),
    retry_delay: float | None = typer.Option(None, "--retry-delay"),
    backoff: float | None = typer.Option(None, "--backoff"),
    timeout: float | None = typer.Option(None, "--timeout"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a job definition."""
    try:
        payload_obj = json.loads(payload)
    except json.JSONDecodeError as e:
        fail(f"--payload is not valid JSON: {e}")
    if not isinstance(payload_obj, dict):
        fail("--payload must be a JSON object")

    store = make_store(database)
    try:
        job = store.create_job(
            JobCreate(
                name=name,
                task_type=task_type,
                cron_expression=cron,
                payload=payload_obj,
                description=description,
                enabled=enabled,
                allow_concurrent=allow_concurrent,
                max_concurrent=max_concurrent,
                max_retries=max_retries,
                retry_delay=retry_delay,
                retry_backoff_multiplier=backoff,
                timeout=timeout,
                created_by="cli",
            )
        )
    except JobspineError as e:
        fail(e)
    output_item(job, as_json=json_out, title="Job Created")


@app.command("update")
def update_job(
    name: str = typer.Argument(..., help="Job name"),
    cron: str | None = typer.Option(None, "--cron"),
    payload: str | None = typer.Option(None, "--payload"),
    max_concurrent: int | None = typer.Option(None, "--max-concurrent"),
    unlimited: bool = typer.Option(False, "--unlimited", help="Clear the max_concurrent cap"),
    max_retries: int | None = typer.Option(None, "--max-retries"),
    timeout: float | None = typer.Option(None, "--timeout"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Update selected fields of a job definition."""
    if unlimited and max_concurrent is not None:
        fail("--unlimited and --max-concurrent are mutually exclusive")
    payload_obj = None
    if payload is not None:
        try:
            payload_obj = json.loads(payload)
        except json.JSONDecodeError as e:
            fail(f"--payload is not valid JSON: {e}")
    store = make_store(database)
    job = _require(store, name)
    try:
        job = store.update_job(
            job.id,
            JobUpdate(
                cron_expression=cron,
                payload=payload_obj,
                max_concurrent=None if unlimited else UNSET if max_concurrent is None else max_concurrent,
                max_retries=max_retries,
                timeout=timeout,
            ),
        )
    except JobspineError as e:
        fail(e)
    output_item(job, as_json=json_out, title="Job Updated")


@app.command("pause")
def pause_job(
    name: str = typer.Argument(..., help="Job name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Disable a job."""
    store = make_store(database)
    job = _require(store, name)
    store.set_enabled(job.id, False)
    typer.echo(f"Paused {name}")


@app.command("resume")
def resume_job(
    name: str = typer.Argument(..., help="Job name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Re-enable a job; its next run is computed from now."""
    store = make_store(database)
    job = _require(store, name)
    next_run_at = CronTrigger.next(job.cron_expression, datetime.now(UTC))
    store.set_enabled(job.id, True, next_run_at)
    typer.echo(f"Resumed {name}, next run at {next_run_at.isoformat()}")


@app.command("delete")
def delete_job(
    name: str = typer.Argument(..., help="Job name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a job and its execution history."""
    store = make_store(database)
    job = _require(store, name)
    if not yes:
        typer.confirm(f"Delete {name} and all of its execution records?", abort=True)
    store.delete_job(job.id)
    typer.echo(f"Deleted {name}")


@app.command("history")
def job_history(
    name: str | None = typer.Argument(None, help="Job name (all jobs if omitted)"),
    status: JobStatus | None = typer.Option(None, "--status"),
    limit: int = typer.Option(20, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show execution history, newest first."""
    store = make_store(database)
    job_id = _require(store, name).id if name else None
    records = store.list_executions(job_id=job_id, status=status, limit=limit, offset=offset)
    output_items(
        records,
        as_json=json_out,
        title=f"Executions: {name}" if name else "Executions",
        columns=None if json_out else (["job_name"] + HISTORY_COLUMNS if not name else HISTORY_COLUMNS),
    )
