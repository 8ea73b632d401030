"""
CLI ``jobspine run``: host the scheduler in the foreground.

Task modules are imported with ``--tasks``; each one registers its task
types on the default registry at import time (``@registry.task`` /
``registry.register_model``). SIGINT and SIGTERM trigger a graceful stop.
"""

from __future__ import annotations

import asyncio
import importlib
import signal

import typer

from jobspine.cli.utils import console, fail, load_settings
from jobspine.core.errors import JobspineError
from jobspine.core.logging import configure_logging, get_logger
from jobspine.core.orm import create_engine_from_settings, init_db
from jobspine.core.settings import JobsSettings
from jobspine.execution.registry import TaskRegistry, get_default_registry
from jobspine.scheduling.scheduler import JobScheduler
from jobspine.scheduling.store import SqlJobStore
from jobspine.tasks import ensure_retention_job, register_builtin_tasks

logger = get_logger(__name__)


def _import_task_modules(modules: list[str]) -> None:
    for name in modules:
        try:
            importlib.import_module(name)
        except ImportError as e:
            fail(f"cannot import task module {name!r}: {e}")
        logger.info("task_module_loaded", module=name)


async def _serve(settings: JobsSettings, store: SqlJobStore, registry: TaskRegistry) -> None:
    scheduler = JobScheduler(store, registry, settings=settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    await scheduler.start()
    try:
        await stop.wait()
    finally:
        console.print("[yellow]Stopping scheduler...[/yellow]")
        await scheduler.stop()


def run(
    tasks: list[str] = typer.Option(
        [], "--tasks", "-t", help="Module that registers task types (repeatable)"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    retention: bool = typer.Option(
        True, "--retention/--no-retention", help="Ensure the nightly data_cleanup job exists"
    ),
    force: bool = typer.Option(False, "--force", help="Run even if JOBSPINE_ENABLED is false"),
    log_level: str | None = typer.Option(None, "--log-level"),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs"),
) -> None:
    """Start the scheduler and run until interrupted.

    Example::

        jobspine run --tasks myapp.jobs
        JOBSPINE_POLL_INTERVAL_SECONDS=1 jobspine run -t myapp.jobs --force
    """
    settings = load_settings(database)
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.json_logs if json_logs is None else json_logs,
    )
    if not (settings.enabled or force):
        fail("scheduler is disabled; set JOBSPINE_ENABLED=true or pass --force")

    try:
        engine = create_engine_from_settings(settings)
        init_db(engine)
        store = SqlJobStore(engine, settings)

        registry = register_builtin_tasks(get_default_registry())
        _import_task_modules(tasks)
        if retention:
            ensure_retention_job(store, settings)
    except JobspineError as e:
        fail(e)

    console.print(
        f"[bold green]Starting jobspine scheduler[/bold green] "
        f"(workers={settings.max_workers}, poll={settings.poll_interval_seconds}s, "
        f"task types={len(registry.list_task_types())})"
    )
    try:
        asyncio.run(_serve(settings, store, registry))
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    console.print("[green]Scheduler stopped[/green]")
