"""Shared CLI helpers: store construction and rich output."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from jobspine.core.errors import JobspineError
from jobspine.core.orm import create_engine_from_settings, init_db
from jobspine.core.settings import JobsSettings, get_settings
from jobspine.scheduling.store import SqlJobStore

console = Console()
err_console = Console(stderr=True)


# ── Store helper ─────────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> JobsSettings:
    """Settings from the environment, with ``--database`` taking precedence."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


def make_store(database: str | None = None) -> SqlJobStore:
    """Open (and if needed create) the job store."""
    settings = load_settings(database)
    engine = create_engine_from_settings(settings)
    init_db(engine)
    return SqlJobStore(engine, settings)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def fail(error: JobspineError | str) -> None:
    """Print an error and exit with status 1."""
    if isinstance(error, JobspineError):
        err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {error.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    raise typer.Exit(code=1)


def output_items(
    items: list[Any],
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
) -> None:
    """Render a list of records as a table or JSON."""
    rows = [_to_dict(item) for item in items]
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    cols = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in cols:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in cols))
    console.print(table)


def output_item(item: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single record as key-value pairs or JSON."""
    data = _to_dict(item)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
