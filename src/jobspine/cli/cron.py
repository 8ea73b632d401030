"""
CLI ``jobspine cron``: check cron expressions before scheduling them.
"""

from __future__ import annotations

from datetime import UTC, datetime

import typer

from jobspine.cli.utils import console, fail
from jobspine.core.errors import InvalidCronExpressionError
from jobspine.scheduling.cron import CronTrigger

app = typer.Typer(no_args_is_help=True)


@app.command("next")
def next_runs(
    expression: str = typer.Argument(..., help="5-field cron expression, e.g. '*/15 * * * *'"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100),
    after: datetime | None = typer.Option(None, "--after", help="Start instant (UTC if naive)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Print the next fire times of EXPRESSION, in UTC."""
    start = after or datetime.now(UTC)
    try:
        times = CronTrigger.upcoming(expression, start, count=count)
    except InvalidCronExpressionError as e:
        fail(e)
    if json_out:
        console.print_json(data=[t.isoformat() for t in times])
        return
    for t in times:
        console.print(t.isoformat())


@app.command("validate")
def validate(
    expression: str = typer.Argument(..., help="Cron expression to check"),
) -> None:
    """Exit non-zero if EXPRESSION is not a valid 5-field cron expression."""
    try:
        CronTrigger.validate(expression)
    except InvalidCronExpressionError as e:
        fail(e)
    console.print(f"[green]valid[/green] {expression}")
