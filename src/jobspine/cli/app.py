"""
Root Typer application for the jobspine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="jobspine",
    help="jobspine: cron-triggered background jobs with retries and history.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from jobspine import __version__

        typer.echo(f"jobspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """jobspine CLI: manage jobs, inspect history, run the scheduler."""


# ── Sub-command registration ─────────────────────────────────────────────

from jobspine.cli.cron import app as cron_app  # noqa: E402
from jobspine.cli.jobs import app as jobs_app  # noqa: E402
from jobspine.cli.run import run  # noqa: E402

app.add_typer(jobs_app, name="jobs", help="Job definitions and execution history.")
app.add_typer(cron_app, name="cron", help="Cron expression tools.")
app.command("run")(run)


if __name__ == "__main__":
    app()
