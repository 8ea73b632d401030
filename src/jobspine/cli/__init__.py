"""
CLI layer for jobspine.

Provides a Typer application whose sub-commands delegate to the job store
and scheduler.  This package handles only terminal transport: argument
parsing, coloured output, and table formatting.

Entry point::

    jobspine --help
"""

from jobspine.cli.app import app

__all__ = ["app"]
