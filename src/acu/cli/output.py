"""CLI output helpers for activity-completion-upload.

Errors and warnings go to stderr; results and counts go to stdout.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Never

import typer


class OutputFormat(str, Enum):
    """Formats accepted by --format options."""

    table = "table"
    json = "json"
    csv = "csv"


def cli_error(message: str, details: Iterable[str] = (), exit_code: int = 1) -> Never:
    """Print an error (with optional bullet details) to stderr and exit."""
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    for detail in details:
        typer.echo(f"  - {detail}", err=True)
    raise typer.Exit(exit_code)


def cli_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def cli_warning(message: str) -> None:
    typer.secho(f"Warning: {message}", fg=typer.colors.YELLOW, err=True)


def echo_counts(counts: Mapping[str, int]) -> None:
    """Print labelled counts as an aligned block."""
    width = max((len(label) for label in counts), default=0) + 1
    for label, count in counts.items():
        typer.echo(f"  {(label + ':').ljust(width)} {count}")
