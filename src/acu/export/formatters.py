"""Output formatters for activity-completion-upload.

Renders dictionaries and lists of dictionaries as a plain-text table,
JSON, or CSV on stdout.
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any

import typer

FORMATS = ("table", "json", "csv")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list | tuple):
        return ", ".join(str(v) for v in value)
    return str(value)


def format_table(rows: list[dict[str, Any]], headers: list[str]) -> str:
    """Render rows as a left-aligned text table."""
    widths = {h: len(h) for h in headers}
    for row in rows:
        for h in headers:
            widths[h] = max(widths[h], len(_cell(row.get(h))))

    lines = ["  ".join(h.ljust(widths[h]) for h in headers).rstrip()]
    lines.append("  ".join("-" * widths[h] for h in headers))
    for row in rows:
        lines.append("  ".join(_cell(row.get(h)).ljust(widths[h]) for h in headers).rstrip())
    return "\n".join(lines)


def format_csv(rows: list[dict[str, Any]], headers: list[str]) -> str:
    """Render rows as CSV with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=headers, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({h: _cell(row.get(h)) for h in headers})
    return buffer.getvalue().rstrip("\n")


def format_output(
    data: dict[str, Any] | list[dict[str, Any]],
    fmt: str = "table",
    headers: list[str] | None = None,
) -> None:
    """Print data in the requested format.

    Args:
        data: A single record or a list of records.
        fmt: One of "table", "json", "csv".
        headers: Columns (and their order) for table/CSV output. Defaults
            to the keys of the first record.

    Raises:
        ValueError: If the format is unknown.
    """
    if fmt not in FORMATS:
        raise ValueError(f"Unknown format '{fmt}'. Must be one of: {list(FORMATS)}")

    if fmt == "json":
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if isinstance(data, dict):
        if fmt == "table" and headers is None:
            # Single record: key/value listing
            width = max((len(k) for k in data), default=0)
            for key, value in data.items():
                typer.echo(f"{key.ljust(width)}  {_cell(value)}")
            return
        rows = [data]
    else:
        rows = data

    if headers is None:
        headers = list(rows[0].keys()) if rows else []

    if fmt == "csv":
        typer.echo(format_csv(rows, headers))
    else:
        typer.echo(format_table(rows, headers))
