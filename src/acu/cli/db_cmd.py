"""Database command group for activity-completion-upload CLI.

Commands:
- acu db migrate: Run pending migrations
- acu db status: Show migration state and table row counts
- acu db backup: Copy the database file
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer

from acu.cli.output import OutputFormat, cli_error, cli_success, cli_warning
from acu.config.settings import load_settings
from acu.export.formatters import format_output
from acu.ledger.store import (
    COUNTED_TABLES,
    backup_database,
    get_db_info,
    get_migration_status,
    run_migrations,
)

app = typer.Typer(
    name="db",
    help="""Database operations for activity-completion-upload.

Courses, users, enrolments and completions live in a local SQLite database
(~/.local/share/acu/platform.db by default, or ACU_DB_PATH). Run
'acu db migrate' after first install and after updates.
""",
    no_args_is_help=True,
)


def _db_path() -> Path:
    return load_settings().db_path


@app.command("migrate")
def db_migrate(
    no_backup: Annotated[
        bool,
        typer.Option("--no-backup", help="Skip the pre-migration copy of the database."),
    ] = False,
) -> None:
    """Create the platform and upload-tracking tables, or bring them up to date."""
    db_path = _db_path()
    typer.echo(f"Database: {db_path}")

    result = run_migrations(db_path, backup=not no_backup)
    status = result["status"]

    if status == "up_to_date":
        cli_success(f"Already at revision {result['previous_revision']}.")
        return

    if status == "failed":
        if "backup_available" in result:
            cli_warning(f"The database was copied to {result['backup_available']} first.")
        cli_error(f"Migration failed: {result.get('error', 'unknown error')}")

    applied = result["applied"]
    cli_success(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
    if "backup_path" in result:
        typer.echo(f"Previous database kept at {result['backup_path']}")
    typer.echo(f"Current revision: {result['current_revision']}")


def _status_report(db_path: Path) -> dict[str, Any]:
    info = get_db_info(db_path)
    migrations = get_migration_status(db_path)

    report: dict[str, Any] = {
        "path": info["path"],
        "exists": info["exists"],
        "size_kb": round(int(info.get("size_bytes", 0)) / 1024, 1),
        "journal_mode": info.get("journal_mode"),
        "head_revision": migrations["head_revision"],
        "current_revision": migrations["current_revision"],
        "pending_revisions": migrations["pending_revisions"],
    }
    for table in COUNTED_TABLES:
        if f"{table}_rows" in info:
            report[f"{table}_rows"] = info[f"{table}_rows"]
    return report


@app.command("status")
def db_status(
    fmt: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.table,
) -> None:
    """Show the database file, its migration state and row counts."""
    report = _status_report(_db_path())
    format_output(report, fmt=fmt.value)

    if fmt is OutputFormat.table:
        if report["pending_revisions"]:
            cli_warning("Pending migrations. Run 'acu db migrate'.")
        else:
            cli_success("Up to date.")


@app.command("backup")
def db_backup(
    suffix: Annotated[
        str | None,
        typer.Option("--suffix", "-s", help="Backup file suffix (defaults to a timestamp)."),
    ] = None,
) -> None:
    """Copy the database file next to itself, e.g. before a large upload."""
    try:
        backup_path = backup_database(_db_path(), suffix=suffix)
    except FileNotFoundError as e:
        cli_error(str(e))
    cli_success(f"Backup created: {backup_path}")
