"""Upload commands for activity-completion-upload CLI.

Provides commands for uploading completion files and reviewing runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from acu.cli.output import OutputFormat, cli_error, cli_success, cli_warning, echo_counts
from acu.completion.reconcile import OutcomeKind
from acu.completion.records import ImportFileError, read_import_file
from acu.config.settings import Settings, configure_logging, load_settings
from acu.export.formatters import format_output
from acu.ledger.queries import (
    find_course_id,
    get_course_completions,
    get_import_row_logs,
    get_import_run,
    get_last_import_run,
    list_import_runs,
)
from acu.ledger.upload import upload_completions

app = typer.Typer(
    name="upload",
    help="""Upload activity completions and review upload runs.

Upload files are CSV with the columns course, user, section, activity and
completiondate. Use section "0" for the unnamed first section of a course.
Completion dates are Unix timestamps or ISO dates (2024-03-01).

Uploads are replay-safe: rows already completed with the same date are
skipped, and differing dates are corrected.
""",
    no_args_is_help=True,
)


def _load_checked_settings() -> Settings:
    """Load settings, exiting on configuration errors or a missing database."""
    settings = load_settings()

    errors = settings.validate()
    if errors:
        cli_error("Configuration errors:", details=errors)

    if not settings.db_path.exists():
        cli_error(f"Database not found at {settings.db_path}. Run 'acu db migrate' first.")

    return settings


@app.command("file")
def upload_file(
    path: Annotated[
        Path,
        typer.Argument(help="CSV file of completions to upload."),
    ],
    course_field: Annotated[
        str | None,
        typer.Option("--course-field", help="Override the configured course lookup field."),
    ] = None,
    user_field: Annotated[
        str | None,
        typer.Option("--user-field", help="Override the configured user lookup field."),
    ] = None,
    role: Annotated[
        str | None,
        typer.Option("--role", "-r", help="Override the role shortname used for enrolment."),
    ] = None,
    operator: Annotated[
        str | None,
        typer.Option("--operator", "-o", help="Override the operator username."),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress detailed output.",
        ),
    ] = False,
) -> None:
    """Mark activities complete from a CSV file.

    Each row is reconciled on its own: the user is enrolled if needed, then
    the activity is completed on their behalf, or its completion date is
    corrected if it was already complete.
    \b
    Examples:
      acu upload file completions.csv
      acu upload file completions.csv --course-field idnumber --user-field email
    """
    settings = _load_checked_settings()
    if course_field:
        settings.course_field = course_field
    if user_field:
        settings.user_field = user_field
    if role:
        settings.student_role = role
    if operator:
        settings.operator = operator

    errors = settings.validate()
    if errors:
        cli_error("Invalid options:", details=errors)

    configure_logging(settings.log_level)

    try:
        rows = read_import_file(path, settings.course_field, settings.user_field)
    except ImportFileError as e:
        cli_error(str(e))

    if not quiet:
        typer.echo(f"Uploading {len(rows)} row(s) from {path.name}...")

    result = upload_completions(
        settings.db_path,
        rows,
        role_shortname=settings.student_role,
        operator_username=settings.operator,
        retry_policy=settings.retry_policy(),
        source=path.name,
    )

    if result.error:
        cli_error(f"Upload failed: {result.error}")

    if not quiet:
        cli_success(f"Upload complete (run {result.run_id}).")
        echo_counts(
            {
                "Added": result.added_count,
                "Updated": result.updated_count,
                "Skipped": result.skipped_count,
                "Errors": result.error_count,
                "Total": result.total_count,
            }
        )

    if result.error_count:
        cli_warning(f"{result.error_count} row(s) failed. See 'acu upload log {result.run_id}'.")
        if not quiet:
            failed = [r for r in result.rows if r.outcome == OutcomeKind.ERROR]
            for report in failed[:5]:  # Show first 5
                typer.echo(f"    - line {report.line}: {report.message}")
            if len(failed) > 5:
                typer.echo(f"    ... and {len(failed) - 5} more")


@app.command("status")
def status(
    fmt: Annotated[
        OutputFormat,
        typer.Option(
            "--format",
            "-f",
            help="Output format.",
        ),
    ] = OutputFormat.table,
) -> None:
    """Show the last upload run: when, which file, and outcome counts."""
    settings = _load_checked_settings()

    run = get_last_import_run(settings.db_path)
    if run is None:
        typer.echo("No upload runs found.")
        return

    format_output(run.to_dict(), fmt=fmt.value)


@app.command("runs")
def runs(
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of runs to show."),
    ] = 20,
) -> None:
    """List recent upload runs, newest first."""
    settings = _load_checked_settings()

    data = list_import_runs(settings.db_path, limit=limit)
    if not data:
        typer.echo("No upload runs found.")
        return

    headers = [
        "id",
        "started_at",
        "source",
        "status",
        "added_count",
        "updated_count",
        "skipped_count",
        "error_count",
    ]
    format_output(data, fmt="table", headers=headers)


@app.command("log")
def log(
    run_id: Annotated[
        int,
        typer.Argument(help="Upload run ID (see 'acu upload runs')."),
    ],
    outcome: Annotated[
        str | None,
        typer.Option(
            "--outcome",
            help="Only show rows with this outcome (added, updated, skipped, error).",
        ),
    ] = None,
    fmt: Annotated[
        OutputFormat,
        typer.Option(
            "--format",
            "-f",
            help="Output format.",
        ),
    ] = OutputFormat.table,
) -> None:
    """Show what happened to each row of an upload run.
    \b
    Examples:
      acu upload log 3
      acu upload log 3 --outcome error --format csv > errors.csv
    """
    settings = _load_checked_settings()

    if get_import_run(settings.db_path, run_id) is None:
        cli_error(f"Upload run {run_id} not found.")

    entries = get_import_row_logs(settings.db_path, run_id, outcome=outcome)
    if not entries:
        typer.echo("No rows match.")
        return

    headers = ["line", "outcome", "message", "course_id", "user_id"]
    format_output(entries, fmt=fmt.value, headers=headers)


@app.command("completions")
def completions(
    course: Annotated[
        str,
        typer.Argument(help="Course to list, matched against the configured course field."),
    ],
    course_field: Annotated[
        str | None,
        typer.Option("--course-field", help="Override the configured course lookup field."),
    ] = None,
    fmt: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.table,
) -> None:
    """List the activity completions recorded in a course.
    \b
    Examples:
      acu upload completions CS101
      acu upload completions C-101 --course-field idnumber --format json
    """
    settings = _load_checked_settings()

    try:
        course_id = find_course_id(settings.db_path, course_field or settings.course_field, course)
    except ValueError as e:
        cli_error(str(e))
    if course_id is None:
        cli_error(f'Unable to find course matching "{course}"')

    data = get_course_completions(settings.db_path, course_id)
    if not data:
        typer.echo("No completions recorded.")
        return

    headers = ["activity_name", "username", "completion_state", "overridden", "time_modified"]
    format_output(data, fmt=fmt.value, headers=headers)
