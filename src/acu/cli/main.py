"""Main CLI application for activity-completion-upload.

The root Typer app carries the --version and --verbose flags; the config,
db and upload command groups are attached at the bottom of this module.
"""

from __future__ import annotations

import typer

from acu import __version__
from acu.config.settings import enable_debug_logging

app: typer.Typer = typer.Typer(
    name="acu",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"activity-completion-upload (acu) version {__version__}")
        raise typer.Exit()


def _enable_verbose(value: bool) -> None:
    if value:
        enable_debug_logging()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_show_version,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log each row's outcome and other debug detail to stderr.",
        callback=_enable_verbose,
        is_eager=True,
    ),
) -> None:
    """activity-completion-upload: bulk-mark activities complete from a CSV file.

    Each row names a course, a user, a section, an activity and a completion
    date. Rows are reconciled one at a time against the platform database:
    \b
    • added    the activity was completed on behalf of the user
    • updated  it was already complete; the completion date was corrected
    • skipped  nothing to do, or the row could not be matched
    • error    the completion could not be recorded

    Users are enrolled in the course when needed. Completing an activity
    requires the configured operator to be allowed to override completion.
    \b
    Getting Started:
      1. acu config init          Choose lookup fields, role and operator
      2. acu db migrate           Initialize the database
      3. acu upload file data.csv Upload completions
      4. acu upload log <run-id>  Review what happened to each row
    """


# Command groups import from this package; register them last
from acu.cli import config_cmd, db_cmd, upload_cmd  # noqa: E402

app.add_typer(config_cmd.app, name="config")
app.add_typer(db_cmd.app, name="db")
app.add_typer(upload_cmd.app, name="upload")


if __name__ == "__main__":
    app()
