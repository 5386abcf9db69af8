"""Config command group for activity-completion-upload CLI.

Commands:
- acu config init: Write a config file
- acu config show: Display the effective configuration
- acu config set: Change one value
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any

import typer

from acu.cli.output import OutputFormat, cli_error, cli_success
from acu.config.settings import (
    Settings,
    ensure_directories,
    get_default_config_path,
    get_default_db_path,
    load_settings,
    save_settings,
)
from acu.export.formatters import format_output

app = typer.Typer(
    name="config",
    help="""Manage activity-completion-upload configuration.

Configuration is stored in ~/.config/acu/config.toml (or ACU_CONFIG_PATH).
It controls how upload rows are matched to courses and users, which role
new enrolments get, and which operator overrides completion.

Start here: Run 'acu config init'.
""",
    no_args_is_help=True,
)

# Keys `acu config set` accepts, with the converter for each value
SETTABLE_KEYS: dict[str, Callable[[str], Any]] = {
    "db_path": lambda value: Path(value).expanduser(),
    "log_level": str.upper,
    "course_field": str,
    "user_field": str,
    "student_role": str,
    "operator": str,
    "retry_attempts": int,
    "retry_interval_ms": int,
}


def _require_config() -> Settings:
    config_path = get_default_config_path()
    if not config_path.exists():
        cli_error("No configuration found. Run 'acu config init' first.")
    return load_settings(config_path)


def _exit_on_errors(settings: Settings) -> None:
    errors = settings.validate()
    if errors:
        cli_error("Invalid configuration:", details=errors)


@app.command("init")
def config_init(
    db_path: Annotated[
        Path | None,
        typer.Option("--db-path", "-d", help="Path to SQLite database file."),
    ] = None,
    course_field: Annotated[
        str,
        typer.Option(
            "--course-field",
            help="Course column upload values match (id, shortname, idnumber, fullname).",
        ),
    ] = "shortname",
    user_field: Annotated[
        str,
        typer.Option(
            "--user-field",
            help="User column upload values match (id, username, email, idnumber).",
        ),
    ] = "username",
    student_role: Annotated[
        str,
        typer.Option("--role", "-r", help="Role shortname used when enrolling users."),
    ] = "student",
    operator: Annotated[
        str | None,
        typer.Option(
            "--operator", "-o", help="Username of the operator who overrides completion."
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config file."),
    ] = False,
) -> None:
    """Write a config file for activity-completion-upload.

    Prompts for the operator when --operator is not given.
    \b
    Examples:
      acu config init --operator admin
      acu config init -o manager --course-field idnumber --user-field email
    """
    config_path = get_default_config_path()
    if config_path.exists() and not force:
        cli_error(f"Configuration already exists at {config_path}. Use --force to overwrite.")

    if operator is None:
        operator = typer.prompt("Operator username", default="admin")

    settings = Settings(
        db_path=db_path or get_default_db_path(),
        config_path=config_path,
        course_field=course_field,
        user_field=user_field,
        student_role=student_role,
        operator=operator,
    )
    _exit_on_errors(settings)

    ensure_directories(settings)
    save_settings(settings)

    cli_success(f"Configuration saved to {config_path}")
    typer.echo()
    typer.echo("Next steps:")
    typer.echo("  1. Initialize the database: acu db migrate")
    typer.echo("  2. Upload completions:      acu upload file completions.csv")


@app.command("show")
def config_show(
    fmt: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.table,
) -> None:
    """Display the configuration in effect, environment overrides included."""
    settings = _require_config()

    if fmt is not OutputFormat.table:
        data = {"config_path": str(settings.config_path), **settings.to_dict()}
        format_output(data, fmt=fmt.value)
        return

    typer.echo("Current configuration:")
    typer.echo(f"  Config file:   {settings.config_path}")
    typer.echo(f"  Database:      {settings.db_path}")
    typer.echo(f"  Log level:     {settings.log_level}")
    typer.echo(f"  Course field:  {settings.course_field}")
    typer.echo(f"  User field:    {settings.user_field}")
    typer.echo(f"  Student role:  {settings.student_role}")
    typer.echo(f"  Operator:      {settings.operator}")
    typer.echo(
        f"  Record wait:   {settings.retry_attempts} attempt(s), "
        f"{settings.retry_interval_ms} ms apart"
    )


@app.command("set")
def config_set(
    key: Annotated[str, typer.Argument(help="Configuration key to set.")],
    value: Annotated[str, typer.Argument(help="New value.")],
) -> None:
    """Change one configuration value.

    Valid keys: db_path, log_level, course_field, user_field, student_role,
    operator, retry_attempts, retry_interval_ms
    """
    settings = _require_config()

    convert = SETTABLE_KEYS.get(key)
    if convert is None:
        cli_error(
            f"Unknown configuration key: {key}",
            details=[f"Valid keys: {', '.join(SETTABLE_KEYS)}"],
        )

    try:
        setattr(settings, key, convert(value))
    except ValueError:
        cli_error(f"invalid value for {key}: {value}")

    _exit_on_errors(settings)
    save_settings(settings)
    cli_success(f"Updated {key} = {value}")
