"""SQLite storage for the platform database.

Every connection is configured with:
- WAL journaling, so status queries can run during an upload
- Foreign key enforcement
- A busy timeout for handling locks

Schema changes go through Alembic; the migrations ship inside the package.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, event, text
from sqlmodel import Session, create_engine

if TYPE_CHECKING:
    from alembic.config import Config as AlembicConfig
    from alembic.script import ScriptDirectory
    from sqlalchemy.engine.interfaces import DBAPIConnection
    from sqlalchemy.pool import ConnectionPoolEntry

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)

# Tables whose row counts `acu db status` reports
COUNTED_TABLES = (
    "course",
    "platform_user",
    "course_module",
    "enrolment",
    "module_completion",
    "import_run",
)

# Engines are created lazily, one per database file
_engines: dict[Path, Engine] = {}


def _apply_pragmas(dbapi_connection: DBAPIConnection, _record: ConnectionPoolEntry) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def get_engine(db_path: Path | str, echo: bool = False) -> Engine:
    """Get or create the engine for a database file.

    Args:
        db_path: Path to the SQLite database file. Parent directories are
            created on first use.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine with the connection pragmas installed.
    """
    key = Path(db_path).expanduser().resolve()
    engine = _engines.get(key)
    if engine is not None:
        return engine

    key.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{key}",
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _apply_pragmas)

    logger.debug(f"Opened database engine for {key}")
    _engines[key] = engine
    return engine


def reset_engine() -> None:
    """Dispose of every cached engine (tests, and before replacing a file)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()


@contextmanager
def get_session(db_path: Path | str) -> Generator[Session]:
    """Open a session on the database.

    Args:
        db_path: Path to the SQLite database file.

    Yields:
        SQLModel Session; the caller commits.
    """
    with Session(get_engine(db_path)) as session:
        yield session


def backup_database(db_path: Path | str, suffix: str | None = None) -> Path:
    """Copy the database file next to itself.

    The write-ahead log is checkpointed first so the copy holds every
    committed completion.

    Args:
        db_path: Path to the SQLite database file.
        suffix: Backup name suffix. Defaults to a UTC timestamp.

    Returns:
        Path to the backup file (platform.<suffix>.backup).

    Raises:
        FileNotFoundError: If the database file doesn't exist.
    """
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"Database file not found: {db_path}")

    with get_engine(db_path).connect() as conn:
        conn.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))

    suffix = suffix or datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    backup_path = db_path.with_suffix(f".{suffix}.backup")
    shutil.copy2(db_path, backup_path)

    logger.info(f"Backed up {db_path} to {backup_path}")
    return backup_path


def get_db_info(db_path: Path | str) -> dict[str, str | int | bool]:
    """Describe the database file: size, tables, pragmas and row counts.

    Row counts are reported as `<table>_rows` for the tables in
    COUNTED_TABLES that exist.
    """
    db_path = Path(db_path)
    info: dict[str, str | int | bool] = {
        "path": str(db_path),
        "exists": db_path.exists(),
    }
    if not db_path.exists():
        return info

    info["size_bytes"] = db_path.stat().st_size

    with get_engine(db_path).connect() as conn:
        tables = [
            row[0]
            for row in conn.execute(
                text("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
            )
        ]
        info["table_count"] = len(tables)
        info["tables"] = ", ".join(tables) if tables else "(none)"

        journal_mode = conn.execute(text("PRAGMA journal_mode")).scalar()
        info["journal_mode"] = str(journal_mode) if journal_mode else "unknown"
        info["foreign_keys"] = bool(conn.execute(text("PRAGMA foreign_keys")).scalar())

        for table in COUNTED_TABLES:
            if table in tables:
                count = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
                info[f"{table}_rows"] = int(count or 0)

    return info


# --- Migrations ---


def get_alembic_config(db_path: Path | str) -> AlembicConfig:
    """Build the Alembic configuration for a database.

    Uses the project's alembic.ini (for logging setup) when running from a
    checkout; the script location always points at the packaged migrations.
    """
    from alembic.config import Config as AlembicConfig

    import acu

    package_dir = Path(acu.__file__).parent
    alembic_ini = package_dir.parent.parent / "alembic.ini"
    config = AlembicConfig(str(alembic_ini)) if alembic_ini.exists() else AlembicConfig()

    config.set_main_option("script_location", str(package_dir / "migrations"))

    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def _script_directory(db_path: Path | str) -> ScriptDirectory:
    from alembic.script import ScriptDirectory

    return ScriptDirectory.from_config(get_alembic_config(db_path))


def get_current_revision(db_path: Path | str) -> str | None:
    """Return the applied revision, or None for a new or unversioned database."""
    from alembic.runtime.migration import MigrationContext

    db_path = Path(db_path)
    if not db_path.exists():
        return None

    with get_engine(db_path).connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def get_pending_migrations(db_path: Path | str) -> list[str]:
    """Return revisions not yet applied, oldest first."""
    current = get_current_revision(db_path)
    pending = [
        rev.revision
        for rev in _script_directory(db_path).iterate_revisions("head", current)
        if rev.revision != current
    ]
    pending.reverse()
    return pending


def run_migrations(db_path: Path | str, backup: bool = True) -> dict[str, str | list[str]]:
    """Apply all pending migrations.

    Args:
        db_path: Path to the SQLite database file.
        backup: If True and the database exists, copy it first.

    Returns:
        Dictionary with status ("up_to_date", "success" or "failed"), the
        revisions applied, and the backup path when one was taken.
    """
    from alembic import command

    db_path = Path(db_path)
    current = get_current_revision(db_path)
    pending = get_pending_migrations(db_path)
    result: dict[str, str | list[str]] = {
        "db_path": str(db_path),
        "previous_revision": current or "(none)",
        "pending": pending,
    }

    if not pending:
        result["status"] = "up_to_date"
        result["applied"] = []
        return result

    backup_path: Path | None = None
    if backup and db_path.exists():
        backup_path = backup_database(db_path, suffix="pre_migration")
        result["backup_path"] = str(backup_path)

    logger.info(f"Applying {len(pending)} migration(s) to {db_path}")
    try:
        command.upgrade(get_alembic_config(db_path), "head")
    except Exception as e:
        logger.exception(f"Migration of {db_path} failed")
        result["status"] = "failed"
        result["error"] = str(e)
        if backup_path:
            result["backup_available"] = str(backup_path)
        return result

    result["status"] = "success"
    result["applied"] = pending
    result["current_revision"] = get_current_revision(db_path) or "(none)"
    return result


def get_migration_status(db_path: Path | str) -> dict[str, str | int | list[str] | bool]:
    """Summarise head, current and pending revisions for a database."""
    db_path = Path(db_path)
    heads = _script_directory(db_path).get_heads()
    pending = get_pending_migrations(db_path)

    return {
        "db_path": str(db_path),
        "db_exists": db_path.exists(),
        "head_revision": heads[0] if heads else "(none)",
        "current_revision": get_current_revision(db_path) or "(none)",
        "pending_count": len(pending),
        "pending_revisions": pending,
        "up_to_date": not pending,
    }
