"""Query implementations for activity-completion-upload.

Provides read-only queries over upload runs and completion records.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlmodel import col, select

from acu.ledger.models import Activity, ImportRowLog, ImportRun, ModuleCompletion, User
from acu.ledger.platform import SqlActivityLocator
from acu.ledger.store import get_session

if TYPE_CHECKING:
    from pathlib import Path


def get_last_import_run(db_path: Path | str) -> ImportRun | None:
    """Get the most recent upload run.

    Args:
        db_path: Path to the SQLite database.

    Returns:
        The most recent ImportRun, or None if there are none.
    """
    with get_session(db_path) as session:
        stmt = select(ImportRun).order_by(col(ImportRun.id).desc()).limit(1)
        run = session.exec(stmt).first()
        if run is not None:
            session.expunge(run)
        return run


def get_import_run(db_path: Path | str, run_id: int) -> ImportRun | None:
    """Get an upload run by ID."""
    with get_session(db_path) as session:
        run = session.get(ImportRun, run_id)
        if run is not None:
            session.expunge(run)
        return run


def list_import_runs(db_path: Path | str, limit: int = 20) -> list[dict[str, Any]]:
    """List recent upload runs, newest first."""
    with get_session(db_path) as session:
        stmt = select(ImportRun).order_by(col(ImportRun.id).desc()).limit(limit)
        return [run.to_dict() for run in session.exec(stmt)]


def get_import_row_logs(
    db_path: Path | str,
    run_id: int,
    outcome: str | None = None,
) -> list[dict[str, Any]]:
    """Get per-row outcomes for an upload run.

    Args:
        db_path: Path to the SQLite database.
        run_id: Upload run ID.
        outcome: Only return rows with this outcome (added, updated, skipped, error).

    Returns:
        Row log dictionaries in line order.
    """
    with get_session(db_path) as session:
        stmt = select(ImportRowLog).where(ImportRowLog.run_id == run_id)
        if outcome is not None:
            stmt = stmt.where(ImportRowLog.outcome == outcome)
        stmt = stmt.order_by(col(ImportRowLog.line))
        return [entry.to_dict() for entry in session.exec(stmt)]


def get_course_completions(db_path: Path | str, course_id: int) -> list[dict[str, Any]]:
    """List activity completions recorded in a course.

    Returns:
        One dictionary per completion with activity and user names.
    """
    with get_session(db_path) as session:
        stmt = (
            select(ModuleCompletion, Activity, User)
            .join(Activity, col(ModuleCompletion.activity_id) == col(Activity.id))
            .join(User, col(ModuleCompletion.user_id) == col(User.id))
            .where(Activity.course_id == course_id)
            .order_by(col(Activity.id), col(User.username))
        )
        return [
            {
                "activity_id": activity.id,
                "activity_name": activity.name,
                "username": user.username,
                "completion_state": completion.completion_state,
                "overridden": completion.overridden,
                "time_modified": completion.time_modified,
            }
            for completion, activity, user in session.exec(stmt)
        ]


def find_course_id(db_path: Path | str, field: str, value: str) -> int | None:
    """Resolve a course value the way upload rows are resolved.

    Raises:
        ValueError: If `field` is not a course lookup field.
    """
    with get_session(db_path) as session:
        course = SqlActivityLocator(session).find_course_by_field(field, value)
        return course.id if course is not None else None
