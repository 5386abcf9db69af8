"""Upload engine for activity-completion-upload.

Runs a batch of import rows through the completion reconciler against the
local platform database, one row at a time, and records the run.

Uploads are:
- Row-independent: a failing row never stops the batch
- Not transactional: rows already reconciled stay applied if the run fails
- Replay-safe: re-uploading the same file skips completions already recorded
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlmodel import Session, select

from acu.completion.reconcile import OutcomeKind, ReconciliationOutcome, Reconciler
from acu.completion.records import ImportRow, missing_fields
from acu.completion.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from acu.ledger.models import ImportRowLog, ImportRun, Role, User
from acu.ledger.platform import (
    SqlActivityLocator,
    SqlCompletionTracker,
    SqlEnrollmentService,
    SqlRecordStore,
)
from acu.ledger.store import get_session

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class RowReport:
    """Outcome of one uploaded row."""

    line: int
    outcome: OutcomeKind
    message: str | None
    course_id: int | None = None
    user_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "line": self.line,
            "outcome": self.outcome.value,
            "message": self.message,
            "course_id": self.course_id,
            "user_id": self.user_id,
        }


@dataclass
class UploadResult:
    """Result of an upload run."""

    run_id: int
    added_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    rows: list[RowReport] = field(default_factory=list)
    error: str | None = None

    @property
    def total_count(self) -> int:
        """Total number of rows processed."""
        return self.added_count + self.updated_count + self.skipped_count + self.error_count

    def count(self, outcome: ReconciliationOutcome) -> None:
        """Add a reconciliation outcome to the running totals."""
        self.added_count += outcome.added
        self.updated_count += outcome.updated
        self.skipped_count += outcome.skipped
        self.error_count += outcome.error

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "added_count": self.added_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "total_count": self.total_count,
            "rows": [row.to_dict() for row in self.rows],
            "error": self.error,
        }


def build_reconciler(
    session: Session, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
) -> Reconciler:
    """Wire a Reconciler to the SQLite platform services on `session`."""
    return Reconciler(
        locator=SqlActivityLocator(session),
        enrolments=SqlEnrollmentService(session),
        tracker=SqlCompletionTracker(session),
        store=SqlRecordStore(session),
        retry_policy=retry_policy,
    )


def _reconcile_row(
    reconciler: Reconciler,
    row: ImportRow,
    role: Role | None,
    operator: User | None,
) -> ReconciliationOutcome:
    """Validate one row and reconcile it if it is usable."""
    if row.record is None:
        return ReconciliationOutcome(OutcomeKind.ERROR, f"Invalid record: {row.problem}")

    missing = missing_fields(row.record)
    if missing:
        return ReconciliationOutcome(
            OutcomeKind.ERROR, f"Invalid record: missing {', '.join(missing)}"
        )

    return reconciler.reconcile(row.record, role, operator)


def upload_completions(
    db_path: Path | str,
    rows: Iterable[ImportRow],
    *,
    role_shortname: str,
    operator_username: str,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    source: str | None = None,
) -> UploadResult:
    """Reconcile every row of an upload against the platform database.

    Args:
        db_path: Path to the SQLite database.
        rows: Parsed rows of the upload file.
        role_shortname: Role users are enrolled with when not yet enrolled.
        operator_username: User whose authority overrides completion.
        retry_policy: Wait policy for completion records after a transition.
        source: Name of the uploaded file, kept on the run record.

    Returns:
        UploadResult with per-outcome counts and per-row reports.
    """
    with get_session(db_path) as session:
        run = ImportRun(source=source)
        session.add(run)
        session.commit()
        session.refresh(run)
        assert run.id is not None  # After commit, id is guaranteed to be set
        run_id: int = run.id

        result = UploadResult(run_id=run_id)

        try:
            role = session.exec(select(Role).where(Role.shortname == role_shortname)).first()
            if role is None:
                logger.warning(f"Role '{role_shortname}' not found; rows will be rejected")

            operator = session.exec(
                select(User).where(User.username == operator_username)
            ).first()
            if operator is None:
                logger.warning(
                    f"Operator '{operator_username}' not found; overrides will be denied"
                )

            reconciler = build_reconciler(session, retry_policy)

            for row in rows:
                outcome = _reconcile_row(reconciler, row, role, operator)
                result.count(outcome)

                report = RowReport(
                    line=row.line,
                    outcome=outcome.kind,
                    message=outcome.message,
                    course_id=getattr(outcome.course, "id", None),
                    user_id=getattr(outcome.user, "id", None),
                )
                result.rows.append(report)
                session.add(
                    ImportRowLog(
                        run_id=run_id,
                        line=report.line,
                        outcome=report.outcome.value,
                        message=report.message,
                        course_id=report.course_id,
                        user_id=report.user_id,
                    )
                )
                session.commit()
                logger.debug(f"Line {row.line}: {outcome.kind.value} - {outcome.message}")

            run.mark_completed(
                added_count=result.added_count,
                updated_count=result.updated_count,
                skipped_count=result.skipped_count,
                error_count=result.error_count,
            )
            session.commit()

        except Exception as e:
            logger.exception(f"Upload run {run_id} failed")
            session.rollback()
            run.mark_failed(str(e))
            session.add(run)
            session.commit()
            result.error = str(e)

        return result
