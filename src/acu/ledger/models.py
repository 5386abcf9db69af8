"""SQLModel models for the activity-completion-upload database.

Platform tables: Course, User, Role, CourseSection, Activity, Enrolment.
Completion tables: ModuleCompletion, CourseCompletion, CourseCompletionCriterion.
Upload tracking: ImportRun, ImportRowLog.

Completion timestamps are integer Unix timestamps, matching the values
carried by import files.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


# =============================================================================
# Platform Models
# =============================================================================


class Course(SQLModel, table=True):
    """A course on the platform.

    Completion tracking must be enabled before activity completions can be
    recorded for the course.
    """

    __tablename__ = "course"

    id: int | None = Field(default=None, primary_key=True)
    shortname: str = Field(index=True)
    fullname: str
    idnumber: str | None = Field(default=None, index=True)
    enable_completion: bool = Field(default=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "shortname": self.shortname,
            "fullname": self.fullname,
            "idnumber": self.idnumber,
            "enable_completion": self.enable_completion,
        }


class User(SQLModel, table=True):
    """A platform user (student or operator)."""

    __tablename__ = "platform_user"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    email: str | None = Field(default=None, index=True)
    idnumber: str | None = Field(default=None, index=True)
    firstname: str = Field(default="")
    lastname: str = Field(default="")
    is_site_admin: bool = Field(default=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "idnumber": self.idnumber,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "is_site_admin": self.is_site_admin,
        }


class Role(SQLModel, table=True):
    """A role users hold in a course (e.g., student, editingteacher)."""

    __tablename__ = "role"

    id: int | None = Field(default=None, primary_key=True)
    shortname: str = Field(unique=True, index=True)
    name: str = Field(default="")
    can_override_completion: bool = Field(default=False)


class CourseSection(SQLModel, table=True):
    """A section (topic) of a course.

    Section 0 is usually left unnamed; its name is NULL.
    """

    __tablename__ = "course_section"

    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    section: int = Field(default=0)
    name: str | None = Field(default=None)


class Activity(SQLModel, table=True):
    """An activity (course module) placed in a course section."""

    __tablename__ = "course_module"

    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    section_id: int = Field(foreign_key="course_section.id", index=True)
    name: str
    modname: str = Field(default="page")
    completion_tracking: bool = Field(default=True)


class Enrolment(SQLModel, table=True):
    """A user's enrolment in a course with a role."""

    __tablename__ = "enrolment"
    __table_args__ = (UniqueConstraint("course_id", "user_id", name="uq_enrolment_course_user"),)

    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    user_id: int = Field(foreign_key="platform_user.id", index=True)
    role_id: int = Field(foreign_key="role.id")
    time_start: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Completion Models
# =============================================================================


class ModuleCompletion(SQLModel, table=True):
    """Completion of one activity by one user.

    Created by the completion tracker on the first transition to complete;
    the uploader only rewrites `time_modified`.
    """

    __tablename__ = "module_completion"
    __table_args__ = (
        UniqueConstraint("activity_id", "user_id", name="uq_module_completion_activity_user"),
    )

    id: int | None = Field(default=None, primary_key=True)
    activity_id: int = Field(foreign_key="course_module.id", index=True)
    user_id: int = Field(foreign_key="platform_user.id", index=True)
    completion_state: int = Field(default=0)  # CompletionState value
    overridden: bool = Field(default=False)
    time_modified: int = Field(default=0)


class CourseCompletion(SQLModel, table=True):
    """Course-level completion aggregate for a user."""

    __tablename__ = "course_completion"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="platform_user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    time_enrolled: int | None = Field(default=None)
    time_started: int | None = Field(default=None)
    time_completed: int | None = Field(default=None)


class CourseCompletionCriterion(SQLModel, table=True):
    """Satisfaction of one course completion criterion by a user."""

    __tablename__ = "course_completion_criterion"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="platform_user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    criterion_id: int = Field(default=0)
    time_completed: int | None = Field(default=None)


# =============================================================================
# Upload Tracking Models
# =============================================================================


class ImportStatus(str, Enum):
    """Status of an upload run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportRun(SQLModel, table=True):
    """Track individual upload runs with outcome counts."""

    __tablename__ = "import_run"

    id: int | None = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    source: str | None = Field(default=None, description="Uploaded file name")
    status: ImportStatus = Field(default=ImportStatus.RUNNING)
    error_message: str | None = Field(default=None)

    # Outcome counts
    added_count: int = Field(default=0)
    updated_count: int = Field(default=0)
    skipped_count: int = Field(default=0)
    error_count: int = Field(default=0)

    def mark_completed(
        self,
        added_count: int = 0,
        updated_count: int = 0,
        skipped_count: int = 0,
        error_count: int = 0,
    ) -> None:
        """Mark the upload run as completed with counts."""
        self.completed_at = _utcnow()
        self.status = ImportStatus.COMPLETED
        self.added_count = added_count
        self.updated_count = updated_count
        self.skipped_count = skipped_count
        self.error_count = error_count

    def mark_failed(self, error_message: str) -> None:
        """Mark the upload run as failed with error message."""
        self.completed_at = _utcnow()
        self.status = ImportStatus.FAILED
        self.error_message = error_message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "source": self.source,
            "status": self.status.value,
            "error_message": self.error_message,
            "added_count": self.added_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
        }


class ImportRowLog(SQLModel, table=True):
    """Outcome of one row of an upload run."""

    __tablename__ = "import_row_log"

    id: int | None = Field(default=None, primary_key=True)
    run_id: int = Field(foreign_key="import_run.id", index=True)
    line: int
    outcome: str  # OutcomeKind value
    message: str | None = Field(default=None)
    course_id: int | None = Field(default=None)
    user_id: int | None = Field(default=None)
    observed_at: datetime = Field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "line": self.line,
            "outcome": self.outcome,
            "message": self.message,
            "course_id": self.course_id,
            "user_id": self.user_id,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
        }
