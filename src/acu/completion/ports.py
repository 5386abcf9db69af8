"""Collaborator contracts consumed by the completion reconciler.

The reconciler never talks to a database directly. It works through four
narrow ports; acu.ledger.platform provides the SQLite-backed implementations
and tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol, runtime_checkable


class CompletionState(IntEnum):
    """Completion state of one activity for one user."""

    INCOMPLETE = 0
    COMPLETE = 1


@dataclass(frozen=True)
class CompletionData:
    """Tracker view of a user's completion of an activity."""

    state: CompletionState
    record_id: int | None = None

    @property
    def is_complete(self) -> bool:
        return self.state == CompletionState.COMPLETE


# --- Entity shapes -----------------------------------------------------------


class CourseRef(Protocol):
    id: Any
    fullname: str


class UserRef(Protocol):
    id: Any


class RoleRef(Protocol):
    id: Any


class ActivityRef(Protocol):
    id: Any
    name: str


class CompletionRecordRef(Protocol):
    id: Any
    time_modified: int


# --- Ports -------------------------------------------------------------------


@runtime_checkable
class ActivityLocator(Protocol):
    """Resolves courses, users and activities from import values."""

    def find_course_by_field(self, field: str, value: str) -> CourseRef | None:
        """Return the only course whose `field` equals `value`, else None."""
        ...

    def find_user_by_field(self, field: str, value: str) -> UserRef | None:
        """Return the only user whose `field` equals `value`, else None."""
        ...

    def find_activity(
        self, course: CourseRef, section_name: str, activity_name: str
    ) -> ActivityRef | None:
        """Find an activity by name within a named section (case-insensitive)."""
        ...


@runtime_checkable
class EnrollmentService(Protocol):
    """Enrolls users in courses."""

    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> None:
        """Enroll the user with the role unless already enrolled."""
        ...


@runtime_checkable
class CompletionTracker(Protocol):
    """Reads and changes per-user activity completion state."""

    def is_completion_enabled(self, course: CourseRef) -> bool: ...

    def get_completion_state(self, activity: ActivityRef, user_id: int) -> CompletionData: ...

    def can_override_completion(self, operator: UserRef | None, course: CourseRef) -> bool: ...

    def set_completion_complete(
        self, activity: ActivityRef, user_id: int, allow_override: bool
    ) -> bool:
        """Transition the activity to complete for the user.

        Returns False when the transition did not happen. May raise.
        """
        ...

    def purge_completion_cache(self) -> None: ...


@runtime_checkable
class RecordStore(Protocol):
    """Generic access to completion-related records."""

    def get_completion_record(self, activity_id: int, user_id: int) -> CompletionRecordRef | None:
        """Return the complete-state record for (activity, user), if materialized."""
        ...

    def get_course_completion(self, user_id: int, course_id: int) -> Any | None: ...

    def get_criterion_completion(self, user_id: int, course_id: int) -> Any | None: ...

    def update_record(self, record: Any, fields: Mapping[str, Any]) -> None:
        """Set `fields` on `record` and persist it."""
        ...
