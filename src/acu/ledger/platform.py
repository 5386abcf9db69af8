"""SQLite-backed platform services for the completion reconciler.

Implements the reconciler's ports over the local database:
- SqlActivityLocator: course/user lookup by field and activity search
- SqlEnrollmentService: idempotent enrolment
- SqlCompletionTracker: completion state with a purgeable cache
- SqlRecordStore: completion record reads and field updates

All services share one Session; every mutation is committed immediately and
a failed commit is rolled back before the error propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from acu.completion.ports import CompletionData, CompletionState
from acu.completion.records import UNNAMED_SECTION
from acu.ledger.models import (
    Activity,
    Course,
    CourseCompletion,
    CourseCompletionCriterion,
    CourseSection,
    Enrolment,
    ModuleCompletion,
    Role,
    User,
)

logger = logging.getLogger(__name__)

# Columns import files may identify courses and users by.
COURSE_LOOKUP_FIELDS = ("id", "shortname", "idnumber", "fullname")
USER_LOOKUP_FIELDS = ("id", "username", "email", "idnumber")


def _commit(session: Session) -> None:
    """Commit, or roll back and re-raise so the shared session stays usable."""
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise


class CompletionOverrideError(Exception):
    """Raised when a completion change needs an override that was not allowed."""

    def __init__(self, activity_id: int, user_id: int) -> None:
        self.activity_id = activity_id
        self.user_id = user_id
        super().__init__(
            f"Completion of activity {activity_id} for user {user_id} requires an override."
        )


def _lookup_value(field: str, value: str) -> Any:
    """Coerce a lookup value for the column type."""
    if field == "id":
        try:
            return int(value)
        except ValueError:
            return None
    return value


class SqlActivityLocator:
    """Resolve import values to platform entities."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_course_by_field(self, field: str, value: str) -> Course | None:
        """Return the course matching `field == value` if exactly one matches.

        Raises:
            ValueError: If `field` is not a course lookup field.
        """
        if field not in COURSE_LOOKUP_FIELDS:
            raise ValueError(
                f"Invalid course field '{field}'. Must be one of: {list(COURSE_LOOKUP_FIELDS)}"
            )
        lookup = _lookup_value(field, value)
        if lookup is None:
            return None

        stmt = select(Course).where(getattr(Course, field) == lookup)
        courses = self.session.exec(stmt).all()
        if len(courses) == 1:
            return courses[0]

        logger.debug(f"Course lookup {field}={value!r} matched {len(courses)} course(s)")
        return None

    def find_user_by_field(self, field: str, value: str) -> User | None:
        """Return the user matching `field == value` if exactly one matches.

        Raises:
            ValueError: If `field` is not a user lookup field.
        """
        if field not in USER_LOOKUP_FIELDS:
            raise ValueError(
                f"Invalid user field '{field}'. Must be one of: {list(USER_LOOKUP_FIELDS)}"
            )
        lookup = _lookup_value(field, value)
        if lookup is None:
            return None

        stmt = select(User).where(getattr(User, field) == lookup)
        users = self.session.exec(stmt).all()
        if len(users) == 1:
            return users[0]

        logger.debug(f"User lookup {field}={value!r} matched {len(users)} user(s)")
        return None

    def find_activity(
        self, course: Course, section_name: str, activity_name: str
    ) -> Activity | None:
        """Find an activity by section and activity name.

        Both names match case-insensitively. A section name of "0" also
        matches the unnamed section. The first match in section order wins.
        """
        stmt = (
            select(Activity, CourseSection)
            .join(CourseSection, Activity.section_id == CourseSection.id)  # type: ignore[arg-type]
            .where(Activity.course_id == course.id)
            .order_by(CourseSection.section, Activity.id)  # type: ignore[arg-type]
        )
        wanted_section = section_name.casefold()
        wanted_activity = activity_name.casefold()

        for activity, section in self.session.exec(stmt):
            if section.name is None:
                section_matches = section_name == UNNAMED_SECTION
            else:
                section_matches = section.name.casefold() == wanted_section
            if section_matches and activity.name.casefold() == wanted_activity:
                return activity

        return None


class SqlEnrollmentService:
    """Enrol users in courses."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> None:
        stmt = select(Enrolment).where(
            Enrolment.course_id == course_id,
            Enrolment.user_id == user_id,
        )
        if self.session.exec(stmt).first() is not None:
            return

        self.session.add(Enrolment(course_id=course_id, user_id=user_id, role_id=role_id))
        _commit(self.session)
        logger.info(f"Enrolled user {user_id} in course {course_id} with role {role_id}")


class SqlCompletionTracker:
    """Activity completion state with a read cache.

    State reads are cached per (activity, user) until purge_completion_cache
    is called; writes made through this tracker refresh the cache entry.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._cache: dict[tuple[int, int], CompletionData] = {}

    def is_completion_enabled(self, course: Course) -> bool:
        return bool(course.enable_completion)

    def _load(self, activity_id: int, user_id: int) -> ModuleCompletion | None:
        stmt = select(ModuleCompletion).where(
            ModuleCompletion.activity_id == activity_id,
            ModuleCompletion.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def get_completion_state(self, activity: Activity, user_id: int) -> CompletionData:
        key = (activity.id, user_id)
        if key in self._cache:
            return self._cache[key]

        row = self._load(activity.id, user_id)
        if row is None:
            data = CompletionData(state=CompletionState.INCOMPLETE)
        else:
            data = CompletionData(state=CompletionState(row.completion_state), record_id=row.id)

        self._cache[key] = data
        return data

    def can_override_completion(self, operator: User | None, course: Course) -> bool:
        """Site admins, and holders of an overriding role in the course, may override."""
        if operator is None:
            return False
        if operator.is_site_admin:
            return True

        stmt = (
            select(Role)
            .join(Enrolment, Enrolment.role_id == Role.id)  # type: ignore[arg-type]
            .where(
                Enrolment.course_id == course.id,
                Enrolment.user_id == operator.id,
            )
        )
        role = self.session.exec(stmt).first()
        return role is not None and role.can_override_completion

    def set_completion_complete(
        self, activity: Activity, user_id: int, allow_override: bool
    ) -> bool:
        """Mark the activity complete for the user.

        Returns:
            False if the activity does not track completion or is already
            complete; True once the state has been written.

        Raises:
            CompletionOverrideError: If the change needs an override and
                `allow_override` is False.
        """
        if not activity.completion_tracking:
            logger.debug(f"Activity {activity.id} does not track completion")
            return False

        row = self._load(activity.id, user_id)
        if row is not None and row.completion_state == CompletionState.COMPLETE:
            # Completed elsewhere since the cached read
            self._cache.pop((activity.id, user_id), None)
            return False

        if not allow_override:
            raise CompletionOverrideError(activity.id, user_id)

        if row is None:
            row = ModuleCompletion(activity_id=activity.id, user_id=user_id)
        row.completion_state = int(CompletionState.COMPLETE)
        row.overridden = True
        row.time_modified = int(datetime.now(UTC).timestamp())
        self.session.add(row)
        _commit(self.session)
        self.session.refresh(row)

        self._cache[(activity.id, user_id)] = CompletionData(
            state=CompletionState.COMPLETE, record_id=row.id
        )
        return True

    def purge_completion_cache(self) -> None:
        self._cache.clear()


class SqlRecordStore:
    """Read and update completion-related records."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_completion_record(self, activity_id: int, user_id: int) -> ModuleCompletion | None:
        stmt = select(ModuleCompletion).where(
            ModuleCompletion.activity_id == activity_id,
            ModuleCompletion.user_id == user_id,
            ModuleCompletion.completion_state == int(CompletionState.COMPLETE),
        )
        return self.session.exec(stmt).first()

    def get_course_completion(self, user_id: int, course_id: int) -> CourseCompletion | None:
        stmt = select(CourseCompletion).where(
            CourseCompletion.user_id == user_id,
            CourseCompletion.course_id == course_id,
        )
        return self.session.exec(stmt).first()

    def get_criterion_completion(
        self, user_id: int, course_id: int
    ) -> CourseCompletionCriterion | None:
        stmt = (
            select(CourseCompletionCriterion)
            .where(
                CourseCompletionCriterion.user_id == user_id,
                CourseCompletionCriterion.course_id == course_id,
            )
            .order_by(CourseCompletionCriterion.id)  # type: ignore[arg-type]
        )
        return self.session.exec(stmt).first()

    def update_record(self, record: Any, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            if not hasattr(record, name):
                raise AttributeError(f"{type(record).__name__} has no field '{name}'")
            setattr(record, name, value)
        self.session.add(record)
        _commit(self.session)
