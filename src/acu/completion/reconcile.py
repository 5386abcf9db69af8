"""Completion reconciliation for activity-completion-upload.

Given one validated ImportRecord, the Reconciler decides whether the
completion is added, updated, skipped or reported as an error, and performs
the side effects in order:

1. enrolment of the user in the course
2. state transition to complete (override)
3. completion cache purge
4. bounded wait for the completion record, then timestamp update
5. best-effort date cascade to course-level completion records

Expected failures never raise; they become a classified outcome with a
message. Exceptions from the state transition are caught and reported as
errors carrying the exception message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from acu.completion.ports import (
    ActivityLocator,
    ActivityRef,
    CompletionState,
    CompletionTracker,
    CourseRef,
    EnrollmentService,
    RecordStore,
    RoleRef,
    UserRef,
)
from acu.completion.records import ImportRecord
from acu.completion.retry import DEFAULT_RETRY_POLICY, RetryPolicy

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """Terminal classification of a reconciled record."""

    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of reconciling one import record."""

    kind: OutcomeKind
    message: str | None = None
    course: Any | None = None
    user: Any | None = None

    @property
    def added(self) -> int:
        return int(self.kind == OutcomeKind.ADDED)

    @property
    def updated(self) -> int:
        return int(self.kind == OutcomeKind.UPDATED)

    @property
    def skipped(self) -> int:
        return int(self.kind == OutcomeKind.SKIPPED)

    @property
    def error(self) -> int:
        return int(self.kind == OutcomeKind.ERROR)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.kind.value,
            "message": self.message,
            "course_id": getattr(self.course, "id", None),
            "user_id": getattr(self.user, "id", None),
        }


def _describe(record: ImportRecord) -> str:
    return f'Activity "{record.activity_name}" in topic "{record.section_name}"'


class Reconciler:
    """Marks activities complete for users from import records.

    Args:
        locator: Resolves courses, users and activities.
        enrolments: Ensures the user is enrolled before completion is read.
        tracker: Completion state, override checks and cache.
        store: Completion record reads and updates.
        retry_policy: How long to wait for a completion record to appear.
    """

    def __init__(
        self,
        locator: ActivityLocator,
        enrolments: EnrollmentService,
        tracker: CompletionTracker,
        store: RecordStore,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ) -> None:
        self.locator = locator
        self.enrolments = enrolments
        self.tracker = tracker
        self.store = store
        self.retry_policy = retry_policy

    def reconcile(
        self,
        record: ImportRecord,
        authorizing_role: RoleRef | None,
        operator: UserRef | None,
    ) -> ReconciliationOutcome:
        """Reconcile one record.

        Args:
            record: Validated import record.
            authorizing_role: Role the user is enrolled with if not enrolled yet.
            operator: User on whose authority completion is overridden.

        Returns:
            The outcome; never raises for lookup, policy or consistency failures.
        """
        if authorizing_role is None or getattr(authorizing_role, "id", None) is None:
            logger.error(f"Invalid student role object: {authorizing_role!r}")
            return ReconciliationOutcome(OutcomeKind.ERROR, "Invalid student role object")

        course = self.locator.find_course_by_field(record.course_field, record.course_value)
        if course is None:
            return self._skip(f'Unable to find course matching "{record.course_value}"')

        if not self.tracker.is_completion_enabled(course):
            return self._skip(
                f'Course "{course.fullname}" does not have completions enabled', course=course
            )

        user = self.locator.find_user_by_field(record.user_field, record.user_value)
        if user is None:
            return self._skip(
                f'Unable to find user matching "{record.user_value}"', course=course
            )

        activity = self.locator.find_activity(course, record.section_name, record.activity_name)
        if activity is None:
            return self._skip(
                f'Unable to find activity "{record.activity_name}" in topic '
                f'"{record.section_name}" in course "{course.fullname}"',
                course=course,
                user=user,
            )

        self.enrolments.ensure_enrolled(course.id, user.id, authorizing_role.id)

        current = self.tracker.get_completion_state(activity, user.id)
        if current.state == CompletionState.COMPLETE:
            return self._reconcile_completed(record, course, user, activity)

        return self._reconcile_incomplete(record, course, user, activity, operator)

    def _skip(
        self, message: str, course: Any | None = None, user: Any | None = None
    ) -> ReconciliationOutcome:
        logger.info(message)
        return ReconciliationOutcome(OutcomeKind.SKIPPED, message, course=course, user=user)

    def _reconcile_completed(
        self,
        record: ImportRecord,
        course: CourseRef,
        user: UserRef,
        activity: ActivityRef,
    ) -> ReconciliationOutcome:
        completion = self.store.get_completion_record(activity.id, user.id)
        if completion is None:
            message = (
                f"{_describe(record)} is marked complete but has no completion record; "
                "left unchanged."
            )
            logger.warning(message)
            return ReconciliationOutcome(OutcomeKind.SKIPPED, message, course=course, user=user)

        if completion.time_modified == record.completion_date:
            return self._skip(
                f"{_describe(record)} was already completed and the completion date is the same.",
                course=course,
                user=user,
            )

        logger.debug(
            f"Updating completion date from {completion.time_modified} to {record.completion_date}"
        )
        self.store.update_record(completion, {"time_modified": record.completion_date})
        return ReconciliationOutcome(
            OutcomeKind.UPDATED,
            f"{_describe(record)} was already completed but the completion date was updated.",
            course=course,
            user=user,
        )

    def _reconcile_incomplete(
        self,
        record: ImportRecord,
        course: CourseRef,
        user: UserRef,
        activity: ActivityRef,
        operator: UserRef | None,
    ) -> ReconciliationOutcome:
        if not self.tracker.can_override_completion(operator, course):
            return self._skip(
                f"Configured user unable to override completion in course {course.fullname}",
                course=course,
                user=user,
            )

        try:
            transitioned = self.tracker.set_completion_complete(
                activity, user.id, allow_override=True
            )
            if not transitioned:
                # The write may have landed even though the call reported failure.
                transitioned = self.tracker.get_completion_state(activity, user.id).is_complete

            if not transitioned:
                message = (
                    f'Failed to update completion state for activity "{record.activity_name}" '
                    f'in topic "{record.section_name}".'
                )
                logger.error(message)
                return ReconciliationOutcome(OutcomeKind.ERROR, message, course=course, user=user)

            self.tracker.purge_completion_cache()

            completion = self.retry_policy.poll(
                lambda: self.store.get_completion_record(activity.id, user.id)
            )
            if completion is None:
                message = "Failed to retrieve the completion record for updating."
                logger.error(f"{message} (activity {activity.id}, user {user.id})")
                return ReconciliationOutcome(OutcomeKind.ERROR, message, course=course, user=user)

            self.store.update_record(completion, {"time_modified": record.completion_date})
            self._cascade_course_dates(record, course, user)

        except Exception as e:
            logger.exception("Exception while updating completion state")
            return ReconciliationOutcome(
                OutcomeKind.ERROR,
                f"Exception occurred while updating completion state: {e}",
                course=course,
                user=user,
            )

        return ReconciliationOutcome(
            OutcomeKind.ADDED,
            f"{_describe(record)} was completed on behalf of user.",
            course=course,
            user=user,
        )

    def _cascade_course_dates(self, record: ImportRecord, course: CourseRef, user: UserRef) -> None:
        """Stamp the completion date onto course-level records that exist."""
        course_completion = self.store.get_course_completion(user.id, course.id)
        if course_completion is not None:
            self.store.update_record(
                course_completion,
                {
                    "time_completed": record.completion_date,
                    "time_started": record.completion_date,
                },
            )

        criterion = self.store.get_criterion_completion(user.id, course.id)
        if criterion is not None:
            self.store.update_record(criterion, {"time_completed": record.completion_date})
