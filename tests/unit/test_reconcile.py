"""Unit tests for the completion reconciler.

Uses in-memory fakes for the locator, enrolment service, completion tracker
and record store so each decision path can be driven directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from acu.completion.ports import (
    ActivityLocator,
    CompletionData,
    CompletionState,
    CompletionTracker,
    EnrollmentService,
    RecordStore,
)
from acu.completion.reconcile import OutcomeKind, Reconciler
from acu.completion.records import ImportRecord
from acu.completion.retry import NO_WAIT, RetryPolicy

T1 = 1_700_000_000
T2 = 1_710_000_000


@dataclass
class FakeCourse:
    id: int
    shortname: str
    fullname: str
    enable_completion: bool = True


@dataclass
class FakeUser:
    id: int
    username: str
    can_override: bool = True


@dataclass
class FakeRole:
    id: int


@dataclass
class FakeActivity:
    id: int
    name: str
    section_name: str | None


@dataclass
class FakeRecord:
    id: int
    activity_id: int
    user_id: int
    time_modified: int = 0


@dataclass
class FakeAggregate:
    id: int
    user_id: int
    course_id: int
    time_started: int | None = None
    time_completed: int | None = None


@dataclass
class FakePlatform:
    """One object playing all four collaborator roles."""

    courses: list[FakeCourse] = field(default_factory=list)
    users: list[FakeUser] = field(default_factory=list)
    activities: dict[int, list[FakeActivity]] = field(default_factory=dict)
    completions: dict[tuple[int, int], FakeRecord] = field(default_factory=dict)
    course_completions: list[FakeAggregate] = field(default_factory=list)
    criteria: list[FakeAggregate] = field(default_factory=list)
    enrolments: set[tuple[int, int, int]] = field(default_factory=set)
    # Behaviour switches
    transition_result: bool = True
    transition_writes: bool = True
    transition_error: Exception | None = None
    materialize_after: int = 0  # failed reads before a new record becomes visible
    # Call tracking
    calls: list[str] = field(default_factory=list)
    writes: list[tuple[Any, dict[str, Any]]] = field(default_factory=list)
    _pending_reads: int = 0

    # ActivityLocator
    def find_course_by_field(self, field: str, value: str) -> FakeCourse | None:
        matches = [c for c in self.courses if str(getattr(c, field)) == value]
        return matches[0] if len(matches) == 1 else None

    def find_user_by_field(self, field: str, value: str) -> FakeUser | None:
        matches = [u for u in self.users if str(getattr(u, field)) == value]
        return matches[0] if len(matches) == 1 else None

    def find_activity(
        self, course: FakeCourse, section_name: str, activity_name: str
    ) -> FakeActivity | None:
        for activity in self.activities.get(course.id, []):
            if activity.section_name is None:
                section_ok = section_name == "0"
            else:
                section_ok = activity.section_name.lower() == section_name.lower()
            if section_ok and activity.name.lower() == activity_name.lower():
                return activity
        return None

    # EnrollmentService
    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> None:
        self.calls.append("ensure_enrolled")
        self.enrolments.add((course_id, user_id, role_id))

    # CompletionTracker
    def is_completion_enabled(self, course: FakeCourse) -> bool:
        return course.enable_completion

    def get_completion_state(self, activity: FakeActivity, user_id: int) -> CompletionData:
        self.calls.append("get_completion_state")
        record = self.completions.get((activity.id, user_id))
        if record is None:
            return CompletionData(state=CompletionState.INCOMPLETE)
        return CompletionData(state=CompletionState.COMPLETE, record_id=record.id)

    def can_override_completion(self, operator: FakeUser | None, course: FakeCourse) -> bool:
        return operator is not None and operator.can_override

    def set_completion_complete(
        self, activity: FakeActivity, user_id: int, allow_override: bool
    ) -> bool:
        self.calls.append("set_completion_complete")
        assert allow_override is True
        if self.transition_error is not None:
            raise self.transition_error
        if self.transition_writes:
            self.completions[(activity.id, user_id)] = FakeRecord(
                id=len(self.completions) + 1,
                activity_id=activity.id,
                user_id=user_id,
                time_modified=999,
            )
            self._pending_reads = self.materialize_after
        return self.transition_result

    def purge_completion_cache(self) -> None:
        self.calls.append("purge_completion_cache")

    # RecordStore
    def get_completion_record(self, activity_id: int, user_id: int) -> FakeRecord | None:
        self.calls.append("get_completion_record")
        if self._pending_reads > 0:
            self._pending_reads -= 1
            return None
        return self.completions.get((activity_id, user_id))

    def get_course_completion(self, user_id: int, course_id: int) -> FakeAggregate | None:
        for row in self.course_completions:
            if row.user_id == user_id and row.course_id == course_id:
                return row
        return None

    def get_criterion_completion(self, user_id: int, course_id: int) -> FakeAggregate | None:
        for row in self.criteria:
            if row.user_id == user_id and row.course_id == course_id:
                return row
        return None

    def update_record(self, record: Any, fields: dict[str, Any]) -> None:
        self.writes.append((record, dict(fields)))
        for name, value in fields.items():
            setattr(record, name, value)


@pytest.fixture
def platform() -> FakePlatform:
    """A course CS101 with an unnamed first section and a named topic."""
    return FakePlatform(
        courses=[FakeCourse(id=10, shortname="CS101", fullname="Intro to Computing")],
        users=[
            FakeUser(id=1, username="admin"),
            FakeUser(id=2, username="alice"),
        ],
        activities={
            10: [
                FakeActivity(id=100, name="Intro Video", section_name=None),
                FakeActivity(id=101, name="Quiz 1", section_name="Week 1"),
            ]
        },
    )


@pytest.fixture
def operator(platform: FakePlatform) -> FakeUser:
    return platform.users[0]


def make_reconciler(platform: FakePlatform, retry_policy: RetryPolicy = NO_WAIT) -> Reconciler:
    return Reconciler(
        locator=platform,
        enrolments=platform,
        tracker=platform,
        store=platform,
        retry_policy=retry_policy,
    )


def make_record(**overrides: Any) -> ImportRecord:
    values: dict[str, Any] = {
        "course_field": "shortname",
        "course_value": "CS101",
        "user_field": "username",
        "user_value": "alice",
        "section_name": "0",
        "activity_name": "Intro Video",
        "completion_date": T1,
    }
    values.update(overrides)
    return ImportRecord(**values)


class TestFakeSatisfiesPorts:
    """The fake must be usable wherever the ports are expected."""

    def test_fake_platform_implements_every_port(self, platform: FakePlatform) -> None:
        assert isinstance(platform, ActivityLocator)
        assert isinstance(platform, EnrollmentService)
        assert isinstance(platform, CompletionTracker)
        assert isinstance(platform, RecordStore)


class TestPreconditions:
    """Lookups and policy checks that short-circuit reconciliation."""

    @pytest.mark.parametrize("role", [None, FakeRole(id=None)])  # type: ignore[arg-type]
    def test_invalid_role_is_error(
        self, platform: FakePlatform, operator: FakeUser, role: Any
    ) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), role, operator)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.message == "Invalid student role object"
        assert platform.calls == []

    def test_unknown_course_is_skipped(self, platform: FakePlatform, operator: FakeUser) -> None:
        outcome = make_reconciler(platform).reconcile(
            make_record(course_value="NOPE"), FakeRole(5), operator
        )

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == 'Unable to find course matching "NOPE"'
        assert outcome.course is None
        assert platform.writes == []

    def test_ambiguous_course_is_skipped(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.courses.append(FakeCourse(id=11, shortname="CS101", fullname="Duplicate"))

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert "Unable to find course" in outcome.message

    def test_completion_disabled_is_skipped(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.courses[0].enable_completion = False

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == 'Course "Intro to Computing" does not have completions enabled'
        assert outcome.course is platform.courses[0]
        assert "ensure_enrolled" not in platform.calls

    def test_unknown_user_is_skipped(self, platform: FakePlatform, operator: FakeUser) -> None:
        outcome = make_reconciler(platform).reconcile(
            make_record(user_value="mallory"), FakeRole(5), operator
        )

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == 'Unable to find user matching "mallory"'
        assert outcome.user is None

    def test_unknown_activity_is_skipped_without_enrolment(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        outcome = make_reconciler(platform).reconcile(
            make_record(section_name="Week 9", activity_name="Quiz 1"), FakeRole(5), operator
        )

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == (
            'Unable to find activity "Quiz 1" in topic "Week 9" in course "Intro to Computing"'
        )
        assert outcome.user is platform.users[1]
        assert platform.enrolments == set()
        assert platform.writes == []


class TestIncompleteActivity:
    """Activities not yet complete for the user."""

    def test_added_when_override_allowed(self, platform: FakePlatform, operator: FakeUser) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert (outcome.added, outcome.updated, outcome.skipped, outcome.error) == (1, 0, 0, 0)
        assert outcome.message == (
            'Activity "Intro Video" in topic "0" was completed on behalf of user.'
        )
        assert platform.completions[(100, 2)].time_modified == T1
        assert (10, 2, 5) in platform.enrolments

    def test_side_effects_run_in_order(self, platform: FakePlatform, operator: FakeUser) -> None:
        make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert platform.calls[:5] == [
            "ensure_enrolled",
            "get_completion_state",
            "set_completion_complete",
            "purge_completion_cache",
            "get_completion_record",
        ]

    def test_matches_names_case_insensitively(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        outcome = make_reconciler(platform).reconcile(
            make_record(section_name="WEEK 1", activity_name="quiz 1"), FakeRole(5), operator
        )

        assert outcome.kind == OutcomeKind.ADDED
        assert (101, 2) in platform.completions

    def test_course_dates_cascade(self, platform: FakePlatform, operator: FakeUser) -> None:
        platform.course_completions.append(FakeAggregate(id=1, user_id=2, course_id=10))
        platform.criteria.append(FakeAggregate(id=1, user_id=2, course_id=10))

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert platform.course_completions[0].time_completed == T1
        assert platform.course_completions[0].time_started == T1
        assert platform.criteria[0].time_completed == T1

    def test_missing_aggregates_are_not_an_error(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert len(platform.writes) == 1

    def test_override_denied_is_skipped_without_transition(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        operator.can_override = False

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == (
            "Configured user unable to override completion in course Intro to Computing"
        )
        assert "set_completion_complete" not in platform.calls
        assert platform.completions == {}

    def test_missing_operator_cannot_override(self, platform: FakePlatform) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), None)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert "unable to override completion" in outcome.message

    def test_record_appearing_late_is_found(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.materialize_after = 9

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert platform.calls.count("get_completion_record") == 10

    def test_record_never_appearing_is_error(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.materialize_after = 10

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.message == "Failed to retrieve the completion record for updating."
        assert platform.calls.count("get_completion_record") == 10
        assert platform.writes == []

    def test_retry_waits_between_attempts(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        waits: list[float] = []
        policy = RetryPolicy(attempts=10, interval=0.05, sleep=waits.append)
        platform.materialize_after = 3

        outcome = make_reconciler(platform, policy).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert waits == [0.05, 0.05, 0.05]

    def test_reported_failure_confirmed_by_recheck_is_added(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.transition_result = False  # write lands, call reports failure

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ADDED
        assert platform.completions[(100, 2)].time_modified == T1

    def test_failed_transition_without_confirmation_is_error(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.transition_result = False
        platform.transition_writes = False

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.message == (
            'Failed to update completion state for activity "Intro Video" in topic "0".'
        )
        assert "purge_completion_cache" not in platform.calls

    def test_transition_exception_becomes_error(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.transition_error = RuntimeError("tracker offline")

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.message == (
            "Exception occurred while updating completion state: tracker offline"
        )
        assert outcome.course is platform.courses[0]
        assert outcome.user is platform.users[1]


class TestCompletedActivity:
    """Activities already complete for the user."""

    @pytest.fixture
    def completed(self, platform: FakePlatform) -> FakeRecord:
        record = FakeRecord(id=1, activity_id=100, user_id=2, time_modified=T1)
        platform.completions[(100, 2)] = record
        return record

    def test_same_date_is_skipped(
        self, platform: FakePlatform, operator: FakeUser, completed: FakeRecord
    ) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.message == (
            'Activity "Intro Video" in topic "0" was already completed '
            "and the completion date is the same."
        )
        assert platform.writes == []

    def test_replay_is_idempotent(
        self, platform: FakePlatform, operator: FakeUser, completed: FakeRecord
    ) -> None:
        reconciler = make_reconciler(platform)

        first = reconciler.reconcile(make_record(), FakeRole(5), operator)
        second = reconciler.reconcile(make_record(), FakeRole(5), operator)

        assert first.kind == second.kind == OutcomeKind.SKIPPED
        assert platform.writes == []

    def test_different_date_is_updated_once(
        self, platform: FakePlatform, operator: FakeUser, completed: FakeRecord
    ) -> None:
        reconciler = make_reconciler(platform)

        first = reconciler.reconcile(make_record(completion_date=T2), FakeRole(5), operator)
        second = reconciler.reconcile(make_record(completion_date=T2), FakeRole(5), operator)

        assert first.kind == OutcomeKind.UPDATED
        assert first.message == (
            'Activity "Intro Video" in topic "0" was already completed '
            "but the completion date was updated."
        )
        assert second.kind == OutcomeKind.SKIPPED
        assert completed.time_modified == T2
        assert len(platform.writes) == 1

    def test_update_does_not_need_override(
        self, platform: FakePlatform, operator: FakeUser, completed: FakeRecord
    ) -> None:
        operator.can_override = False

        outcome = make_reconciler(platform).reconcile(
            make_record(completion_date=T2), FakeRole(5), operator
        )

        assert outcome.kind == OutcomeKind.UPDATED
        assert "set_completion_complete" not in platform.calls

    def test_complete_state_without_record_is_skipped(
        self, platform: FakePlatform, operator: FakeUser
    ) -> None:
        platform.completions[(100, 2)] = FakeRecord(id=1, activity_id=100, user_id=2)
        platform._pending_reads = 1  # the store cannot see the record yet

        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert "no completion record" in outcome.message
        assert platform.writes == []


class TestReplayScenario:
    """Add, replay with the same date, replay with a new date."""

    def test_add_then_skip_then_update(self, platform: FakePlatform, operator: FakeUser) -> None:
        reconciler = make_reconciler(platform)

        added = reconciler.reconcile(make_record(), FakeRole(5), operator)
        skipped = reconciler.reconcile(make_record(), FakeRole(5), operator)
        updated = reconciler.reconcile(make_record(completion_date=T2), FakeRole(5), operator)

        assert [o.kind for o in (added, skipped, updated)] == [
            OutcomeKind.ADDED,
            OutcomeKind.SKIPPED,
            OutcomeKind.UPDATED,
        ]
        assert platform.completions[(100, 2)].time_modified == T2
        assert platform.calls.count("set_completion_complete") == 1


class TestOutcomeSerialization:
    def test_to_dict(self, platform: FakePlatform, operator: FakeUser) -> None:
        outcome = make_reconciler(platform).reconcile(make_record(), FakeRole(5), operator)

        assert outcome.to_dict() == {
            "outcome": "added",
            "message": 'Activity "Intro Video" in topic "0" was completed on behalf of user.',
            "course_id": 10,
            "user_id": 2,
        }
