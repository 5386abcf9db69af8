"""Shared fixtures: migrated temporary databases with a seeded platform."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from acu.ledger.models import (
    Activity,
    Course,
    CourseCompletion,
    CourseCompletionCriterion,
    CourseSection,
    Enrolment,
    Role,
    User,
)
from acu.ledger.store import get_session, reset_engine, run_migrations


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Generator[Path]:
    """Create a temporary database with migrations run."""
    db_path = tmp_path / "test_platform.db"
    run_migrations(db_path, backup=False)
    reset_engine()
    yield db_path
    reset_engine()


@pytest.fixture
def seeded_db(temp_db_path: Path) -> dict[str, int]:
    """Seed a small platform and return the IDs of what was created.

    - CS101 "Intro to Computing": completion enabled; unnamed section 0 with
      "Intro Video", section 1 "Week 1" with "Quiz 1" and an untracked "Reading"
    - HIST1 "World History": completion disabled
    - two courses sharing idnumber "DUP"
    - users admin (site admin), teacher (editingteacher in CS101), alice, bob,
      and two users sharing an email address
    - alice has course completion and criterion rows in CS101
    """
    with get_session(temp_db_path) as session:
        student = Role(shortname="student", name="Student")
        teacher_role = Role(
            shortname="editingteacher", name="Teacher", can_override_completion=True
        )
        cs101 = Course(shortname="CS101", fullname="Intro to Computing", idnumber="C-101")
        hist = Course(shortname="HIST1", fullname="World History", enable_completion=False)
        dup_a = Course(shortname="DUPA", fullname="Duplicate A", idnumber="DUP")
        dup_b = Course(shortname="DUPB", fullname="Duplicate B", idnumber="DUP")
        admin = User(username="admin", is_site_admin=True)
        teacher = User(username="teacher", email="teacher@example.com")
        alice = User(username="alice", email="alice@example.com", idnumber="S001")
        bob = User(username="bob", email="bob@example.com", idnumber="S002")
        twin_a = User(username="twin_a", email="shared@example.com")
        twin_b = User(username="twin_b", email="shared@example.com")
        session.add_all(
            [student, teacher_role, cs101, hist, dup_a, dup_b]
            + [admin, teacher, alice, bob, twin_a, twin_b]
        )
        session.flush()

        section0 = CourseSection(course_id=cs101.id, section=0, name=None)
        week1 = CourseSection(course_id=cs101.id, section=1, name="Week 1")
        hist0 = CourseSection(course_id=hist.id, section=0, name=None)
        session.add_all([section0, week1, hist0])
        session.flush()

        intro = Activity(course_id=cs101.id, section_id=section0.id, name="Intro Video")
        quiz = Activity(course_id=cs101.id, section_id=week1.id, name="Quiz 1", modname="quiz")
        reading = Activity(
            course_id=cs101.id, section_id=week1.id, name="Reading", completion_tracking=False
        )
        essay = Activity(course_id=hist.id, section_id=hist0.id, name="Essay", modname="assign")
        session.add_all([intro, quiz, reading, essay])
        session.flush()

        session.add(Enrolment(course_id=cs101.id, user_id=teacher.id, role_id=teacher_role.id))
        session.add(CourseCompletion(user_id=alice.id, course_id=cs101.id, time_enrolled=1))
        session.add(CourseCompletionCriterion(user_id=alice.id, course_id=cs101.id, criterion_id=7))
        session.commit()

        ids = {
            "student_role": student.id,
            "teacher_role": teacher_role.id,
            "cs101": cs101.id,
            "hist": hist.id,
            "admin": admin.id,
            "teacher": teacher.id,
            "alice": alice.id,
            "bob": bob.id,
            "intro": intro.id,
            "quiz": quiz.id,
            "reading": reading.id,
        }

    reset_engine()
    return ids  # type: ignore[return-value]
