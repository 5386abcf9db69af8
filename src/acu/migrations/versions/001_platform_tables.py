"""001: Platform and completion tables.

Creates the tables the completion uploader reconciles against:
- course, platform_user, role: lookup targets for import rows
- course_section, course_module: where activities are found
- enrolment: user enrolments created on demand
- module_completion: per-activity completion state and date
- course_completion, course_completion_criterion: course-level aggregates

Revision ID: 001
Revises:
Create Date: 2026-09-14
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "course",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("shortname", sa.String(), nullable=False),
        sa.Column("fullname", sa.String(), nullable=False),
        sa.Column("idnumber", sa.String(), nullable=True),
        sa.Column(
            "enable_completion",
            sa.Boolean(),
            nullable=False,
            comment="Whether completion tracking is enabled for the course",
        ),
    )
    op.create_index("ix_course_shortname", "course", ["shortname"])
    op.create_index("ix_course_idnumber", "course", ["idnumber"])

    op.create_table(
        "platform_user",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("idnumber", sa.String(), nullable=True),
        sa.Column("firstname", sa.String(), nullable=False),
        sa.Column("lastname", sa.String(), nullable=False),
        sa.Column("is_site_admin", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_platform_user_username", "platform_user", ["username"], unique=True)
    op.create_index("ix_platform_user_email", "platform_user", ["email"])
    op.create_index("ix_platform_user_idnumber", "platform_user", ["idnumber"])

    op.create_table(
        "role",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("shortname", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "can_override_completion",
            sa.Boolean(),
            nullable=False,
            comment="Holders may override activity completion in their courses",
        ),
    )
    op.create_index("ix_role_shortname", "role", ["shortname"], unique=True)

    op.create_table(
        "course_section",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("section", sa.Integer(), nullable=False),
        sa.Column(
            "name",
            sa.String(),
            nullable=True,
            comment="Section name; NULL for the unnamed first section",
        ),
    )
    op.create_index("ix_course_section_course_id", "course_section", ["course_id"])

    op.create_table(
        "course_module",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column(
            "section_id", sa.Integer(), sa.ForeignKey("course_section.id"), nullable=False
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("modname", sa.String(), nullable=False),
        sa.Column("completion_tracking", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_course_module_course_id", "course_module", ["course_id"])
    op.create_index("ix_course_module_section_id", "course_module", ["section_id"])

    op.create_table(
        "enrolment",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("platform_user.id"), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("role.id"), nullable=False),
        sa.Column("time_start", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("course_id", "user_id", name="uq_enrolment_course_user"),
    )
    op.create_index("ix_enrolment_course_id", "enrolment", ["course_id"])
    op.create_index("ix_enrolment_user_id", "enrolment", ["user_id"])

    op.create_table(
        "module_completion",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column(
            "activity_id", sa.Integer(), sa.ForeignKey("course_module.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("platform_user.id"), nullable=False),
        sa.Column(
            "completion_state",
            sa.Integer(),
            nullable=False,
            comment="0 = incomplete, 1 = complete",
        ),
        sa.Column("overridden", sa.Boolean(), nullable=False),
        sa.Column(
            "time_modified",
            sa.Integer(),
            nullable=False,
            comment="Unix timestamp of the completion",
        ),
        sa.UniqueConstraint(
            "activity_id", "user_id", name="uq_module_completion_activity_user"
        ),
    )
    op.create_index("ix_module_completion_activity_id", "module_completion", ["activity_id"])
    op.create_index("ix_module_completion_user_id", "module_completion", ["user_id"])

    op.create_table(
        "course_completion",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("platform_user.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("time_enrolled", sa.Integer(), nullable=True),
        sa.Column("time_started", sa.Integer(), nullable=True),
        sa.Column("time_completed", sa.Integer(), nullable=True),
    )
    op.create_index("ix_course_completion_user_id", "course_completion", ["user_id"])
    op.create_index("ix_course_completion_course_id", "course_completion", ["course_id"])

    op.create_table(
        "course_completion_criterion",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("platform_user.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("course.id"), nullable=False),
        sa.Column("criterion_id", sa.Integer(), nullable=False),
        sa.Column("time_completed", sa.Integer(), nullable=True),
    )
    op.create_index(
        "ix_course_completion_criterion_user_id", "course_completion_criterion", ["user_id"]
    )
    op.create_index(
        "ix_course_completion_criterion_course_id", "course_completion_criterion", ["course_id"]
    )


def downgrade() -> None:
    op.drop_table("course_completion_criterion")
    op.drop_table("course_completion")
    op.drop_table("module_completion")
    op.drop_table("enrolment")
    op.drop_table("course_module")
    op.drop_table("course_section")
    op.drop_table("role")
    op.drop_table("platform_user")
    op.drop_table("course")
