"""002: Upload run tracking.

Adds tables that record each upload run and the outcome of every row:
- import_run: one row per upload with added/updated/skipped/error counts
- import_row_log: per-line outcome and message

Revision ID: 002
Revises: 001
Create Date: 2026-09-21
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "import_run",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(), nullable=True, comment="Uploaded file name"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("added_count", sa.Integer(), nullable=False),
        sa.Column("updated_count", sa.Integer(), nullable=False),
        sa.Column("skipped_count", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
    )

    op.create_table(
        "import_row_log",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column(
            "run_id",
            sa.Integer(),
            sa.ForeignKey("import_run.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line", sa.Integer(), nullable=False, comment="Line number in the upload file"),
        sa.Column(
            "outcome",
            sa.String(length=20),
            nullable=False,
            comment="added, updated, skipped or error",
        ),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("course_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
    )
    # Query pattern: "what happened to the rows of this run?"
    op.create_index("ix_import_row_log_run_id", "import_row_log", ["run_id"])


def downgrade() -> None:
    op.drop_index("ix_import_row_log_run_id", table_name="import_row_log")
    op.drop_table("import_row_log")
    op.drop_table("import_run")
