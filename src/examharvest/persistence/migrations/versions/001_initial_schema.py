"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial database schema."""

    # Import jobs table
    op.create_table(
        "import_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=100), nullable=False),
        sa.Column("login", sa.String(length=320), nullable=False),
        sa.Column("credential", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("logs", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_jobs_owner_id", "import_jobs", ["owner_id"])
    op.create_index("ix_import_jobs_status", "import_jobs", ["status"])
    op.create_index("ix_import_job_status_created", "import_jobs", ["status", "created_at"])
    op.create_index("ix_import_job_status_updated", "import_jobs", ["status", "updated_at"])

    # Exam progress table
    op.create_table(
        "exam_progress",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=100), nullable=False),
        sa.Column("exam_id", sa.String(length=500), nullable=False),
        sa.Column("exam_name", sa.String(length=500), nullable=False),
        sa.Column("period", sa.String(length=100), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "exam_id", name="uq_exam_progress_owner_exam"),
    )
    op.create_index("ix_exam_progress_owner_id", "exam_progress", ["owner_id"])

    # Subjects table
    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=False, server_default="#3BB2F6"),
        sa.Column("icon", sa.String(length=20), nullable=False, server_default="📚"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subjects_name", "subjects", ["name"], unique=True)

    # Questions table
    op.create_table(
        "questions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("week", sa.String(length=100), nullable=True),
        sa.Column("difficulty", sa.String(length=100), nullable=True),
        sa.Column("objective", sa.Text(), nullable=True),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("verification_requested", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_questions_subject_id", "questions", ["subject_id"])
    op.create_index("ix_questions_owner_id", "questions", ["owner_id"])

    # Alternatives table
    op.create_table(
        "alternatives",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("question_id", sa.String(length=36), nullable=False),
        sa.Column("letter", sa.String(length=1), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alternatives_question_id", "alternatives", ["question_id"])

    # Comments table
    op.create_table(
        "comments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("question_id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=100), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comments_question_id", "comments", ["question_id"])

    # Contributors table
    op.create_table(
        "contributors",
        sa.Column("owner_id", sa.String(length=100), nullable=False),
        sa.Column("reputation", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("owner_id"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("contributors")
    op.drop_table("comments")
    op.drop_table("alternatives")
    op.drop_table("questions")
    op.drop_table("subjects")
    op.drop_table("exam_progress")
    op.drop_table("import_jobs")
