"""
SQLAlchemy ORM models for ExamHarvest.

Defines the database schema:
- ImportJobs: Durable harvest jobs and their progress log
- ExamProgress: Exams already harvested per owner
- Subjects, Questions, Alternatives, Comments: Harvested content
- Contributors: Owners and their reputation
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from examharvest.core.config.models import JobStatus


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
    }


# =============================================================================
# Mixins
# =============================================================================


class TimestampMixin:
    """Mixin providing created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


# =============================================================================
# Import Job Model
# =============================================================================


class ImportJob(Base, TimestampMixin):
    """A durable harvest request.

    Created by the submitting application, mutated only by workers.
    ``updated_at`` doubles as the heartbeat the stuck-job sweep reads.
    """

    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Credential as submitted; the password is stored encrypted
    login: Mapped[str] = mapped_column(String(320), nullable=False)
    credential: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.PENDING.value,
        index=True,
    )

    # {"logs": [...], "metrics": {...}}
    logs: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_import_job_status_created", "status", "created_at"),
        Index("ix_import_job_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<ImportJob(id='{self.id}', owner='{self.owner_id}', status='{self.status}')>"


# =============================================================================
# Exam Progress Model
# =============================================================================


class ExamProgress(Base):
    """Marks an exam as fully harvested for one owner."""

    __tablename__ = "exam_progress"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    exam_id: Mapped[str] = mapped_column(String(500), nullable=False)
    exam_name: Mapped[str] = mapped_column(String(500), nullable=False)
    period: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "exam_id", name="uq_exam_progress_owner_exam"),
    )

    def __repr__(self) -> str:
        return f"<ExamProgress(owner='{self.owner_id}', exam='{self.exam_name}')>"


# =============================================================================
# Content Models
# =============================================================================


class Subject(Base):
    """Course subject that questions are filed under."""

    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(300), unique=True, nullable=False, index=True)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#3BB2F6")
    icon: Mapped[str] = mapped_column(String(20), nullable=False, default="📚")

    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="subject",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Subject(id='{self.id}', name='{self.name}')>"


class Question(Base, TimestampMixin):
    """A harvested exam question."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    subject_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    week: Mapped[str | None] = mapped_column(String(100), nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String(100), nullable=True)
    objective: Mapped[str | None] = mapped_column(Text, nullable=True)

    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    verification_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    subject: Mapped["Subject"] = relationship("Subject", back_populates="questions")
    alternatives: Mapped[list["Alternative"]] = relationship(
        "Alternative",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Alternative.letter",
    )
    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="question",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Question(id='{self.id}', title='{self.title[:50]}...')>"


class Alternative(Base):
    """One answer option of a question."""

    __tablename__ = "alternatives"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    letter: Mapped[str] = mapped_column(String(1), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    question: Mapped["Question"] = relationship("Question", back_populates="alternatives")

    def __repr__(self) -> str:
        return f"<Alternative(question='{self.question_id}', letter='{self.letter}')>"


class Comment(Base):
    """Comment attached to a question; harvested justifications land here."""

    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    question: Mapped["Question"] = relationship("Question", back_populates="comments")


class Contributor(Base):
    """Owner reputation, credited per harvested question."""

    __tablename__ = "contributors"

    owner_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    reputation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Contributor(owner='{self.owner_id}', reputation={self.reputation})>"
