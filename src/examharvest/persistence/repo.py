"""
Repository pattern for database operations.

Provides clean abstractions over the job table (including the
fetch-and-lock and stuck-job sweep used by workers), the per-owner exam
progress markers, and harvested question content.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examharvest.core.config.models import JobStatus
from examharvest.core.extract.base import ExtractedRecord
from examharvest.core.normalize.text import format_question_body, generate_title

from .models import (
    Alternative,
    Comment,
    Contributor,
    ExamProgress,
    ImportJob,
    Question,
    Subject,
)


MAX_LOCK_ATTEMPTS = 5
REPUTATION_PER_QUESTION = 10
JUSTIFICATION_COMMENT_HEADER = "**🎓 Gabarito Comentado (AVA):**"


# =============================================================================
# Job Repository
# =============================================================================


class JobRepository:
    """Repository for ImportJob lifecycle operations.

    Status moves PENDING -> PROCESSING -> COMPLETED | FAILED, and
    PROCESSING -> PENDING only through sweep_stuck().
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, job_id: str) -> ImportJob | None:
        """Get job by ID."""
        return self.session.get(ImportJob, job_id)

    def get_status(self, job_id: str) -> str | None:
        """Read the job's current status straight from the database."""
        stmt = select(ImportJob.status).where(ImportJob.id == job_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        owner_id: str | None = None,
        limit: int = 50,
    ) -> Sequence[ImportJob]:
        """List jobs, newest first."""
        stmt = select(ImportJob)
        if status is not None:
            stmt = stmt.where(ImportJob.status == JobStatus(status).value)
        if owner_id is not None:
            stmt = stmt.where(ImportJob.owner_id == owner_id)
        stmt = stmt.order_by(ImportJob.created_at.desc()).limit(limit)
        return self.session.execute(stmt).scalars().all()

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status."""
        stmt = select(ImportJob.status, func.count(ImportJob.id)).group_by(ImportJob.status)
        return {status: count for status, count in self.session.execute(stmt).all()}

    def create(self, owner_id: str, login: str, credential: str) -> ImportJob:
        """Create a pending job. ``credential`` must already be encrypted."""
        job = ImportJob(
            owner_id=owner_id,
            login=login,
            credential=credential,
            status=JobStatus.PENDING.value,
        )
        self.session.add(job)
        self.session.flush()
        return job

    def fetch_and_lock(self) -> ImportJob | None:
        """Claim the oldest pending job for this worker.

        The row is selected with FOR UPDATE SKIP LOCKED where the backend
        supports it, then moved to PROCESSING by an update conditional on
        it still being PENDING. A lost race re-runs the selection.

        Returns:
            The claimed job, or None if nothing is pending
        """
        for _ in range(MAX_LOCK_ATTEMPTS):
            stmt = (
                select(ImportJob)
                .where(ImportJob.status == JobStatus.PENDING.value)
                .order_by(ImportJob.created_at.asc(), ImportJob.id.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job = self.session.execute(stmt).scalar_one_or_none()
            if job is None:
                return None

            result = self.session.execute(
                update(ImportJob)
                .where(
                    ImportJob.id == job.id,
                    ImportJob.status == JobStatus.PENDING.value,
                )
                .values(status=JobStatus.PROCESSING.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.session.refresh(job)
                return job

            # Another worker claimed it between select and update
            self.session.expire(job)

        return None

    def update_progress(self, job_id: str, logs: dict[str, Any]) -> bool:
        """Persist the progress payload and bump the heartbeat.

        Returns:
            False if the job is no longer PROCESSING
        """
        result = self.session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == JobStatus.PROCESSING.value)
            .values(logs=logs, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def complete(self, job_id: str, logs: dict[str, Any]) -> bool:
        """Move a PROCESSING job to COMPLETED with its final payload.

        Returns:
            False if the job was cancelled or recovered meanwhile
        """
        now = datetime.utcnow()
        result = self.session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.COMPLETED.value,
                logs=logs,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def fail(self, job_id: str, logs: dict[str, Any]) -> bool:
        """Move a PROCESSING job to FAILED with its final payload.

        Returns:
            False if the job was cancelled or recovered meanwhile
        """
        result = self.session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == JobStatus.PROCESSING.value)
            .values(status=JobStatus.FAILED.value, logs=logs, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def cancel(self, job_id: str) -> bool:
        """Mark a pending or running job FAILED.

        A running worker notices through its cancellation poll.

        Returns:
            True if the job was still active
        """
        result = self.session.execute(
            update(ImportJob)
            .where(
                ImportJob.id == job_id,
                ImportJob.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value]),
            )
            .values(status=JobStatus.FAILED.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def sweep_stuck(self, timeout: timedelta, now: datetime | None = None) -> int:
        """Return PROCESSING jobs with a stale heartbeat to PENDING.

        Args:
            timeout: Age of ``updated_at`` after which a job counts as stuck
            now: Reference time (defaults to utcnow)

        Returns:
            Number of jobs recovered
        """
        now = now or datetime.utcnow()
        result = self.session.execute(
            update(ImportJob)
            .where(
                ImportJob.status == JobStatus.PROCESSING.value,
                ImportJob.updated_at < now - timeout,
            )
            .values(status=JobStatus.PENDING.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


# =============================================================================
# Exam Progress Repository
# =============================================================================


class ExamProgressRepository:
    """Repository for per-owner exam completion markers."""

    def __init__(self, session: Session):
        self.session = session

    def processed_labels(self, owner_id: str) -> list[str]:
        """Exam labels already fully harvested for ``owner_id``."""
        stmt = select(ExamProgress.exam_name).where(ExamProgress.owner_id == owner_id)
        return list(self.session.execute(stmt).scalars().all())

    def mark_done(
        self,
        owner_id: str,
        exam_id: str,
        exam_name: str,
        period: str | None = None,
    ) -> bool:
        """Record an exam as done. Idempotent per (owner, exam).

        Returns:
            True if a new marker was written
        """
        stmt = select(ExamProgress.id).where(
            ExamProgress.owner_id == owner_id,
            ExamProgress.exam_id == exam_id,
        )
        if self.session.execute(stmt).first() is not None:
            return False

        try:
            with self.session.begin_nested():
                self.session.add(
                    ExamProgress(
                        owner_id=owner_id,
                        exam_id=exam_id,
                        exam_name=exam_name,
                        period=period,
                    )
                )
        except IntegrityError:
            # Written concurrently by another worker
            return False
        return True


# =============================================================================
# Question Repository
# =============================================================================


class QuestionRepository:
    """Repository for harvested questions and their subjects."""

    def __init__(self, session: Session):
        self.session = session

    def get_subject(self, name: str) -> Subject | None:
        """Find a subject by case-insensitive name."""
        stmt = select(Subject).where(func.lower(Subject.name) == name.lower())
        return self.session.execute(stmt).scalar_one_or_none()

    def get_or_create_subject(self, name: str) -> Subject:
        """Get a subject by name, creating it with default styling."""
        subject = self.get_subject(name)
        if subject is not None:
            return subject

        try:
            with self.session.begin_nested():
                subject = Subject(name=name)
                self.session.add(subject)
        except IntegrityError:
            subject = self.get_subject(name)
            if subject is None:
                raise
        return subject

    def find_duplicate(self, subject_id: str, text: str) -> Question | None:
        stmt = select(Question).where(Question.subject_id == subject_id, Question.text == text)
        return self.session.execute(stmt).scalars().first()

    def credit(self, owner_id: str, points: int = REPUTATION_PER_QUESTION) -> None:
        """Add reputation points to an owner."""
        contributor = self.session.get(Contributor, owner_id)
        if contributor is None:
            contributor = Contributor(owner_id=owner_id, reputation=0)
            self.session.add(contributor)
            self.session.flush()
        self.session.execute(
            update(Contributor)
            .where(Contributor.owner_id == owner_id)
            .values(reputation=Contributor.reputation + points)
            .execution_options(synchronize_session=False)
        )

    def save_record(self, owner_id: str, record: ExtractedRecord) -> tuple[Question, bool]:
        """Store an extracted record as question, alternatives and comment.

        A question with the same body under the same subject is not
        stored twice.

        Returns:
            (question, created)
        """
        subject = self.get_or_create_subject(record.subject_name)
        body = format_question_body(record.statement, record.images)

        existing = self.find_duplicate(subject.id, body)
        if existing is not None:
            return existing, False

        question = Question(
            subject_id=subject.id,
            owner_id=owner_id,
            title=generate_title(record.statement),
            text=body,
            week=record.metadata.week,
            difficulty=record.metadata.difficulty,
            objective=record.metadata.objective,
            is_verified=True,
            verification_requested=False,
        )
        question.alternatives = [
            Alternative(letter=alt.letter, text=alt.content, is_correct=alt.is_correct)
            for alt in record.alternatives
        ]
        if record.justification and record.justification.strip():
            question.comments = [
                Comment(
                    owner_id=owner_id,
                    text=f"{JUSTIFICATION_COMMENT_HEADER}\n\n{record.justification}",
                )
            ]

        self.session.add(question)
        self.session.flush()
        self.credit(owner_id)
        return question, True

    def count(self, owner_id: str | None = None) -> int:
        stmt = select(func.count(Question.id))
        if owner_id is not None:
            stmt = stmt.where(Question.owner_id == owner_id)
        return self.session.execute(stmt).scalar_one()
