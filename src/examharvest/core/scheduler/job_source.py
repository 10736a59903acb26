"""
Durable job source.

Wraps the job, exam-progress and question repositories behind the
operations a worker needs: claiming jobs, recovering stuck ones, and
storing progress and harvested records. Every call is its own unit of
work.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from examharvest.core.errors import PersistenceError
from examharvest.core.extract.base import ExtractedRecord, UnitSummary
from examharvest.core.orchestrator.sinks import ProgressStore
from examharvest.persistence.db import get_session_factory, session_scope
from examharvest.persistence.models import ImportJob
from examharvest.persistence.repo import ExamProgressRepository, JobRepository, QuestionRepository

logger = logging.getLogger(__name__)


class DurableJobSource(ProgressStore):
    """Database-backed job queue and progress store."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        factory = self._session_factory or get_session_factory()
        with session_scope(factory) as session:
            yield session

    @contextmanager
    def _write(self, what: str) -> Generator[Session, None, None]:
        """Unit of work whose database errors surface as PersistenceError."""
        try:
            with self._session() as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to {what}: {e}", cause=e) from e

    # -------------------------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------------------------

    def enqueue(self, owner_id: str, login: str, credential: str) -> ImportJob:
        """Create a pending job. ``credential`` must already be encrypted."""
        with self._write("enqueue job") as session:
            return JobRepository(session).create(owner_id, login, credential)

    def fetch_and_lock(self) -> ImportJob | None:
        """Claim the oldest pending job, or return None."""
        with self._session() as session:
            job = JobRepository(session).fetch_and_lock()

        if job is not None:
            logger.info(f"Claimed job {job.id} for owner {job.owner_id}")
        return job

    def sweep_stuck(self, timeout: timedelta) -> int:
        """Return stale PROCESSING jobs to PENDING."""
        with self._session() as session:
            recovered = JobRepository(session).sweep_stuck(timeout)

        if recovered:
            logger.warning(f"Recovered {recovered} stuck job(s) older than {timeout}")
        return recovered

    def get_status(self, job_id: str) -> str | None:
        with self._session() as session:
            return JobRepository(session).get_status(job_id)

    def processed_labels(self, owner_id: str) -> list[str]:
        """Exam labels already harvested for the owner."""
        with self._session() as session:
            return ExamProgressRepository(session).processed_labels(owner_id)

    def complete(self, job_id: str, payload: dict[str, Any]) -> bool:
        """Move a PROCESSING job to COMPLETED. False if it no longer was."""
        with self._write(f"complete job {job_id}") as session:
            return JobRepository(session).complete(job_id, payload)

    def fail(self, job_id: str, payload: dict[str, Any]) -> bool:
        """Move a PROCESSING job to FAILED. False if it no longer was."""
        with self._write(f"fail job {job_id}") as session:
            return JobRepository(session).fail(job_id, payload)

    # -------------------------------------------------------------------------
    # ProgressStore
    # -------------------------------------------------------------------------

    def save_progress(self, job_id: str, payload: dict[str, Any]) -> None:
        with self._write(f"update progress of job {job_id}") as session:
            updated = JobRepository(session).update_progress(job_id, payload)

        if not updated:
            logger.debug(f"Progress of job {job_id} not stored, job is no longer processing")

    def save_record(self, owner_id: str, record: ExtractedRecord) -> bool:
        with self._write(f"save question {record.item_label}") as session:
            question, created = QuestionRepository(session).save_record(owner_id, record)

        if not created:
            logger.debug(f"Question {record.item_label} already stored as {question.id}")
        return created

    def save_unit_done(self, owner_id: str, summary: UnitSummary) -> None:
        with self._write(f"mark exam {summary.unit_label} as done") as session:
            ExamProgressRepository(session).mark_done(
                owner_id,
                exam_id=summary.unit_id,
                exam_name=summary.unit_label,
                period=summary.period,
            )
