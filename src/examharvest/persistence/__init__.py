"""Database persistence layer."""

from .db import create_db_engine, create_session_factory, get_engine, get_session, init_db, session_scope
from .models import (
    Alternative,
    Base,
    Comment,
    Contributor,
    ExamProgress,
    ImportJob,
    Question,
    Subject,
)
from .repo import ExamProgressRepository, JobRepository, QuestionRepository

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "get_engine",
    "get_session",
    "init_db",
    "session_scope",
    "Alternative",
    "Base",
    "Comment",
    "Contributor",
    "ExamProgress",
    "ImportJob",
    "Question",
    "Subject",
    "ExamProgressRepository",
    "JobRepository",
    "QuestionRepository",
]
