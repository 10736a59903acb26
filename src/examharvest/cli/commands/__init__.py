"""CLI command modules."""

from . import db, jobs, worker

__all__ = [
    "db",
    "jobs",
    "worker",
]
