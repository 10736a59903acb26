"""Durable job source, background worker and its scheduler."""

from .job_source import DurableJobSource
from .service import WorkerService, execute_sweep, execute_worker_tick
from .worker import WorkerLoop

__all__ = [
    "DurableJobSource",
    "WorkerLoop",
    "WorkerService",
    "execute_sweep",
    "execute_worker_tick",
]
