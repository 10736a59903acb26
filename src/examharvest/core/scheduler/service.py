"""
APScheduler v4 integration for the background worker.
"""

from __future__ import annotations

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.triggers.interval import IntervalTrigger

from examharvest.core.config.models import AppConfig
from examharvest.core.logging import get_logger

from .worker import WorkerLoop

logger = get_logger("scheduler")

TICK_SCHEDULE_ID = "worker:tick"
SWEEP_SCHEDULE_ID = "worker:sweep"


async def execute_worker_tick(worker: WorkerLoop) -> None:
    """Process one pending job, if the worker is free."""
    outcome = await worker.process_next_job()
    if outcome is not None:
        logger.info("Worker tick finished a job: %s", outcome.status.value)


async def execute_sweep(worker: WorkerLoop) -> int:
    """Recover jobs left in PROCESSING by a crashed worker."""
    recovered = await worker.sweep()
    if recovered:
        logger.info("Sweep returned %d job(s) to the queue", recovered)
    return recovered


class WorkerService:
    """Hosts the worker poll tick and the stuck-job sweep."""

    def __init__(self, config: AppConfig, worker: WorkerLoop) -> None:
        self.config = config
        self.worker = worker
        self._scheduler: AsyncScheduler | None = None

    async def start(self) -> None:
        """Start the scheduler in foreground mode (blocking)."""
        async with AsyncScheduler() as scheduler:
            self._scheduler = scheduler
            await self._add_schedules()
            # First tick without waiting for the interval
            await scheduler.add_job(execute_worker_tick, args=[self.worker])

            logger.info(
                "Worker started: polling every %ss, sweeping every %s min",
                self.config.worker.poll_interval_seconds,
                self.config.worker.sweep_interval_minutes,
            )
            try:
                await scheduler.run_until_stopped()
            finally:
                self._scheduler = None
                logger.info("Worker stopped")

    async def stop(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()

    async def _add_schedules(self) -> None:
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not initialized")

        worker_cfg = self.config.worker
        await self._scheduler.add_schedule(
            execute_worker_tick,
            IntervalTrigger(seconds=worker_cfg.poll_interval_seconds),
            id=TICK_SCHEDULE_ID,
            args=[self.worker],
            conflict_policy=ConflictPolicy.replace,
        )
        await self._scheduler.add_schedule(
            execute_sweep,
            IntervalTrigger(minutes=worker_cfg.sweep_interval_minutes),
            id=SWEEP_SCHEDULE_ID,
            args=[self.worker],
            conflict_policy=ConflictPolicy.replace,
        )
