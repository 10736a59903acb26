"""
Background worker loop.

Processes durable import jobs one at a time: claim, decrypt, harvest with
a durable progress log, persist the terminal state.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import partial
from typing import Callable

from examharvest.core.config.models import AppConfig, JobStatus, LogType
from examharvest.core.crypto import decrypt_credential
from examharvest.core.errors import CredentialError, PersistenceError
from examharvest.core.logging import get_contextual_logger
from examharvest.core.orchestrator.cancellation import CancellationToken
from examharvest.core.orchestrator.retry import retry_persistence
from examharvest.core.orchestrator.runner import HarvestOutcome, HarvestRunner
from examharvest.core.orchestrator.sinks import DurableLogSink
from examharvest.core.site.base import SiteAdapter
from examharvest.core.site.playwright_adapter import PlaywrightSiteAdapter
from examharvest.persistence.models import ImportJob

from .job_source import DurableJobSource

logger = logging.getLogger(__name__)


class WorkerLoop:
    """Single-flight job processor.

    process_next_job() is safe to call on every poll tick; a tick that
    finds the worker busy returns immediately.
    """

    def __init__(
        self,
        config: AppConfig,
        source: DurableJobSource,
        adapter_factory: Callable[[], SiteAdapter] | None = None,
    ):
        self.config = config
        self.source = source
        self.adapter_factory = adapter_factory or partial(PlaywrightSiteAdapter.from_config, config)
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def process_next_job(self) -> HarvestOutcome | None:
        """Claim and process one pending job.

        Returns:
            The outcome, or None when busy, idle, or on an unexpected error
        """
        if self._busy:
            return None
        self._busy = True

        try:
            job = self.source.fetch_and_lock()
            if job is None:
                return None
            return await self._process(job)
        except Exception:
            logger.exception("Critical error fetching or processing job")
            return None
        finally:
            self._busy = False

    async def sweep(self) -> int:
        """Recover jobs stuck in PROCESSING past the configured timeout."""
        timeout = timedelta(minutes=self.config.worker.stuck_timeout_minutes)
        try:
            return self.source.sweep_stuck(timeout)
        except Exception:
            logger.exception("Stuck job sweep failed")
            return 0

    async def _is_cancelled(self, job_id: str) -> bool:
        return self.source.get_status(job_id) in (JobStatus.FAILED.value, None)

    async def _process(self, job: ImportJob) -> HarvestOutcome:
        log = get_contextual_logger("worker", job_id=job.id, owner_id=job.owner_id)
        log.info(f"Started processing job {job.id} for owner {job.owner_id}")

        worker_cfg = self.config.worker
        retry_cfg = self.config.retry
        sink = DurableLogSink(
            job.id,
            job.owner_id,
            self.source,
            flush_every=worker_cfg.flush_every_records,
            persistence_attempts=retry_cfg.persistence_attempts,
            persistence_max_wait=retry_cfg.persistence_max_wait_seconds,
        )
        sink.log("Iniciando captura em background...", LogType.INFO)
        sink.flush()

        try:
            password = decrypt_credential(job.credential, self.config.security.encryption_key)
        except CredentialError as e:
            log.error(f"Cannot decrypt credential: {e.message}")
            outcome = HarvestOutcome(status=JobStatus.FAILED, error=e)
            await self._finish(job.id, outcome, sink)
            return outcome

        processed = self.source.processed_labels(job.owner_id)
        log.info(f"{len(processed)} exam(s) already harvested for this owner")

        token = CancellationToken()
        token.start_polling(
            partial(self._is_cancelled, job.id),
            interval=worker_cfg.cancel_poll_seconds,
            reason=f"job {job.id} marked as failed externally",
        )
        try:
            runner = HarvestRunner(self.config, self.adapter_factory, token=token, log=log)
            outcome = await runner.run(job.login, password, sink, processed)
        finally:
            await token.stop_polling()

        await self._finish(job.id, outcome, sink)
        log.info(f"Finished job {job.id}: {outcome.status.value}")
        return outcome

    async def _finish(self, job_id: str, outcome: HarvestOutcome, sink: DurableLogSink) -> None:
        retry_cfg = self.config.retry

        if outcome.succeeded:
            payload = sink.finish(JobStatus.COMPLETED, "Finalizado com sucesso!")
            persist = self.source.complete
        else:
            payload = sink.finish(JobStatus.FAILED, f"Erro durante a captura: {outcome.message}")
            persist = self.source.fail

        try:
            updated = await retry_persistence(
                persist,
                job_id,
                payload,
                attempts=retry_cfg.persistence_attempts,
                max_wait=retry_cfg.persistence_max_wait_seconds,
            )
        except PersistenceError as e:
            # The stuck-job sweep returns the job to the queue
            logger.error(f"Failed to persist terminal state of job {job_id}: {e}")
            return

        if not updated:
            logger.warning(
                f"Job {job_id} left PROCESSING while running "
                f"(cancelled or recovered); kept its current status over {outcome.status.value}"
            )
