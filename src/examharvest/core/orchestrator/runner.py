"""
Harvest runner.

Coordinates one harvest: retry policy -> state machine -> progress sink,
and folds every way a run can end into a single HarvestOutcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, TYPE_CHECKING

from examharvest.core.config.models import JobStatus
from examharvest.core.errors import (
    AuthenticationError,
    HarvestError,
    RetryExhaustedError,
    ScrapeCancelledError,
)
from examharvest.core.site.base import SiteAdapter

from .cancellation import CancellationToken
from .retry import RetryExecutor
from .state_machine import ExtractionStateMachine, RunSummary

if TYPE_CHECKING:
    from examharvest.core.config.models import AppConfig

    from .sinks import ProgressSink


logger = logging.getLogger(__name__)


@dataclass
class HarvestOutcome:
    """Terminal result of one harvest."""

    status: JobStatus
    summary: RunSummary | None = None
    error: HarvestError | None = None
    cancelled: bool = False
    attempts: int = 0

    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        return "Finalizado com sucesso!"

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "cancelled": self.cancelled,
            "attempts": self.attempts,
            "records": self.summary.records if self.summary else 0,
            "units_done": self.summary.units_done if self.summary else 0,
            "error": self.message if self.error else None,
            "duration_seconds": self.duration_seconds,
        }


class HarvestRunner:
    """Runs one harvest for one credential.

    Each attempt gets a fresh adapter from ``adapter_factory`` and a fresh
    state machine; the sink and the cancellation token are shared across
    attempts.
    """

    def __init__(
        self,
        config: AppConfig,
        adapter_factory: Callable[[], SiteAdapter],
        *,
        token: CancellationToken | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self.config = config
        self.adapter_factory = adapter_factory
        self.token = token or CancellationToken()
        self.log = log or logger

    async def run(
        self,
        login: str,
        password: str,
        sink: ProgressSink,
        processed_units: Iterable[str] = (),
    ) -> HarvestOutcome:
        """Execute the harvest.

        Args:
            login: User identifier submitted to the portal
            password: Plain-text password
            sink: Receives every event of every attempt
            processed_units: Exam labels to skip; exams finished by an
                attempt are skipped by the attempts after it

        Returns:
            HarvestOutcome; never raises for run failures
        """
        executor = RetryExecutor.from_config(self.config.retry, token=self.token)
        processed = set(processed_units)
        outcome = HarvestOutcome(status=JobStatus.PROCESSING)

        async def attempt(number: int) -> RunSummary:
            outcome.attempts = number
            self.log.info(
                f"Starting harvest attempt {number}/{executor.max_attempts}",
                extra={"attempt": number},
            )
            machine = ExtractionStateMachine.from_config(
                self.config,
                self.adapter_factory(),
                login,
                password,
                token=self.token,
                processed_units=processed,
                log=self.log,
            )
            try:
                return await machine.run(sink)
            finally:
                processed.update(machine.summary.completed_units)

        try:
            outcome.summary = await executor.run(attempt, sink)
            outcome.status = JobStatus.COMPLETED
            self.log.info(
                f"Harvest completed: {outcome.summary.records} questions, "
                f"{outcome.summary.units_done} exams"
            )
        except ScrapeCancelledError as e:
            outcome.status = JobStatus.FAILED
            outcome.cancelled = True
            outcome.error = e
            self.log.info(f"Harvest cancelled: {self.token.reason or e.message}")
        except AuthenticationError as e:
            outcome.status = JobStatus.FAILED
            outcome.error = e
            self.log.warning(f"Harvest failed on authentication: {e.message}")
        except RetryExhaustedError as e:
            outcome.status = JobStatus.FAILED
            outcome.error = e
            self.log.error(f"Harvest failed: {e.message}")
        finally:
            outcome.finished_at = datetime.utcnow()

        return outcome
