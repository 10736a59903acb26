"""
Progress sinks.

The extraction state machine reports through a single ProgressSink
interface. LiveStreamSink pushes server-sent events to a connected client;
DurableLogSink folds events into the job's persisted log payload.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

from sse_starlette import ServerSentEvent

from examharvest.core.config.models import JobStatus, LogType, Step
from examharvest.core.errors import PersistenceError
from examharvest.core.extract.base import ExtractedRecord, UnitSummary
from examharvest.core.logging import json_dumps

from .retry import retry_persistence

logger = logging.getLogger(__name__)


XP_PER_RECORD = 10

STEP_LOG_TYPES: dict[Step, LogType] = {
    Step.QUEUED: LogType.INFO,
    Step.INIT: LogType.INFO,
    Step.NAVIGATE: LogType.INFO,
    Step.LOGIN: LogType.INFO,
    Step.ANALYZING: LogType.INFO,
    Step.PROCESSING: LogType.INFO,
    Step.INFO: LogType.INFO,
    Step.CLEANUP: LogType.INFO,
    Step.FOUND: LogType.SUCCESS,
    Step.EXAM_DONE: LogType.SUCCESS,
    Step.DONE: LogType.SUCCESS,
    Step.SKIPPED: LogType.WARNING,
    Step.WARNING: LogType.WARNING,
    Step.ERROR: LogType.ERROR,
}


def log_type_for(step: Step | str) -> LogType:
    """Map a status step to the log type shown to the job owner."""
    try:
        return STEP_LOG_TYPES[Step(step)]
    except ValueError:
        return LogType.INFO


# =============================================================================
# Job progress payload
# =============================================================================


@dataclass
class LogEntry:
    """One line of a job's progress log."""

    msg: str
    type: LogType = LogType.INFO
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    time: str = field(default_factory=lambda: datetime.now().strftime("%H:%M:%S"))

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "time": self.time, "msg": self.msg, "type": self.type.value}


@dataclass
class Metrics:
    """Counters shown alongside the job log."""

    found: int = 0
    imported: int = 0
    skipped: int = 0
    xp: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"found": self.found, "imported": self.imported, "skipped": self.skipped, "xp": self.xp}


@dataclass
class JobProgress:
    """The ``logs`` payload persisted on an import job."""

    logs: list[LogEntry] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)

    def add(self, msg: str, log_type: LogType = LogType.INFO) -> LogEntry:
        entry = LogEntry(msg=msg, type=log_type)
        self.logs.append(entry)
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "logs": [entry.to_dict() for entry in self.logs],
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobProgress":
        data = data or {}
        logs = [
            LogEntry(
                msg=item.get("msg", ""),
                type=LogType(item.get("type", LogType.INFO.value)),
                id=item.get("id") or str(uuid.uuid4()),
                time=item.get("time", ""),
            )
            for item in data.get("logs", [])
        ]
        counters = data.get("metrics") or {}
        metrics = Metrics(
            found=int(counters.get("found", 0)),
            imported=int(counters.get("imported", 0)),
            skipped=int(counters.get("skipped", 0)),
            xp=int(counters.get("xp", 0)),
        )
        return cls(logs=logs, metrics=metrics)


# =============================================================================
# Sink interface
# =============================================================================


class ProgressSink(ABC):
    """Receiver of status, record and unit-completion events of one run."""

    @abstractmethod
    async def emit_status(self, step: Step | str, message: str) -> None:
        pass

    @abstractmethod
    async def emit_record(self, record: ExtractedRecord) -> None:
        pass

    @abstractmethod
    async def emit_unit_done(self, summary: UnitSummary) -> None:
        pass

    async def close(self) -> None:
        pass


class ProgressStore(ABC):
    """Durable side of a DurableLogSink.

    Implementations raise PersistenceError when a write fails.
    """

    @abstractmethod
    def save_progress(self, job_id: str, payload: dict[str, Any]) -> None:
        """Persist the job's log payload."""
        pass

    @abstractmethod
    def save_record(self, owner_id: str, record: ExtractedRecord) -> bool:
        """Persist one extracted record as business entities.

        Returns:
            False when the record was already stored
        """
        pass

    @abstractmethod
    def save_unit_done(self, owner_id: str, summary: UnitSummary) -> None:
        """Record that an exam was fully processed."""
        pass


# =============================================================================
# Live stream
# =============================================================================


class LiveStreamSink(ProgressSink):
    """Streams events to one connected client as server-sent events.

    Events are buffered in an asyncio queue and drained by stream(). A
    keepalive comment goes out whenever no event arrived for
    ``heartbeat_seconds``. After disconnect() every emit is a no-op.
    """

    def __init__(self, heartbeat_seconds: float = 15.0):
        self.heartbeat_seconds = heartbeat_seconds
        self.records_sent = 0
        self._queue: asyncio.Queue[ServerSentEvent | None] = asyncio.Queue()
        self._disconnected = False
        self._closed = False

    @property
    def is_disconnected(self) -> bool:
        return self._disconnected

    def _put(self, event: str, data: dict[str, Any]) -> None:
        if self._disconnected or self._closed:
            return
        self._queue.put_nowait(ServerSentEvent(data=json_dumps(data), event=event))

    async def emit_status(self, step: Step | str, message: str) -> None:
        value = step.value if isinstance(step, Step) else str(step)
        self._put("status", {"step": value, "message": message})

    async def emit_record(self, record: ExtractedRecord) -> None:
        if self._disconnected or self._closed:
            return
        self.records_sent += 1
        self._put("record", record.to_dict())

    async def emit_unit_done(self, summary: UnitSummary) -> None:
        logger.debug(f"Unit done on live stream: {summary.unit_label}")

    async def send_done(self, total: int | None = None) -> None:
        """Send the terminal ``done`` event and end the stream."""
        self._put("done", {"total": self.records_sent if total is None else total})
        await self.close()

    async def send_error(self, message: str) -> None:
        """Send the terminal ``error`` event and end the stream."""
        self._put("error", {"message": message})
        await self.close()

    def disconnect(self) -> None:
        """Mark the client as gone and wake the stream consumer."""
        if self._disconnected:
            return
        self._disconnected = True
        self._queue.put_nowait(None)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[ServerSentEvent]:
        """Yield queued events until the sink is closed or disconnected."""
        yield ServerSentEvent(comment="keepalive")
        while True:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=self.heartbeat_seconds)
            except asyncio.TimeoutError:
                if self._disconnected:
                    return
                yield ServerSentEvent(comment="keepalive")
                continue

            if event is None:
                return
            yield event


# =============================================================================
# Durable log
# =============================================================================


class DurableLogSink(ProgressSink):
    """Folds run events into a job's persisted progress payload.

    Only newly stored records count as found; duplicates count as skipped.
    Writes the payload on every status, on every ``flush_every``-th record,
    on every unit completion, and on finish(). A record that cannot be
    stored becomes an error entry and the run goes on.
    """

    def __init__(
        self,
        job_id: str,
        owner_id: str,
        store: ProgressStore,
        *,
        flush_every: int = 2,
        persistence_attempts: int = 3,
        persistence_max_wait: float = 2.0,
        progress: JobProgress | None = None,
    ):
        self.job_id = job_id
        self.owner_id = owner_id
        self.store = store
        self.flush_every = flush_every
        self.persistence_attempts = persistence_attempts
        self.persistence_max_wait = persistence_max_wait
        self.progress = progress or JobProgress()

    @property
    def metrics(self) -> Metrics:
        return self.progress.metrics

    def log(self, msg: str, log_type: LogType = LogType.INFO) -> LogEntry:
        return self.progress.add(msg, log_type)

    def flush(self) -> None:
        """Persist the payload. Failures are logged, never raised."""
        try:
            self.store.save_progress(self.job_id, self.progress.to_dict())
        except PersistenceError as e:
            logger.error(f"Failed to persist progress for job {self.job_id}: {e}")

    async def emit_status(self, step: Step | str, message: str) -> None:
        self.log(message, log_type_for(step))
        if step == Step.SKIPPED:
            self.metrics.skipped += 1
        self.flush()

    async def emit_record(self, record: ExtractedRecord) -> None:
        try:
            created = await retry_persistence(
                self.store.save_record,
                self.owner_id,
                record,
                attempts=self.persistence_attempts,
                max_wait=self.persistence_max_wait,
            )
        except PersistenceError as e:
            logger.error(f"Failed to save question {record.item_label} for job {self.job_id}: {e}")
            self.log(f"Erro ao salvar questão {record.item_label}: {e.message}", LogType.ERROR)
            return

        if not created:
            self.metrics.skipped += 1
            self.log(f"Questão {record.item_label} já existe no banco, ignorada", LogType.INFO)
            return

        self.metrics.found += 1
        self.metrics.imported += 1
        self.metrics.xp += XP_PER_RECORD
        self.log(f"Questão {record.item_label} salva com sucesso!", LogType.SUCCESS)

        if self.metrics.found % self.flush_every == 0:
            self.flush()

    async def emit_unit_done(self, summary: UnitSummary) -> None:
        try:
            await retry_persistence(
                self.store.save_unit_done,
                self.owner_id,
                summary,
                attempts=self.persistence_attempts,
                max_wait=self.persistence_max_wait,
            )
        except PersistenceError as e:
            logger.error(f"Failed to record exam {summary.unit_label} as done: {e}")
            self.log(f"Erro ao salvar histórico da prova {summary.unit_label}: {e.message}", LogType.ERROR)
        else:
            self.log(f"Prova {summary.unit_label} finalizada e salva no histórico", LogType.SUCCESS)
        self.flush()

    def finish(self, status: JobStatus, message: str | None = None) -> dict[str, Any]:
        """Append the terminal log line and return the final payload."""
        if message:
            log_type = LogType.SUCCESS if status == JobStatus.COMPLETED else LogType.ERROR
            self.log(message, log_type)
        return self.progress.to_dict()
