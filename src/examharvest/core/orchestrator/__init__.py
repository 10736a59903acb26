"""Orchestrator - extraction state machine, retries, admission, progress sinks."""

from .admission import AdmissionQueue, AdmissionTicket
from .cancellation import CancellationToken
from .retry import RetryExecutor, retry_persistence
from .runner import HarvestOutcome, HarvestRunner
from .sinks import (
    DurableLogSink,
    JobProgress,
    LiveStreamSink,
    LogEntry,
    Metrics,
    ProgressSink,
    ProgressStore,
)
from .state_machine import (
    ExtractionStateMachine,
    Phase,
    RecordEvent,
    RunSummary,
    StatusEvent,
    UnitDoneEvent,
)

__all__ = [
    "AdmissionQueue",
    "AdmissionTicket",
    "CancellationToken",
    "RetryExecutor",
    "retry_persistence",
    "HarvestOutcome",
    "HarvestRunner",
    "DurableLogSink",
    "JobProgress",
    "LiveStreamSink",
    "LogEntry",
    "Metrics",
    "ProgressSink",
    "ProgressStore",
    "ExtractionStateMachine",
    "Phase",
    "RecordEvent",
    "RunSummary",
    "StatusEvent",
    "UnitDoneEvent",
]
