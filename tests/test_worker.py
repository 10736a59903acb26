from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from sqlalchemy import update

from examharvest.core.config.models import JobStatus
from examharvest.core.crypto import encrypt_credential
from examharvest.core.scheduler.job_source import DurableJobSource
from examharvest.core.scheduler.service import execute_sweep, execute_worker_tick
from examharvest.core.scheduler.worker import WorkerLoop
from examharvest.persistence.db import session_scope
from examharvest.persistence.models import Contributor, ImportJob
from examharvest.persistence.repo import JobRepository, QuestionRepository

from .conftest import UNIT_ALGO, UNIT_CALC, PortalScript


def stored_job(session_factory, job_id: str) -> ImportJob:
    with session_scope(session_factory) as session:
        return session.get(ImportJob, job_id)


def enqueue(source: DurableJobSource, config, password: str = "senha") -> ImportJob:
    credential = encrypt_credential(password, config.security.encryption_key)
    return source.enqueue("owner-1", "ra123456", credential)


async def test_idle_worker_returns_none(config, session_factory, script: PortalScript):
    worker = WorkerLoop(config, DurableJobSource(session_factory), script.factory())

    assert await worker.process_next_job() is None
    assert script.opened == 0


async def test_job_completes_after_transient_failures(config, session_factory, script: PortalScript):
    script.items = {"101": ["Q1"]}
    script.read_failures = 2
    source = DurableJobSource(session_factory)
    job = enqueue(source, config)
    worker = WorkerLoop(config, source, script.factory())

    outcome = await worker.process_next_job()

    assert outcome is not None and outcome.succeeded
    assert outcome.attempts == 3
    assert script.opened == 3 and script.closed == 3

    stored = stored_job(session_factory, job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.completed_at is not None
    assert stored.logs["metrics"]["found"] == 1
    messages = [entry["msg"] for entry in stored.logs["logs"]]
    assert messages[0] == "Iniciando captura em background..."
    assert messages[-1] == "Finalizado com sucesso!"
    retries = [
        entry for entry in stored.logs["logs"]
        if entry["type"] == "warning" and "Falha na tentativa" in entry["msg"]
    ]
    assert len(retries) == 2
    assert source.processed_labels("owner-1") == ["2023 - Algoritmos e Programação - P1"]


async def test_failure_after_stored_record_does_not_double_count(
    config, session_factory, script: PortalScript
):
    script.units = {"2023": [UNIT_ALGO, UNIT_CALC]}
    script.items = {"101": ["Q1"], "102": ["Q01"]}
    script.select_failures = {"102": 2}
    source = DurableJobSource(session_factory)
    job = enqueue(source, config)
    worker = WorkerLoop(config, source, script.factory())

    outcome = await worker.process_next_job()

    assert outcome.succeeded
    assert outcome.attempts == 3
    assert script.selected_units == ["101", "102", "102", "102"]

    metrics = stored_job(session_factory, job.id).logs["metrics"]
    assert metrics["found"] == 2
    assert metrics["imported"] == 2
    assert metrics["xp"] == 20
    with session_scope(session_factory) as session:
        assert session.get(Contributor, "owner-1").reputation == 20
        assert QuestionRepository(session).count("owner-1") == 2


async def test_second_job_skips_exams_already_harvested(config, session_factory, script: PortalScript):
    source = DurableJobSource(session_factory)
    worker = WorkerLoop(config, source, script.factory())
    enqueue(source, config)
    await worker.process_next_job()

    second = enqueue(source, config)
    outcome = await worker.process_next_job()

    assert outcome.succeeded
    assert outcome.summary.units_skipped == 1
    assert script.selected_units == ["101"]
    assert stored_job(session_factory, second.id).logs["metrics"]["skipped"] == 1


async def test_undecryptable_credential_fails_job(config, session_factory, script: PortalScript):
    source = DurableJobSource(session_factory)
    job = source.enqueue("owner-1", "ra123456", "not-a-valid-token")
    worker = WorkerLoop(config, source, script.factory())

    outcome = await worker.process_next_job()

    assert outcome.status == JobStatus.FAILED
    assert script.opened == 0
    stored = stored_job(session_factory, job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.logs["logs"][-1]["type"] == "error"


async def test_external_cancel_stops_running_job(config, session_factory, script: PortalScript):
    source = DurableJobSource(session_factory)
    job = enqueue(source, config)

    async def cancel_from_outside() -> None:
        with session_scope(session_factory) as session:
            JobRepository(session).cancel(job.id)
        await asyncio.sleep(0.2)

    script.on_list_units = cancel_from_outside
    worker = WorkerLoop(config, source, script.factory())

    outcome = await worker.process_next_job()

    assert outcome.cancelled
    assert outcome.status == JobStatus.FAILED
    assert outcome.attempts == 1
    assert script.selected_units == []
    assert script.closed == 1
    assert stored_job(session_factory, job.id).status == JobStatus.FAILED.value


async def test_cancel_missed_by_poll_keeps_job_failed(config, session_factory, script: PortalScript, caplog):
    config = config.model_copy(
        update={"worker": config.worker.model_copy(update={"cancel_poll_seconds": 30})}
    )
    source = DurableJobSource(session_factory)
    job = enqueue(source, config)

    async def cancel_from_outside() -> None:
        with session_scope(session_factory) as session:
            JobRepository(session).cancel(job.id)

    script.on_list_units = cancel_from_outside
    worker = WorkerLoop(config, source, script.factory())

    with caplog.at_level("WARNING"):
        outcome = await worker.process_next_job()

    assert outcome.status == JobStatus.COMPLETED
    stored = stored_job(session_factory, job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.completed_at is None
    assert any("left PROCESSING while running" in r.getMessage() for r in caplog.records)


async def test_busy_worker_skips_tick(config, session_factory, script: PortalScript):
    gate = asyncio.Event()

    async def hold() -> None:
        await gate.wait()

    script.on_list_units = hold
    source = DurableJobSource(session_factory)
    enqueue(source, config)
    enqueue(source, config)
    worker = WorkerLoop(config, source, script.factory())

    running = asyncio.create_task(execute_worker_tick(worker))
    while not worker.busy:
        await asyncio.sleep(0.01)

    assert await worker.process_next_job() is None

    gate.set()
    await running
    statuses = [job.status for job in all_jobs(session_factory)]
    assert sorted(statuses) == [JobStatus.COMPLETED.value, JobStatus.PENDING.value]


def all_jobs(session_factory) -> list[ImportJob]:
    with session_scope(session_factory) as session:
        return JobRepository(session).list_jobs()


async def test_sweep_tick_recovers_stuck_job(config, session_factory, script: PortalScript):
    source = DurableJobSource(session_factory)
    job = enqueue(source, config)
    source.fetch_and_lock()
    with session_scope(session_factory) as session:
        session.execute(
            update(ImportJob)
            .where(ImportJob.id == job.id)
            .values(updated_at=datetime.utcnow() - timedelta(minutes=31))
        )

    recovered = await execute_sweep(WorkerLoop(config, source, script.factory()))

    assert recovered == 1
    assert source.get_status(job.id) == JobStatus.PENDING.value
