from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

from sqlalchemy import select, update

from examharvest.core.config.models import JobStatus
from examharvest.core.extract.base import Alternative, ExtractedRecord, RecordMetadata, UnitSummary
from examharvest.persistence.db import session_scope
from examharvest.persistence.models import Comment, Contributor, ImportJob, Question
from examharvest.persistence.repo import JobRepository, QuestionRepository
from examharvest.core.scheduler.job_source import DurableJobSource


def question(label: str = "Q1", statement: str = "Qual estrutura é ordenada?") -> ExtractedRecord:
    return ExtractedRecord(
        item_label=label,
        subject_name="Algoritmos e Programação",
        statement=statement,
        alternatives=(
            Alternative(letter="A", content="Lista", is_correct=False),
            Alternative(letter="B", content="Árvore binária de busca", is_correct=True),
        ),
        justification="A árvore é ordenada.",
        metadata=RecordMetadata(week="3", difficulty="Médio"),
    )


def age_job(session_factory, job_id: str, minutes: int) -> None:
    with session_scope(session_factory) as session:
        session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id)
            .values(updated_at=datetime.utcnow() - timedelta(minutes=minutes))
        )


# =============================================================================
# Claiming
# =============================================================================


def test_fetch_and_lock_claims_oldest_pending(session_factory):
    source = DurableJobSource(session_factory)
    first = source.enqueue("owner-1", "ra123", "cipher-1")
    source.enqueue("owner-2", "ra456", "cipher-2")

    claimed = source.fetch_and_lock()

    assert claimed is not None
    assert claimed.id == first.id
    assert claimed.status == JobStatus.PROCESSING.value
    assert claimed.credential == "cipher-1"
    assert source.get_status(first.id) == JobStatus.PROCESSING.value


def test_fetch_and_lock_returns_none_when_queue_is_empty(session_factory):
    source = DurableJobSource(session_factory)
    source.enqueue("owner-1", "ra123", "cipher")

    assert source.fetch_and_lock() is not None
    assert source.fetch_and_lock() is None


def test_concurrent_workers_never_claim_the_same_job(session_factory):
    source = DurableJobSource(session_factory)
    job_ids = {source.enqueue(f"owner-{i}", "ra", "cipher").id for i in range(6)}

    def drain() -> list[str]:
        worker = DurableJobSource(session_factory)
        claimed = []
        while (job := worker.fetch_and_lock()) is not None:
            claimed.append(job.id)
        return claimed

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: drain(), range(4)))

    claimed = [job_id for batch in results for job_id in batch]
    assert sorted(claimed) == sorted(job_ids)
    assert len(set(claimed)) == len(claimed)


# =============================================================================
# Stuck-job sweep
# =============================================================================


def test_sweep_recovers_only_stale_processing_jobs(session_factory):
    source = DurableJobSource(session_factory)
    stale = source.enqueue("owner-1", "ra", "cipher")
    fresh = source.enqueue("owner-2", "ra", "cipher")
    source.fetch_and_lock()
    source.fetch_and_lock()
    age_job(session_factory, stale.id, minutes=31)
    age_job(session_factory, fresh.id, minutes=10)

    recovered = source.sweep_stuck(timedelta(minutes=30))

    assert recovered == 1
    assert source.get_status(stale.id) == JobStatus.PENDING.value
    assert source.get_status(fresh.id) == JobStatus.PROCESSING.value


def test_sweep_ignores_terminal_jobs(session_factory):
    source = DurableJobSource(session_factory)
    job = source.enqueue("owner-1", "ra", "cipher")
    source.fetch_and_lock()
    source.complete(job.id, {"logs": [], "metrics": {}})
    age_job(session_factory, job.id, minutes=120)

    assert source.sweep_stuck(timedelta(minutes=30)) == 0
    assert source.get_status(job.id) == JobStatus.COMPLETED.value


# =============================================================================
# Terminal states and cancellation
# =============================================================================


def test_complete_and_fail_store_payload(session_factory):
    source = DurableJobSource(session_factory)
    done = source.enqueue("owner-1", "ra", "cipher")
    broken = source.enqueue("owner-1", "ra", "cipher")
    payload = {"logs": [{"msg": "Finalizado com sucesso!"}], "metrics": {"found": 3}}
    source.fetch_and_lock()
    source.fetch_and_lock()

    assert source.complete(done.id, payload) is True
    assert source.fail(broken.id, {"logs": [], "metrics": {}}) is True

    with session_scope(session_factory) as session:
        stored = session.get(ImportJob, done.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.logs["metrics"]["found"] == 3
        assert stored.completed_at is not None
        assert session.get(ImportJob, broken.id).status == JobStatus.FAILED.value


def test_terminal_writes_leave_cancelled_job_alone(session_factory):
    source = DurableJobSource(session_factory)
    job = source.enqueue("owner-1", "ra", "cipher")
    source.fetch_and_lock()
    with session_scope(session_factory) as session:
        JobRepository(session).cancel(job.id)

    source.save_progress(job.id, {"logs": [{"msg": "late"}], "metrics": {}})

    assert source.complete(job.id, {"logs": [], "metrics": {}}) is False
    assert source.fail(job.id, {"logs": [], "metrics": {}}) is False
    with session_scope(session_factory) as session:
        stored = session.get(ImportJob, job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.completed_at is None
        assert stored.logs in (None, {})


def test_pending_job_cannot_be_completed(session_factory):
    source = DurableJobSource(session_factory)
    job = source.enqueue("owner-1", "ra", "cipher")

    assert source.complete(job.id, {"logs": [], "metrics": {}}) is False
    assert source.get_status(job.id) == JobStatus.PENDING.value


def test_cancel_only_touches_active_jobs(session_factory):
    source = DurableJobSource(session_factory)
    job = source.enqueue("owner-1", "ra", "cipher")

    with session_scope(session_factory) as session:
        assert JobRepository(session).cancel(job.id) is True
    with session_scope(session_factory) as session:
        assert JobRepository(session).cancel(job.id) is False

    assert source.get_status(job.id) == JobStatus.FAILED.value
    assert source.get_status("missing") is None


# =============================================================================
# Harvested content
# =============================================================================


def test_save_record_stores_question_once_and_credits_owner(session_factory):
    source = DurableJobSource(session_factory)

    assert source.save_record("owner-1", question("Q1")) is True
    assert source.save_record("owner-1", question("Q1 again")) is False

    with session_scope(session_factory) as session:
        questions = session.execute(select(Question)).scalars().all()
        assert len(questions) == 1
        stored = questions[0]
        assert [alt.letter for alt in stored.alternatives] == ["A", "B"]
        assert [alt.is_correct for alt in stored.alternatives] == [False, True]
        assert stored.week == "3"
        assert stored.subject.name == "Algoritmos e Programação"
        comment = session.execute(select(Comment)).scalar_one()
        assert comment.text.endswith("A árvore é ordenada.")
        assert session.get(Contributor, "owner-1").reputation == 10
        assert QuestionRepository(session).count("owner-1") == 1


def test_subject_lookup_is_case_insensitive(session_factory):
    source = DurableJobSource(session_factory)

    source.save_record("owner-1", question("Q1", "Primeira pergunta"))
    lower = question("Q2", "Segunda pergunta")
    source.save_record(
        "owner-1",
        ExtractedRecord(
            item_label=lower.item_label,
            subject_name="algoritmos e programação",
            statement=lower.statement,
            alternatives=lower.alternatives,
        ),
    )

    with session_scope(session_factory) as session:
        subjects = {q.subject_id for q in session.execute(select(Question)).scalars()}
        assert len(subjects) == 1


def test_unit_done_is_idempotent(session_factory):
    source = DurableJobSource(session_factory)
    summary = UnitSummary(period="2023", unit_id="101", unit_label="2023 - Algoritmos - P1", items=2)

    source.save_unit_done("owner-1", summary)
    source.save_unit_done("owner-1", summary)

    assert source.processed_labels("owner-1") == ["2023 - Algoritmos - P1"]
    assert source.processed_labels("owner-2") == []
