from __future__ import annotations

import asyncio

import pytest

from examharvest.core.orchestrator.admission import AdmissionQueue


def gated(name: str, gate: asyncio.Event, started: list[str]):
    async def task() -> None:
        started.append(name)
        await gate.wait()

    return task


async def test_starts_immediately_under_capacity():
    queue = AdmissionQueue(max_concurrency=2)
    gate = asyncio.Event()
    started: list[str] = []

    first = queue.submit(gated("a", gate, started))
    second = queue.submit(gated("b", gate, started))
    await asyncio.sleep(0)

    assert first.position == 0 and second.position == 0
    assert not first.queued
    assert queue.active_count == 2
    assert queue.queued_count == 0

    gate.set()
    await queue.drain()
    assert queue.active_count == 0


async def test_queued_tasks_run_fifo_with_positions():
    queue = AdmissionQueue(max_concurrency=1)
    gate = asyncio.Event()
    started: list[str] = []

    tickets = [queue.submit(gated(name, gate, started)) for name in "abc"]

    assert [t.position for t in tickets] == [0, 1, 2]
    assert tickets[1].queued and tickets[2].queued
    assert queue.queued_count == 2

    gate.set()
    await queue.drain()

    assert started == ["a", "b", "c"]
    assert all(t.done for t in tickets)
    assert queue.active_count == 0


async def test_abandoned_ticket_is_skipped():
    queue = AdmissionQueue(max_concurrency=1)
    gate = asyncio.Event()
    started: list[str] = []
    gone = {"b": False}

    first = queue.submit(gated("a", gate, started))
    second = queue.submit(gated("b", gate, started), is_abandoned=lambda: gone["b"])
    third = queue.submit(gated("c", gate, started))

    gone["b"] = True
    gate.set()
    await queue.drain()

    assert started == ["a", "c"]
    assert second.skipped and second.done
    assert not first.skipped and not third.skipped


async def test_failing_task_releases_its_slot():
    queue = AdmissionQueue(max_concurrency=1)
    started: list[str] = []

    async def boom() -> None:
        started.append("boom")
        raise RuntimeError("unexpected")

    gate = asyncio.Event()
    queue.submit(boom)
    follower = queue.submit(gated("next", gate, started))
    await asyncio.sleep(0.01)

    assert started == ["boom", "next"]
    assert follower.started
    assert queue.active_count == 1

    gate.set()
    await queue.drain()


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        AdmissionQueue(max_concurrency=0)
