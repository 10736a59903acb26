from __future__ import annotations

from examharvest.core.config.models import JobStatus
from examharvest.core.orchestrator.cancellation import CancellationToken
from examharvest.core.orchestrator.runner import HarvestRunner

from .conftest import UNIT_ALGO, UNIT_CALC, PortalScript, RecordingSink


class CancellingSink(RecordingSink):
    """Cancels the run as soon as the first record arrives."""

    def __init__(self, token: CancellationToken) -> None:
        super().__init__()
        self.token = token

    async def emit_record(self, record) -> None:
        await super().emit_record(record)
        self.token.cancel("client disconnected")


async def test_cancel_between_items_is_not_retried(config, script: PortalScript):
    script.items = {"101": ["Q1", "Q2"]}
    token = CancellationToken()
    sink = CancellingSink(token)
    runner = HarvestRunner(config, script.factory(), token=token)

    outcome = await runner.run("aluno@univesp.br", "senha", sink)

    assert outcome.cancelled
    assert outcome.status == JobStatus.FAILED
    assert outcome.attempts == 1
    assert [r.item_label for r in sink.records] == ["Q1"]
    assert script.reads == 1
    assert script.opened == 1 and script.closed == 1


async def test_retry_skips_exams_finished_by_earlier_attempts(config, script: PortalScript):
    script.units = {"2023": [UNIT_ALGO, UNIT_CALC]}
    script.items = {"101": ["Q1"], "102": ["Q01"]}
    script.select_failures = {"102": 2}
    sink = RecordingSink()
    runner = HarvestRunner(config, script.factory())

    outcome = await runner.run("aluno@univesp.br", "senha", sink)

    assert outcome.succeeded
    assert outcome.attempts == 3
    assert script.selected_units == ["101", "102", "102", "102"]
    assert [r.item_label for r in sink.records] == ["Q1", "Q01"]
    assert [u.unit_label for u in sink.units] == [UNIT_ALGO.label, UNIT_CALC.label]
    assert sink.steps().count("SKIPPED") == 2


async def test_processed_units_from_caller_are_skipped(config, script: PortalScript):
    sink = RecordingSink()
    runner = HarvestRunner(config, script.factory())

    outcome = await runner.run("aluno@univesp.br", "senha", sink, [UNIT_ALGO.label])

    assert outcome.succeeded
    assert outcome.summary.units_skipped == 1
    assert script.selected_units == []
