from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from examharvest.cli.main import app
from examharvest.core.config.loader import ENV_OVERRIDES
from examharvest.core.config.models import JobStatus
from examharvest.core.crypto import decrypt_credential
from examharvest.persistence.db import dispose_engines, get_session
from examharvest.persistence.repo import JobRepository

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    path = tmp_path / "app.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "data_dir": str(tmp_path / "data"),
                "database": {"url": f"sqlite:///{tmp_path / 'cli.db'}"},
                "logging": {"file": None, "rich_console": False},
                "security": {"encryption_key": "cli-secret"},
            }
        )
    )
    dispose_engines()
    yield path
    dispose_engines()


def invoke(*args: str, input: str | None = None):
    return runner.invoke(app, list(args), input=input)


def test_version():
    result = invoke("--version")

    assert result.exit_code == 0
    assert "version" in result.output


def test_enqueue_and_list(config_file: Path):
    assert invoke("db", "init", "-c", str(config_file)).exit_code == 0

    result = invoke("jobs", "enqueue", "owner-1", "ra123456", "-p", "senha", "-c", str(config_file))
    assert result.exit_code == 0, result.output
    assert "Queued job" in result.output

    with get_session() as session:
        jobs = JobRepository(session).list_jobs()
        assert len(jobs) == 1
        assert jobs[0].status == JobStatus.PENDING.value
        assert jobs[0].credential != "senha"
        assert decrypt_credential(jobs[0].credential, "cli-secret") == "senha"
        job_id = jobs[0].id

    listing = invoke("jobs", "list", "-c", str(config_file))
    assert listing.exit_code == 0
    assert "owner-1" in listing.output

    shown = invoke("jobs", "show", job_id, "-c", str(config_file))
    assert shown.exit_code == 0
    assert "ra123456" in shown.output


def test_cancel_pending_job(config_file: Path):
    invoke("db", "init", "-c", str(config_file))
    invoke("jobs", "enqueue", "owner-1", "ra123456", "-p", "senha", "-c", str(config_file))
    with get_session() as session:
        job_id = JobRepository(session).list_jobs()[0].id

    first = invoke("jobs", "cancel", job_id, "-c", str(config_file))
    second = invoke("jobs", "cancel", job_id, "-c", str(config_file))

    assert first.exit_code == 0
    assert second.exit_code == 1


def test_list_rejects_unknown_status(config_file: Path):
    invoke("db", "init", "-c", str(config_file))

    result = invoke("jobs", "list", "--status", "bogus", "-c", str(config_file))

    assert result.exit_code == 1


def test_status_counts_jobs(config_file: Path):
    invoke("db", "init", "-c", str(config_file))
    invoke("jobs", "enqueue", "owner-1", "ra123456", "-p", "senha", "-c", str(config_file))

    result = invoke("status", "-c", str(config_file))

    assert result.exit_code == 0
    assert "PENDING" in result.output
    assert "Questions stored" in result.output


def test_invalid_config_exits_with_error(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "bad.yaml"
    bad.write_text("retry:\n  max_attempts: 0\n")
    dispose_engines()

    result = invoke("status", "-c", str(bad))

    assert result.exit_code == 1
