from __future__ import annotations

import logging

import orjson

from examharvest.core.logging import JSONFormatter, context_prefix, get_contextual_logger, get_logger


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("examharvest.worker", logging.INFO, __file__, 10, "Claimed job", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_get_logger_prefixes_once():
    assert get_logger().name == "examharvest"
    assert get_logger("worker").name == "examharvest.worker"
    assert get_logger("examharvest.worker") is get_logger("worker")


def test_json_lines_carry_job_context():
    line = JSONFormatter().format(make_record(job_id="job-1", owner_id="owner-1", unrelated="x"))

    entry = orjson.loads(line)
    assert entry["message"] == "Claimed job"
    assert entry["level"] == "INFO"
    assert entry["job_id"] == "job-1"
    assert entry["owner_id"] == "owner-1"
    assert "unrelated" not in entry


def test_console_prefix_names_job_or_ticket():
    assert context_prefix(make_record(job_id="0123456789abcdef")) == "[cyan][job 01234567][/cyan] "
    assert context_prefix(make_record(ticket=7)) == "[magenta][live #7][/magenta] "
    assert context_prefix(make_record()) == ""


def test_contextual_logger_stamps_records(caplog):
    log = get_contextual_logger("worker", job_id="job-1", owner_id=None)

    with caplog.at_level(logging.INFO, logger="examharvest.worker"):
        log.info("Started processing", extra={"attempt": 2})

    record = caplog.records[-1]
    assert record.job_id == "job-1"
    assert record.attempt == 2
    assert not hasattr(record, "owner_id")
