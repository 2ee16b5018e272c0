"""Tests for the JSON log format and structured context fields."""

import json
import logging
import os
import sys
import tempfile
import time
from pathlib import Path

import pytest

from batchpurge.logging import JsonFormatter, log_with_context, setup_logging
from batchpurge.policy import RetentionPolicy
from batchpurge.retention import RetentionRunner


def make_record(message="hello", level=logging.INFO, extra_fields=None, exc_info=None):
    record = logging.LogRecord("batchpurge.test", level, __file__, 1, message, None, exc_info)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


def test_json_formatter_core_fields():
    data = json.loads(JsonFormatter().format(make_record()))

    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["logger"] == "batchpurge.test"
    assert "timestamp" in data
    assert "extra_fields" not in data


def test_json_formatter_extra_fields():
    data = json.loads(JsonFormatter().format(make_record(extra_fields={"paths": 3, "dry_run": True})))

    assert data["extra_fields"] == {"paths": 3, "dry_run": True}


def test_json_formatter_serializes_paths():
    data = json.loads(JsonFormatter().format(make_record(extra_fields={"directory": Path("/data/logs")})))

    assert data["extra_fields"]["directory"] == "/data/logs"


def test_json_formatter_exception():
    try:
        raise PermissionError("denied")
    except PermissionError:
        record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

    data = json.loads(JsonFormatter().format(record))

    assert data["error_type"] == "PermissionError"
    assert "denied" in data["error"]


def test_setup_logging_adds_one_handler():
    logger = setup_logging("batchpurge.test_handlers", "DEBUG")
    setup_logging("batchpurge.test_handlers", "WARNING")

    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)
    assert logger.level == logging.WARNING


def test_log_with_context(caplog):
    logger = logging.getLogger("batchpurge.test_context")

    with caplog.at_level(logging.INFO, logger="batchpurge.test_context"):
        log_with_context(logger, "warning", "Directory disappeared", {"directory": "/data/x"})
        log_with_context(logger, "info", "No context")

    first, second = caplog.records
    assert first.levelname == "WARNING"
    assert first.extra_fields == {"directory": "/data/x"}
    assert second.extra_fields == {}


@pytest.mark.asyncio
async def test_batch_logs_carry_context(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        old = time.time() - 2 * 86400
        for i in range(4):
            f = base / f"file{i}.txt"
            f.write_text("x")
            os.utime(f, (old, old))

        runner = RetentionRunner(dry_run=False)
        with caplog.at_level(logging.INFO, logger="batchpurge"):
            await runner.apply_policy(RetentionPolicy.for_path(str(base), 1, batch_size=2))

    batch_logs = [r for r in caplog.records if r.getMessage() == "Deleted batch"]
    assert len(batch_logs) == 2
    assert all(r.extra_fields["paths"] == 2 for r in batch_logs)
    assert all(r.name == "batchpurge.retention" for r in batch_logs)


@pytest.mark.asyncio
async def test_dry_run_batch_log(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "empty").mkdir()

        runner = RetentionRunner(dry_run=True)
        with caplog.at_level(logging.INFO, logger="batchpurge"):
            stats = await runner.run({"p": RetentionPolicy.for_path(str(base), 0)})

    messages = [r.getMessage() for r in caplog.records]
    assert "Starting retention - DRY RUN MODE" in messages
    assert "Retention completed" in messages
    assert stats["paths_to_delete"] == len([m for m in messages if m == "Would delete batch"])
