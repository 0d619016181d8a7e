from __future__ import annotations

import json

import pytest

from issuechat.logging import StructuredLogger, configure_logging, get_logger
from issuechat.models import ThreadKey


def _json_lines(out: str) -> list[dict]:
    return [json.loads(line) for line in out.splitlines() if line.startswith("{")]


def test_json_draft_action(capsys):
    logger = StructuredLogger(name="issuechat.test.json", json_logging=True)
    logger.log_draft_action("created", ThreadKey("C1", "T1"), issue_key="BE-1", project="BE")
    entries = _json_lines(capsys.readouterr().out)
    assert len(entries) == 1
    entry = entries[0]
    assert entry["operation"] == "draft_created"
    assert entry["channel_id"] == "C1"
    assert entry["thread_id"] == "T1"
    assert entry["issue_key"] == "BE-1"
    assert entry["project"] == "BE"
    assert entry["level"] == "INFO"


def test_plain_text_logging(capsys):
    logger = StructuredLogger(name="issuechat.test.plain", json_logging=False)
    logger.info("hello", extra_field=1)
    out = capsys.readouterr().out
    assert "INFO hello" in out
    assert not out.startswith("{")


def test_level_filtering(capsys):
    logger = StructuredLogger(name="issuechat.test.level", json_logging=True, level="WARNING")
    logger.info("hidden")
    logger.warning("shown")
    messages = [e["message"] for e in _json_lines(capsys.readouterr().out)]
    assert messages == ["shown"]


def test_timed_operation_logs_performance(capsys):
    logger = StructuredLogger(name="issuechat.test.timed", json_logging=True)
    with logger.timed_operation("handle_message", channel_id="C1"):
        pass
    entries = _json_lines(capsys.readouterr().out)
    assert entries[0]["operation"] == "handle_message_start"
    assert entries[-1]["operation"] == "handle_message"
    assert "duration_ms" in entries[-1]


def test_timed_operation_logs_and_reraises(capsys):
    logger = StructuredLogger(name="issuechat.test.fail", json_logging=True)
    with pytest.raises(ValueError), logger.timed_operation("boom"):
        raise ValueError("bad")
    entries = _json_lines(capsys.readouterr().out)
    assert entries[-1]["level"] == "ERROR"
    assert entries[-1]["error"] == "bad"


def test_configure_logging_replaces_global():
    first = configure_logging(json_logging=True, level="DEBUG")
    assert get_logger() is first
    second = configure_logging()
    assert get_logger() is second
    assert second is not first
