"""日志配置测试"""

import io
import json
import logging

import pytest
import structlog
from tandem.core.logging_config import redact_task_content, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_redact_replaces_text_with_length():
    event = redact_task_content(None, "info", {"event": "x", "text": "secret", "task_id": "t1"})
    assert event == {"event": "x", "text": "<6 chars>", "task_id": "t1"}


def test_json_output_is_redacted(restore_logging):
    stream = io.StringIO()
    setup_logging(log_format="json", log_level="DEBUG", stream=stream)

    structlog.get_logger("tandem.test").info("task_created", task_id="abc", text="hello")

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["event"] == "task_created"
    assert record["task_id"] == "abc"
    assert record["text"] == "<5 chars>"
    assert record["level"] == "info"


def test_level_from_env(restore_logging, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TANDEM_LOG_LEVEL", "WARNING")
    setup_logging(stream=io.StringIO())
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING
