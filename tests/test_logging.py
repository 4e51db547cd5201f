"""
Tests for logging helpers.
python -m pytest tests/test_logging.py -v
"""

import json
import logging

import pytest

from proxyai.utils.logging import (
    ContextFormatter, JSONFormatter, OperationStats, get_logger, log_operation, redact
)


class TestRedact:
    def test_keeps_last_characters(self):
        assert redact("v2|partial|key-0001") == "*" * 15 + "0001"

    def test_short_and_missing_values(self):
        assert redact("abc") == "***"
        assert redact(None) == "<none>"
        assert redact("") == "<none>"


class TestContextLogger:
    def test_context_is_attached_and_restored(self, caplog):
        logger = get_logger("proxyai.tests.context")

        with caplog.at_level(logging.DEBUG, logger="proxyai"):
            with logger.context(endpoint="chat/completions", attempt=1):
                logger.debug("sending")
                assert logger.get_context() == {"endpoint": "chat/completions", "attempt": 1}
            logger.debug("done")

        first, second = caplog.records[-2:]
        assert first.endpoint == "chat/completions"
        assert first.attempt == 1
        assert not hasattr(second, "endpoint")
        assert logger.get_context() == {}

    def test_log_operation_reports_failures(self, caplog):
        logger = get_logger("proxyai.tests.operation")

        with caplog.at_level(logging.DEBUG, logger="proxyai"):
            with pytest.raises(RuntimeError):
                with log_operation("fetch_one", logger, endpoint="models"):
                    raise RuntimeError("boom")

        messages = [record.getMessage() for record in caplog.records]
        assert "Starting fetch_one" in messages
        assert any(m.startswith("Failed fetch_one") and "boom" in m for m in messages)


class TestFormatters:
    def _record(self, **fields):
        record = logging.LogRecord("proxyai.api.fetch", logging.INFO, __file__, 1, "sent %s", ("ok",), None)
        for name, value in fields.items():
            setattr(record, name, value)
        return record

    def test_json_formatter_promotes_request_fields(self):
        line = JSONFormatter().format(self._record(endpoint="models", attempt=2))
        entry = json.loads(line)

        assert entry["message"] == "sent ok"
        assert entry["endpoint"] == "models"
        assert entry["attempt"] == 2
        assert "session_id" not in entry

    def test_context_formatter_prefixes_context(self):
        text = ContextFormatter().format(self._record(endpoint="models", attempt=1))
        assert text.endswith("[endpoint=models attempt=1] sent ok")

    def test_context_formatter_without_context(self):
        assert ContextFormatter().format(self._record()).endswith("proxyai.api.fetch: sent ok")


def test_operation_stats():
    stats = OperationStats()
    for status, duration in [("success", 0.5), ("error", 1.5)]:
        record = logging.LogRecord("proxyai", logging.DEBUG, __file__, 1, "done", (), None)
        record.operation, record.duration, record.status = "fetch_one", duration, status
        assert stats.filter(record)

    snapshot = stats.snapshot()["fetch_one"]
    assert snapshot["count"] == 2
    assert snapshot["failures"] == 1
    assert snapshot["avg_time"] == pytest.approx(1.0)
    assert snapshot["max_time"] == 1.5
