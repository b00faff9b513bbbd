"""Tests for logging configuration."""

import json
import logging

from app.core.logging import JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("app.gateway.executor", logging.WARNING, __file__, 1, "attempt %d failed", (2,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_lifts_context_fields():
    data = json.loads(JSONFormatter().format(_record(provider="groq", attempt=2)))
    assert data["message"] == "attempt 2 failed"
    assert data["level"] == "WARNING"
    assert data["provider"] == "groq"
    assert data["attempt"] == 2
    assert "mode" not in data


def test_setup_logging_quiets_http_clients():
    setup_logging(level="DEBUG", json_logs=True)
    try:
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        setup_logging()
