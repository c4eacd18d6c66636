"""
Tests for structured logging and trace context propagation.
"""

import json
import logging

import pytest

from intentflow.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    reset_trace_context,
    set_trace_context,
)
from intentflow.observability.logging import HumanReadableFormatter, StructuredFormatter


@pytest.fixture(autouse=True)
def fresh_context():
    clear_trace_context()
    yield
    clear_trace_context()


def make_record(message="hello", **extra):
    record = logging.LogRecord("intentflow.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_set_and_clear_trace_context():
    set_trace_context(request_id="abc")
    set_trace_context(node_id="trade")
    assert get_trace_context() == {"request_id": "abc", "node_id": "trade"}
    clear_trace_context()
    assert get_trace_context() == {}


def test_reset_restores_previous_context():
    set_trace_context(request_id="outer")
    token = set_trace_context(request_id="inner", node_id="trade")
    reset_trace_context(token)
    assert get_trace_context() == {"request_id": "outer"}


def test_structured_formatter_includes_context():
    set_trace_context(request_id="req-1", node_id="trade")
    entry = json.loads(
        StructuredFormatter().format(make_record("\x1b[32m✓ done\x1b[0m", attempt=2))
    )
    assert entry["message"] == "✓ done"
    assert entry["request_id"] == "req-1"
    assert entry["node_id"] == "trade"
    assert entry["attempt"] == 2
    assert entry["level"] == "info"


def test_human_formatter_prefix():
    set_trace_context(request_id="0123456789abcdef", node_id="alert")
    line = HumanReadableFormatter().format(make_record("skipped"))
    assert "[req:89abcdef | node:alert]" in line
    assert line.endswith("skipped")


@pytest.mark.parametrize(
    "env,expected",
    [
        ({"LOG_FORMAT": "json"}, StructuredFormatter),
        ({"ENV": "production"}, StructuredFormatter),
        ({}, HumanReadableFormatter),
    ],
)
def test_auto_format(monkeypatch, env, expected):
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    monkeypatch.delenv("ENV", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("NO_COLOR", "0")

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(level="DEBUG", format="auto")
        assert isinstance(root.handlers[0].formatter, expected)
        assert root.level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
