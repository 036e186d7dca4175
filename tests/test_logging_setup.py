"""
Tests for logging_setup module.

Verifies:
- JSON structured logging format
- Component and severity tagging
- Session ID correlation
- PII-aware logging helpers
- Log level configuration
"""
import json
import logging
from datetime import datetime
from io import StringIO

import pytest

from logging_setup import (
    Component,
    JSONFormatter,
    StructuredLogger,
    get_logger,
    setup_logging,
)


@pytest.fixture
def capture_logs():
    """Capture log output to a string buffer."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger()
    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield buffer

    logger.handlers = []


def _last_entry(buffer: StringIO) -> dict:
    lines = [line for line in buffer.getvalue().strip().split("\n") if line]
    return json.loads(lines[-1])


def test_json_formatter_basic(capture_logs):
    logger = get_logger(Component.ORCHESTRATOR)
    logger.info("Turn completed", turn_id="turn_1")

    log_entry = _last_entry(capture_logs)

    assert log_entry["severity"] == "info"
    assert log_entry["component"] == "orchestrator"
    assert log_entry["message"] == "Turn completed"
    assert log_entry["turn_id"] == "turn_1"
    assert "timestamp" in log_entry


def test_json_formatter_timestamp_format(capture_logs):
    """Timestamp is ISO8601."""
    get_logger(Component.TOOLS).info("Timestamp test")

    timestamp = _last_entry(capture_logs)["timestamp"]
    assert datetime.fromisoformat(timestamp.replace("Z", "+00:00")) is not None


def test_session_id_correlation(capture_logs):
    get_logger(Component.ORCHESTRATOR, session_id="room-1").info("Session test")

    assert _last_entry(capture_logs)["session_id"] == "room-1"


def test_session_id_absent_when_not_provided(capture_logs):
    get_logger(Component.TRANSPORT).info("No session")

    assert "session_id" not in _last_entry(capture_logs)


def test_with_session_creates_new_logger(capture_logs):
    base_logger = get_logger(Component.VOICE_AGENT)
    session_logger = base_logger.with_session("room-2")

    session_logger.info("With session")

    assert session_logger is not base_logger
    assert base_logger.session_id is None
    assert session_logger.logger.name == base_logger.logger.name
    assert _last_entry(capture_logs)["session_id"] == "room-2"


def test_pii_logging(capture_logs):
    """PII goes into its own field."""
    logger = get_logger(Component.ORCHESTRATOR, session_id="room-3")
    logger.info_pii("User turn", transcript="what's the weather in Paris")

    log_entry = _last_entry(capture_logs)

    assert log_entry["pii"]["transcript"] == "what's the weather in Paris"
    assert log_entry["message"] == "User turn"
    assert "transcript" not in log_entry


def test_debug_pii_method(capture_logs):
    get_logger(Component.TOOLS).debug_pii("Executing tool", arguments={"location": "Paris"})

    log_entry = _last_entry(capture_logs)

    assert log_entry["severity"] == "debug"
    assert log_entry["pii"]["arguments"] == {"location": "Paris"}


def test_severity_levels(capture_logs):
    logger = get_logger(Component.SYNTHESIZER)

    logger.debug("Debug message")
    logger.info("Info message")
    logger.warning("Warning message")
    logger.error("Error message")
    logger.critical("Critical message")

    lines = [line for line in capture_logs.getvalue().strip().split("\n") if line]
    severities = [json.loads(line)["severity"] for line in lines]
    assert severities == ["debug", "info", "warning", "error", "critical"]


def test_component_enum():
    assert Component.ORCHESTRATOR.value == "orchestrator"
    assert Component.DETECTOR.value == "detector"
    assert Component.TRANSCRIBER.value == "transcriber"
    assert Component.RESPONDER.value == "responder"
    assert Component.SYNTHESIZER.value == "synthesizer"
    assert Component.TOOLS.value == "tools"


def test_component_string_fallback(capture_logs):
    get_logger("custom_component").info("Test")

    assert _last_entry(capture_logs)["component"] == "custom_component"


def test_foreign_logger_uses_logger_name(capture_logs):
    """Records from third-party loggers carry their logger name as component."""
    logging.getLogger("livekit.agents").warning("plugin warning")

    log_entry = _last_entry(capture_logs)
    assert log_entry["component"] == "livekit.agents"
    assert log_entry["message"] == "plugin warning"


def test_multiple_extra_fields(capture_logs):
    get_logger(Component.RESPONDER).info(
        "Complex log",
        field1="value1",
        field2=123,
        field3=True,
        field4={"nested": "object"},
    )

    log_entry = _last_entry(capture_logs)

    assert log_entry["field1"] == "value1"
    assert log_entry["field2"] == 123
    assert log_entry["field3"] is True
    assert log_entry["field4"] == {"nested": "object"}


def test_exception_logging(capture_logs):
    logger = get_logger(Component.TRANSCRIBER)

    try:
        raise ValueError("Test exception")
    except ValueError:
        logger.exception("Exception occurred")

    log_entry = _last_entry(capture_logs)

    assert log_entry["severity"] == "error"
    assert "ValueError: Test exception" in log_entry["exception"]


def test_records_point_at_caller(capture_logs):
    """funcName is the function that called the logger, not the wrapper."""
    records = []

    class _Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    collector = _Collect()
    logging.getLogger().addHandler(collector)
    try:
        get_logger(Component.TOOLS).info("from test")
    finally:
        logging.getLogger().removeHandler(collector)

    assert records[-1].funcName == "test_records_point_at_caller"


def test_setup_logging_json():
    setup_logging(level="DEBUG", use_json=True)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_setup_logging_text():
    setup_logging(level="warning", use_json=False)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.WARNING
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_setup_logging_text_without_component():
    """Plain-text output does not break on records lacking a component."""
    setup_logging(level="INFO", use_json=False, include_timestamp=False)
    formatter = logging.getLogger().handlers[0].formatter

    record = logging.LogRecord("livekit", logging.INFO, __file__, 1, "hello", None, None)
    assert formatter.format(record) == "INFO - - - hello"


def test_structured_logger_accepts_plain_component():
    logger = StructuredLogger("weather")
    assert logger.component == "weather"
    assert logger.logger.name == "voice_agent.weather"
