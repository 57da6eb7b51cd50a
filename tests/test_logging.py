"""Tests for KickTalk structured logging."""

import json
import logging
import sys

from kicktalk.logging import KickTalkFormatter, configure_logging, get_logger


def _record(name="kicktalk.telemetry", level=logging.INFO, msg="Telemetry initialized", exc_info=None):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestKickTalkFormatter:
    def test_human_readable_format(self):
        output = KickTalkFormatter(json_output=False).format(_record())
        assert "kicktalk.telemetry" in output
        assert "Telemetry initialized" in output
        assert "INFO" in output

    def test_json_format(self):
        record = _record(name="kicktalk.telemetry.bootstrap", level=logging.WARNING,
                         msg="Failed to start telemetry pipeline")
        data = json.loads(KickTalkFormatter(json_output=True).format(record))
        assert data["logger"] == "kicktalk.telemetry.bootstrap"
        assert data["message"] == "Failed to start telemetry pipeline"
        assert data["level"] == "WARNING"
        assert "timestamp" in data

    def test_structured_fields_in_human_format(self):
        record = _record()
        record.mode = "DEGRADED"  # type: ignore[attr-defined]
        record.component = "tracing"  # type: ignore[attr-defined]
        output = KickTalkFormatter().format(record)
        assert "mode=DEGRADED" in output
        assert "component=tracing" in output

    def test_structured_fields_in_json(self):
        record = _record(msg="Failed to record metric")
        record.instrument = "messages.sent"  # type: ignore[attr-defined]
        data = json.loads(KickTalkFormatter(json_output=True).format(record))
        assert data["instrument"] == "messages.sent"

    def test_unknown_extra_fields_ignored(self):
        record = _record()
        record.password = "hunter2"  # type: ignore[attr-defined]
        assert "hunter2" not in KickTalkFormatter().format(record)

    def test_exception_included(self):
        try:
            raise RuntimeError("exporter gone")
        except RuntimeError:
            record = _record(level=logging.ERROR, exc_info=sys.exc_info())
        data = json.loads(KickTalkFormatter(json_output=True).format(record))
        assert "RuntimeError: exporter gone" in data["exception"]


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("kicktalk.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "kicktalk.test"

    def test_default_name(self):
        assert get_logger().name == "kicktalk"


class TestConfigureLogging:
    def teardown_method(self):
        configure_logging()

    def test_configure_debug(self):
        configure_logging(level="DEBUG")
        assert get_logger("kicktalk").level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert get_logger("kicktalk").level == logging.INFO

    def test_configure_json(self):
        configure_logging(json_output=True)
        logger = get_logger("kicktalk")
        assert len(logger.handlers) == 1
        formatter = logger.handlers[0].formatter
        assert isinstance(formatter, KickTalkFormatter)
        assert formatter._json_output is True
        assert logger.propagate is False
