"""Unit tests for logging configuration helpers."""

import json
import logging

import pytest

from virtuoso.logging_config import (
    STANZA_PREVIEW_CHARS,
    ContextFilter,
    JSONFormatter,
    LogCapture,
    get_logger,
    log_stanza,
)


class TestLogging:
    """Test structured logging helpers."""

    @pytest.mark.unit
    def test_json_formatter_includes_context_and_extras(self):
        record = logging.LogRecord("virtuoso.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        ContextFilter("run-1").filter(record)
        record.alias = "alice"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello world"
        assert data["run_id"] == "run-1"
        assert data["level"] == "INFO"
        assert data["alias"] == "alice"
        assert "args" not in data

    @pytest.mark.unit
    def test_log_stanza(self):
        logger = get_logger("virtuoso.test_stanza")

        with LogCapture("virtuoso.test_stanza") as capture:
            log_stanza(logger, "alice", "out", "<presence/>")
            log_stanza(logger, "bob", "in", "<message/>")

        messages = [log["message"] for log in capture.get_logs("DEBUG")]
        assert messages == ["STANZA alice -> <presence/>", "STANZA bob <- <message/>"]

    @pytest.mark.unit
    def test_log_stanza_truncates_console_preview(self):
        logger = get_logger("virtuoso.test_stanza")
        stanza = "<message><body>" + "x" * (STANZA_PREVIEW_CHARS * 2) + "</body></message>"

        with LogCapture("virtuoso.test_stanza") as capture:
            log_stanza(logger, "alice", "in", stanza)

        message = capture.get_logs("DEBUG")[0]["message"]
        assert message.endswith(f"({len(stanza) - STANZA_PREVIEW_CHARS} more chars)")
        assert len(message) < len(stanza)

    @pytest.mark.unit
    def test_log_stanza_rejects_unknown_direction(self):
        with pytest.raises(ValueError, match="direction"):
            log_stanza(get_logger("virtuoso.test_stanza"), "alice", "sideways", "<presence/>")
