# tests/unit/logging/test_logger.py — v2
"""Tests for logging/logger.py — logger factory and formatters."""

from __future__ import annotations

import json
import logging
import sys

from stagegate.logging.context import clear_context, set_execution_context
from stagegate.logging.logger import (
    JsonFormatter,
    TextFormatter,
    configure_from_settings,
    get_logger,
    setup_logging,
)


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stagegate.test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert parsed["logger"] == "stagegate.test"
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_execution_context("exec-1", "fetch_pmids", project_id="proj-1")
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["context"] == {
            "project_id": "proj-1", "execution_id": "exec-1", "stage": "fetch_pmids",
        }

    def test_format_with_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"processed": 40})))
        assert parsed["data"] == {"processed": 40}

    def test_format_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        parsed = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in parsed["exception"]


class TestTextFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_format_with_context(self):
        set_execution_context("0123456789abcdef", "screen_abstracts", project_id="proj-1")
        output = TextFormatter().format(_record())
        assert "<proj-1>" in output
        assert "[screen_abstracts]" in output
        assert "(01234567)" in output


class TestGetLogger:
    def test_prefixes(self):
        assert get_logger("test_module").name == "stagegate.test_module"

    def test_keeps_qualified_names(self):
        assert get_logger("stagegate.routing.router").name == "stagegate.routing.router"


class TestSetupLogging:
    def test_setup_json(self):
        setup_logging(level="DEBUG", log_format="json")
        root = logging.getLogger("stagegate")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text(self):
        setup_logging(level="INFO", log_format="text")
        root = logging.getLogger("stagegate")
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_reinit_does_not_stack(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("stagegate").handlers) == 1

    def test_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "stagegate.log"
        setup_logging(log_file=str(log_file))
        root = logging.getLogger("stagegate")
        assert len(root.handlers) == 2
        root.info("written")
        for handler in root.handlers:
            handler.flush()
        assert "written" in log_file.read_text()
        for handler in root.handlers[1:]:
            root.removeHandler(handler)
            handler.close()

    def test_configure_from_settings(self, settings):
        settings = settings.model_copy(update={"log_level": "WARNING", "log_format": "text"})
        root = configure_from_settings(settings)
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, TextFormatter)
