"""Tests for root logger configuration and the JSON line formatter."""

from __future__ import annotations

import json
import logging

import pytest

from wow_osint.config import LoggingConfig
from wow_osint.utils.logging import JsonLineFormatter, configure_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    # Session-wide pytest handlers come back; per-phase capture handlers do not.
    for handler in saved:
        if handler not in root.handlers and type(handler).__name__ != "LogCaptureHandler":
            root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(logging.NOTSET)
    logging.getLogger("httpcore").setLevel(logging.NOTSET)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("wow_osint.test", logging.WARNING, __file__, 1, "job %s", ("x",), None)
    record.__dict__.update(extra)
    return record


class TestJsonLineFormatter:
    def test_core_fields(self):
        payload = json.loads(JsonLineFormatter().format(_record()))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "wow_osint.test"
        assert payload["msg"] == "job x"

    def test_extra_fields_are_top_level(self):
        payload = json.loads(JsonLineFormatter().format(_record(guid="иван-gordunni")))
        assert payload["guid"] == "иван-gordunni"
        assert "args" not in payload


class TestConfigureLogging:
    def test_file_handler_writes_json(self, tmp_path):
        log_file = tmp_path / "logs" / "osint.log"
        configure_logging(LoggingConfig(level="DEBUG", log_file=str(log_file), json_format=True))

        logging.getLogger("wow_osint.test").info("hello", extra={"job_id": "ITEM:1"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
        assert line["msg"] == "hello"
        assert line["job_id"] == "ITEM:1"

    def test_level_and_quiet_http_loggers(self):
        configure_logging(LoggingConfig(level="DEBUG", log_file=""))
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
