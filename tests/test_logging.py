"""Tests for mailbox_attacher.logging."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import structlog

from mailbox_attacher.logging import component_logger, setup_logging, teardown_logging


class TestSetupLogging:
    def teardown_method(self):
        teardown_logging()

    def test_json_mode(self):
        setup_logging(json=True, level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_console_mode(self):
        setup_logging(json=False, level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_level_case_insensitive(self):
        setup_logging(level="warning")
        assert logging.getLogger().level == logging.WARNING

    def test_replaces_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.StreamHandler())
        root.addHandler(logging.StreamHandler())
        setup_logging()
        assert len(root.handlers) == 1

    def test_file_handler_writes_json(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "attacher.log"
        setup_logging(json=False, level="INFO", log_file=log_file)
        assert len(logging.getLogger().handlers) == 2

        structlog.get_logger("test_logger").info("file_event", key="value")
        teardown_logging()

        line = log_file.read_text().strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "file_event"
        assert record["key"] == "value"
        assert record["level"] == "info"

    def test_teardown_removes_handlers(self):
        setup_logging()
        teardown_logging()
        assert logging.getLogger().handlers == []


class TestComponentLogger:
    def test_binds_component(self):
        setup_logging(json=True, level="DEBUG")
        try:
            log = component_logger("poller")
            # Should not raise; the bound logger must be usable
            log.info("test_event")
            assert log._context["component"] == "poller"
        finally:
            teardown_logging()
