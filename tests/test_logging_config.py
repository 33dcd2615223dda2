"""Tests for logging setup."""

import json
import logging

import pytest

from logging_config import JSONFormatter, get_logger, log_performance, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_log_files_created(self, temp_dir, restore_root_logger):
        """Test that file logging writes the main and error logs."""
        setup_logging(level="DEBUG", log_to_console=False, log_dir=temp_dir)
        logger = get_logger("panel.test")

        logger.debug("debug line")
        logger.error("error line")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "debug line" in (temp_dir / "agent_panel.log").read_text()
        errors = (temp_dir / "errors.log").read_text()
        assert "error line" in errors
        assert "debug line" not in errors

    def test_console_goes_to_stderr(self, capsys, restore_root_logger):
        setup_logging(level="INFO", log_to_file=False)
        get_logger("panel.test").info("hello stderr")

        captured = capsys.readouterr()
        assert "hello stderr" in captured.err
        assert captured.out == ""


class TestJSONFormatter:
    """Tests for the structured formatter."""

    def test_extra_fields(self):
        record = logging.LogRecord("panel", logging.INFO, __file__, 1, "spawned", None, None)
        record.session_id = "session-1"
        record.extra_data = {"pid": 12}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "spawned"
        assert entry["session_id"] == "session-1"
        assert entry["extra"] == {"pid": 12}

    def test_log_performance(self, caplog):
        logger = get_logger("panel.perf")
        with caplog.at_level(logging.DEBUG, logger="panel.perf"):
            log_performance(logger, "help_probe", 0.25, command="git")

        record = caplog.records[-1]
        assert record.extra_data == {"operation": "help_probe", "duration_ms": 250.0, "command": "git"}
