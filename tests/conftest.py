"""Pytest configuration and fixtures for agent panel tests."""

import json
import shutil
import tempfile
import time
from collections.abc import Generator
from pathlib import Path

import pytest
from PySide6.QtCore import QCoreApplication, QObject, Signal
from PySide6.QtTest import QTest

from config import default_config


@pytest.fixture(scope="session")
def qapp():
    """One Qt application for the whole test run (timers and queued signals need it)."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def sample_config(temp_dir: Path) -> dict:
    """Provide a sample configuration for testing."""
    cfg = default_config()
    cfg.update({
        "command": "sh",
        "args": ["-c", "echo hi"],
        "shell": "/bin/sh",
        "env": {"AGENT_PANEL_TEST": "1"},
        "notification_delay_ms": 50,
        "workspace_folders": [str(temp_dir)],
    })
    return cfg


@pytest.fixture
def config_file(temp_dir: Path, sample_config: dict) -> Path:
    """Create a temporary config file for testing."""
    config_path = temp_dir / "config.json"
    config_path.write_text(json.dumps(sample_config, indent=2))
    return config_path


class FakePtyManager(QObject):
    """Records calls instead of forking processes."""

    data_received = Signal(str, object)
    exited = Signal(str, int)
    error = Signal(str, str)

    def __init__(self):
        super().__init__()
        self.spawned: list[tuple] = []
        self.killed: list[str] = []
        self.writes: list[tuple] = []
        self.resizes: list[tuple] = []
        self.live: set[str] = set()

    def spawn(self, session_id, config, cols, rows, cwd):
        self.spawned.append((session_id, config, cols, rows, cwd))
        self.live.add(session_id)
        return True

    def write(self, session_id, data):
        self.writes.append((session_id, data))

    def resize(self, session_id, cols, rows):
        self.resizes.append((session_id, cols, rows))

    def kill(self, session_id):
        self.killed.append(session_id)
        self.live.discard(session_id)

    def kill_all(self):
        for session_id in list(self.live):
            self.kill(session_id)


@pytest.fixture
def fake_pty(qapp) -> FakePtyManager:
    return FakePtyManager()


def _wait_until(predicate, timeout: float = 3.0, step_ms: int = 10) -> bool:
    """Spin the Qt event loop until ``predicate()`` holds or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        QTest.qWait(step_ms)
    return predicate()


@pytest.fixture
def wait_until(qapp):
    return _wait_until
