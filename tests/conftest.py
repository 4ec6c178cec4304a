"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from popen_pump.config import Config  # noqa: E402

FAKE_CLI = Path(__file__).parent / "fixtures" / "fake_cli.py"

IS_WINDOWS = sys.platform == "win32"


def fake_cli_argv(*args: str | int | float) -> list[str]:
    """argv running the fake child program with ``args``."""
    return [sys.executable, str(FAKE_CLI), *(str(arg) for arg in args)]


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def fast_config() -> Config:
    """Config with short interrupt grace for escalation tests."""
    return Config(poll_interval=0.05, max_watch_interval=0.2, interrupt_grace_seconds=0.5)
