"""popen-pump environment variable configuration.

Environment variables:
    POPEN_PUMP_POLL_INTERVAL: Seconds the sync pump waits for readiness per tick
        - default 0.1, clamped to 0.01-1.0

    POPEN_PUMP_MAX_WATCH_INTERVAL: Upper bound of the async watch interval
        - the interval starts at the poll interval and doubles up to this
        - default 1.0, clamped to 0.1-10.0

    POPEN_PUMP_INTERRUPT_GRACE: Seconds between interrupt escalation tiers
        - default 3.0, clamped to 0.1-60.0

    POPEN_PUMP_READ_CHUNK_SIZE: Bytes read from a channel per readiness event
        - default 4096, clamped to 512-1048576

    POPEN_PUMP_LOG_DEBUG: Debug logging
        - true/1/yes = on (logs go to a file under the temp directory)
        - false/0/no = off (default, logs go to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_MAX_WATCH_INTERVAL = 1.0
DEFAULT_INTERRUPT_GRACE = 3.0
DEFAULT_READ_CHUNK_SIZE = 4096


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float environment variable, clamped to [low, high]."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


@dataclass
class Config:
    """popen-pump configuration.

    Attributes:
        poll_interval: Readiness wait per sync pump tick (seconds)
        max_watch_interval: Cap for the doubling async watch interval (seconds)
        interrupt_grace_seconds: Delay between interrupt tiers (seconds)
        read_chunk_size: Bytes read per channel readiness event
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug=True)
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_watch_interval: float = DEFAULT_MAX_WATCH_INTERVAL
    interrupt_grace_seconds: float = DEFAULT_INTERRUPT_GRACE
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(poll_interval={self.poll_interval}, "
            f"max_watch_interval={self.max_watch_interval}, "
            f"interrupt_grace_seconds={self.interrupt_grace_seconds}, "
            f"read_chunk_size={self.read_chunk_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Return an absolute log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "popen-pump"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"popen_pump_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("POPEN_PUMP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        poll_interval=_parse_float(
            os.environ.get("POPEN_PUMP_POLL_INTERVAL"),
            DEFAULT_POLL_INTERVAL, 0.01, 1.0,
        ),
        max_watch_interval=_parse_float(
            os.environ.get("POPEN_PUMP_MAX_WATCH_INTERVAL"),
            DEFAULT_MAX_WATCH_INTERVAL, 0.1, 10.0,
        ),
        interrupt_grace_seconds=_parse_float(
            os.environ.get("POPEN_PUMP_INTERRUPT_GRACE"),
            DEFAULT_INTERRUPT_GRACE, 0.1, 60.0,
        ),
        read_chunk_size=_parse_int(
            os.environ.get("POPEN_PUMP_READ_CHUNK_SIZE"),
            DEFAULT_READ_CHUNK_SIZE, 512, 1024 * 1024,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config (lazily loaded)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the global configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
