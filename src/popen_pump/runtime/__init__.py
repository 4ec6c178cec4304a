"""Runtime module for child process spawning and stream pumping.

This module provides the platform child process variants, the channel
abstraction and the sync/async pumps that drive a child to completion.
"""

from __future__ import annotations

import sys

from .async_pump import AsyncStreamPump
from .channel import Channel
from .environment import (
    environment_to_string_block,
    merge_environment,
    merge_path_value,
    merge_posix_environment,
    string_block_to_environment,
)
from .process_base import ChildProcess, InterruptState
from .pump import StreamPump
from .watchdog import Watchdog

__all__ = [
    "AsyncStreamPump",
    "Channel",
    "ChildProcess",
    "InterruptState",
    "StreamPump",
    "Watchdog",
    "environment_to_string_block",
    "merge_environment",
    "merge_path_value",
    "merge_posix_environment",
    "platform_process_class",
    "string_block_to_environment",
]

IS_WINDOWS = sys.platform == "win32"


def platform_process_class() -> type[ChildProcess]:
    """Return the ChildProcess implementation for this platform."""
    if IS_WINDOWS:
        from .windows_process import WindowsChildProcess

        return WindowsChildProcess
    from .posix_process import PosixChildProcess

    return PosixChildProcess
