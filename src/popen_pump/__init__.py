"""popen-pump - spawn one child process and pump its streams.

Runs a command with its stdout/stderr delivered to callbacks, optional
stdin input, timeout and output-size watching, and an escalating,
non-blocking interrupt, on POSIX and Windows.

Environment variables:
    POPEN_PUMP_POLL_INTERVAL: readiness wait per tick (default 0.1s)
    POPEN_PUMP_INTERRUPT_GRACE: delay between interrupt tiers (default 3s)
    POPEN_PUMP_LOG_DEBUG: log to a temp file at DEBUG level

Usage:
    status = popen3_sync(["make", "test"], target=OutputCollector())
"""

__version__ = "0.1.0"

from .collector import OutputCollector
from .errors import KillEscalationExhausted, PopenError, ProcessStateError, SpawnError
from .options import SpawnOptions
from .output_buffer import SafeOutputBuffer
from .popen import create_process, popen3_async, popen3_sync
from .status import ProcessStatus
from .target import CallbackTarget, Target
from .utilities import run, run_collecting_output, run_with_stdin_collecting_output

__all__ = [
    "__version__",
    "CallbackTarget",
    "KillEscalationExhausted",
    "OutputCollector",
    "PopenError",
    "ProcessStateError",
    "ProcessStatus",
    "SafeOutputBuffer",
    "SpawnError",
    "SpawnOptions",
    "Target",
    "create_process",
    "popen3_async",
    "popen3_sync",
    "run",
    "run_collecting_output",
    "run_with_stdin_collecting_output",
]
