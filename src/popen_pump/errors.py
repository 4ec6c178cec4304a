"""Exception hierarchy for popen-pump.

Timeout and size-limit conditions are reported through target callbacks,
never raised. Everything raised by the library derives from PopenError.
"""

from __future__ import annotations

from collections.abc import Iterable

__all__ = [
    "PopenError",
    "SpawnError",
    "ProcessStateError",
    "KillEscalationExhausted",
]


class PopenError(Exception):
    """Base class for popen-pump errors."""

    pass


class SpawnError(PopenError):
    """The child could not become the requested program.

    Raised in the parent for POSIX exec failures reported over the status
    channel, and for process creation failures on Windows.

    Attributes:
        message: Human readable cause (names the executable for OS errors)
        kind: Exception class name observed where the failure happened
        errno: OS error number, if any
        child_traceback: Formatted traceback lines captured in the child
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = "SpawnError",
        errno: int | None = None,
        child_traceback: Iterable[str] | None = None,
    ) -> None:
        self.message = message
        self.kind = kind
        self.errno = errno
        self.child_traceback = list(child_traceback or ())
        super().__init__(message)


class ProcessStateError(PopenError):
    """An operation was called in the wrong lifecycle state."""

    pass


class KillEscalationExhausted(PopenError):
    """Every interrupt tier was sent and the child is still alive."""

    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"Unable to kill child process pid={pid}")
