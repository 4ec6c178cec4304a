"""Exit status of a finished child process."""

from __future__ import annotations

import os
import signal
from dataclasses import dataclass

__all__ = ["ProcessStatus", "signal_name"]


def signal_name(signum: int) -> str:
    """Return the symbolic name for a signal number (``SIG<n>`` if unknown)."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


@dataclass(frozen=True)
class ProcessStatus:
    """Exit status of a child process.

    Exactly one of ``exit_status`` / ``term_signal`` is meaningful for a
    status decoded from the OS. A synthesized status for a process killed by
    this library carries both (exit code 1 plus the last signal sent).

    Attributes:
        pid: Process id, or None when the process never started
        exit_status: Exit code, or None when terminated by a signal
        term_signal: Name of the terminating signal (e.g. ``"SIGKILL"``)
    """

    pid: int | None
    exit_status: int | None = None
    term_signal: str | None = None

    @property
    def exited(self) -> bool:
        return True

    @property
    def success(self) -> bool | None:
        """True for exit code 0, False for any other code, None when signalled."""
        if self.exit_status is None:
            return None
        return self.exit_status == 0

    def reason(self) -> str:
        if self.exit_status is not None:
            return f"with exit status {self.exit_status}"
        return f"due to {self.term_signal}"

    @classmethod
    def from_wait_status(cls, pid: int, wait_status: int) -> "ProcessStatus":
        """Decode a raw POSIX wait status as returned by ``os.waitpid``."""
        if os.WIFSIGNALED(wait_status):
            return cls(pid, None, signal_name(os.WTERMSIG(wait_status)))
        if os.WIFEXITED(wait_status):
            return cls(pid, os.WEXITSTATUS(wait_status))
        # stopped/continued statuses are never requested
        return cls.synthesized(pid, interrupted=False)

    @classmethod
    def synthesized(
        cls,
        pid: int | None,
        interrupted: bool,
        term_signal: str | None = None,
    ) -> "ProcessStatus":
        """Build a status when the OS reported no usable exit code.

        A process interrupted by this library reports code 1 and the signal
        it was sent, anything else falls back to a clean exit.
        """
        if interrupted:
            return cls(pid, 1, term_signal)
        return cls(pid, 0)
