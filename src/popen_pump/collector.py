"""Target that accumulates everything a child reports."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ProcessStateError
from .status import ProcessStatus
from .target import Target

__all__ = ["OutputCollector"]


@dataclass
class OutputCollector(Target):
    """Collects output bytes, pid, exit status and limit notices.

    Attributes:
        pid: Child pid once reported
        stdout: All stdout bytes, in order
        stderr: All stderr bytes, in order
        status: Exit status once reported
        did_timeout: on_timeout fired
        did_size_limit: on_size_limit fired
    """

    pid: int | None = None
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    status: ProcessStatus | None = None
    did_timeout: bool = False
    did_size_limit: bool = False

    def on_pid(self, pid: int) -> None:
        if self.pid is not None:
            raise ProcessStateError(f"Received on_pid twice: {self.pid} then {pid}")
        self.pid = pid

    def on_stdout(self, data: bytes) -> None:
        self.stdout += data

    def on_stderr(self, data: bytes) -> None:
        self.stderr += data

    def on_timeout(self) -> None:
        self.did_timeout = True

    def on_size_limit(self) -> None:
        self.did_size_limit = True

    def on_exit(self, status: ProcessStatus) -> None:
        self.status = status

    def stdout_text(self, encoding: str = "utf-8") -> str:
        return self.stdout.decode(encoding, errors="replace")

    def stderr_text(self, encoding: str = "utf-8") -> str:
        return self.stderr.decode(encoding, errors="replace")
