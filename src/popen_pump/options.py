"""Options controlling how one child process is spawned and watched."""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Union

from .target import Target

__all__ = ["SpawnOptions", "Command"]

IS_WINDOWS = sys.platform == "win32"

Command = Union[str, Sequence[str]]


def _parse_umask(umask: int | str) -> int:
    if isinstance(umask, str):
        try:
            value = int(umask, 8)
        except ValueError:
            raise ValueError(f"umask must be an octal string, got {umask!r}") from None
    else:
        value = int(umask)
    if not 0 <= value <= 0o777:
        raise ValueError(f"umask out of range: {oct(value)}")
    return value


@dataclass
class SpawnOptions:
    """Options for spawning a child process.

    Attributes:
        command: Shell command line (str) or argv (sequence of str)
        environment: Variables to set in the child; a None value clears one
        directory: Working directory for the child
        input: Bytes fed to stdin (str is UTF-8 encoded)
        user: User name or uid to run as (POSIX only)
        group: Group name or gid to run as (POSIX only)
        umask: File creation mask, int or octal string such as "022"
        locale: Force LC_ALL=C in the child (POSIX)
        inherit_io: Keep the parent's extra descriptors open in the child
        timeout_seconds: Interrupt the child after this many seconds
        size_limit_bytes: Interrupt once watch_directory grows past this
        watch_directory: Directory measured for the size limit
        keep_stdin_open: Leave stdin open after input has been written
        target: Callback receiver (defaults to a no-op Target)
    """

    command: Command
    environment: Mapping[str, str | None] | None = None
    directory: str | None = None
    input: bytes | str | None = None
    user: str | int | None = None
    group: str | int | None = None
    umask: int | str | None = None
    locale: bool = True
    inherit_io: bool = False
    timeout_seconds: float | None = None
    size_limit_bytes: int | None = None
    watch_directory: str | None = None
    keep_stdin_open: bool = False
    target: Target | None = None

    def validate(self) -> None:
        """Reject option combinations that cannot be honored.

        Raises:
            ValueError: For an empty command or out of range limits
            NotImplementedError: For user/group switching on Windows
        """
        if isinstance(self.command, str):
            if not self.command.strip():
                raise ValueError("command must not be empty")
        elif not self.command:
            raise ValueError("command must not be empty")

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.size_limit_bytes is not None and self.size_limit_bytes <= 0:
            raise ValueError(f"size_limit_bytes must be positive, got {self.size_limit_bytes}")
        if self.watch_directory is not None and self.size_limit_bytes is None:
            raise ValueError("watch_directory requires size_limit_bytes")
        if self.umask is not None:
            _parse_umask(self.umask)
        if IS_WINDOWS and (self.user is not None or self.group is not None):
            raise NotImplementedError("user/group switching is not supported on Windows")

    @property
    def umask_value(self) -> int | None:
        if self.umask is None:
            return None
        return _parse_umask(self.umask)

    @property
    def input_bytes(self) -> bytes | None:
        if isinstance(self.input, str):
            return self.input.encode("utf-8")
        return self.input

    @property
    def resolved_target(self) -> Target:
        return self.target if self.target is not None else Target()
