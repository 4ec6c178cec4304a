"""One end of a pipe connected to a child process."""

from __future__ import annotations

import logging
import os
from typing import IO, Any

__all__ = ["Channel"]

logger = logging.getLogger(__name__)


class Channel:
    """A pipe end owned by the parent.

    Reads and writes go straight to the descriptor. Closing is idempotent;
    when the descriptor belongs to a file object (Windows ``Popen`` pipes)
    the file object is closed instead.

    Args:
        name: "stdin", "stdout", "stderr" or "status"
        fd: OS descriptor of the parent's end
        file: Optional file object owning ``fd``
    """

    def __init__(self, name: str, fd: int, *, file: IO[Any] | None = None) -> None:
        self.name = name
        self._fd = fd
        self._file = file
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"fd={self._fd}"
        return f"Channel({self.name}, {state})"

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        if self._closed:
            raise ValueError(f"I/O operation on closed channel {self.name}")
        return self._fd

    def set_blocking(self, blocking: bool) -> None:
        os.set_blocking(self._fd, blocking)

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes.

        Returns b"" at end of file. Descriptor errors (EBADF, EPIPE and
        friends) are reported as end of file as well.
        """
        if self._closed:
            return b""
        try:
            return os.read(self._fd, size)
        except OSError as e:
            logger.debug(f"Read on {self.name} failed, treating as EOF: {e}")
            return b""

    def write(self, data: bytes) -> int:
        """Write as much of ``data`` as the pipe accepts right now.

        Returns the number of bytes written, 0 when the pipe is full.

        Raises:
            BrokenPipeError: The child closed its end
        """
        try:
            return os.write(self._fd, data)
        except BlockingIOError:
            return 0

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._file is not None:
                self._file.close()
            else:
                os.close(self._fd)
        except OSError as e:
            logger.debug(f"Closing {self.name} failed: {e}")
