"""Bounded line buffer for displaying the tail of a child's output."""

from __future__ import annotations

__all__ = ["SafeOutputBuffer"]

ELLIPSIS = "..."
DEFAULT_MAX_LINE_COUNT = 64
DEFAULT_MAX_LINE_LENGTH = 256


class SafeOutputBuffer:
    """Keeps the most recent lines of output within fixed bounds.

    Each ``safe_buffer_data`` call adds one line. Once ``max_line_count``
    lines are held, the oldest is dropped and the first remaining line is
    replaced by ``"..."``. Lines longer than ``max_line_length`` are cut and
    end in ``"..."``.

    Example:
        buffer = SafeOutputBuffer()
        for line in output.splitlines():
            buffer.safe_buffer_data(line)
        print(buffer.display_text)
    """

    def __init__(
        self,
        buffer: list[str] | None = None,
        max_line_count: int = DEFAULT_MAX_LINE_COUNT,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
    ) -> None:
        if max_line_count <= 1:
            raise ValueError(f"max_line_count must be greater than 1, got {max_line_count}")
        if max_line_length <= len(ELLIPSIS):
            raise ValueError(
                f"max_line_length must be greater than {len(ELLIPSIS)}, got {max_line_length}"
            )
        self.buffer: list[str] = buffer if buffer is not None else []
        self.max_line_count = max_line_count
        self.max_line_length = max_line_length

    @property
    def display_text(self) -> str:
        return "\n".join(self.buffer)

    def safe_buffer_data(self, data: bytes | str) -> None:
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        line = data.rstrip("\r\n")
        if len(self.buffer) >= self.max_line_count:
            del self.buffer[0]
            self.buffer[0] = ELLIPSIS
        if len(line) > self.max_line_length:
            line = line[: self.max_line_length - len(ELLIPSIS)] + ELLIPSIS
        self.buffer.append(line)
