"""Exec failure reporting over the close-on-exec status pipe.

The forked child holds the write end of a pipe marked close-on-exec. A
successful exec closes it silently, so the parent reads plain EOF. If
anything between fork and exec fails, the child writes one frame and exits
with status 127:

    +----------------+---------------------------------------+
    | length (4B BE) | FailureRecord as UTF-8 JSON (length B) |
    +----------------+---------------------------------------+
"""

from __future__ import annotations

import os
import struct
import traceback

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import SpawnError

__all__ = [
    "FailureRecord",
    "failure_from_exception",
    "encode_failure",
    "decode_failure",
    "raise_failure",
    "write_failure",
]

_HEADER = struct.Struct(">I")

UNKNOWN_FAILURE = "UnknownFailure"


class FailureRecord(BaseModel):
    """Serialized description of an exception raised in the forked child."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: str
    message: str
    errno: int | None = None
    filename: str | None = None
    traceback: list[str] = Field(default_factory=list)


def failure_from_exception(exc: BaseException, filename: str | None = None) -> FailureRecord:
    """Describe ``exc``; OS errors name the executable they concern."""
    errno = None
    if isinstance(exc, OSError):
        errno = exc.errno
        filename = exc.filename if exc.filename is not None else filename
        reason = exc.strerror or str(exc)
        message = f"{reason}: {filename!r}" if filename else reason
    elif isinstance(exc, SpawnError):
        message = exc.message
    else:
        message = str(exc) or type(exc).__name__

    return FailureRecord(
        kind=type(exc).__name__,
        message=message,
        errno=errno,
        filename=None if filename is None else os.fsdecode(filename),
        traceback=traceback.format_exception(type(exc), exc, exc.__traceback__),
    )


def encode_failure(record: FailureRecord) -> bytes:
    body = record.model_dump_json().encode("utf-8")
    return _HEADER.pack(len(body)) + body


def decode_failure(payload: bytes) -> FailureRecord:
    """Parse a frame read from the status pipe.

    Truncated or malformed payloads never raise; they produce a record of
    kind ``UnknownFailure`` quoting what was seen.
    """
    if len(payload) >= _HEADER.size:
        (length,) = _HEADER.unpack_from(payload)
        body = payload[_HEADER.size:_HEADER.size + length]
        if len(body) == length:
            try:
                return FailureRecord.model_validate_json(body)
            except ValidationError:
                pass

    return FailureRecord(
        kind=UNKNOWN_FAILURE,
        message=f"Unknown failure: saw {payload[:200]!r} on status channel",
    )


def raise_failure(record: FailureRecord) -> None:
    """Raise the SpawnError described by ``record``."""
    raise SpawnError(
        record.message,
        kind=record.kind,
        errno=record.errno,
        child_traceback=record.traceback,
    )


def write_failure(fd: int, exc: BaseException, filename: str | None = None) -> None:
    """Write one failure frame to ``fd``.

    Runs in the forked child just before ``os._exit``, so a failed write is
    dropped: the parent still sees exit status 127.
    """
    try:
        frame = encode_failure(failure_from_exception(exc, filename))
        while frame:
            written = os.write(fd, frame)
            frame = frame[written:]
    except (OSError, ValueError):
        pass
