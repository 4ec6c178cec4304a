"""Exec failure frame tests.

Test coverage:
- describing exceptions (OS errors name the executable)
- frame decoding, including malformed payloads
- raising SpawnError from a record
- writing a frame through a real pipe
"""

from __future__ import annotations

import errno
import os

import pytest

from popen_pump.errors import SpawnError
from popen_pump.runtime.exec_failure import (
    FailureRecord,
    decode_failure,
    encode_failure,
    failure_from_exception,
    raise_failure,
    write_failure,
)


def _raised(exc: BaseException) -> BaseException:
    """Return ``exc`` after raising it, so it carries a traceback."""
    try:
        raise exc
    except BaseException as caught:
        return caught


class TestFailureFromException:
    """Test describing exceptions raised in the child."""

    def test_missing_executable(self):
        exc = _raised(FileNotFoundError(errno.ENOENT, "No such file or directory"))
        record = failure_from_exception(exc, filename="nosuchexecutable")

        assert record.kind == "FileNotFoundError"
        assert record.errno == errno.ENOENT
        assert record.filename == "nosuchexecutable"
        assert "nosuchexecutable" in record.message
        assert "No such file or directory" in record.message
        assert any("FileNotFoundError" in line for line in record.traceback)

    def test_spawn_error_keeps_message(self):
        record = failure_from_exception(_raised(SpawnError("Unknown user: 'nosuchuser'")))
        assert record.kind == "SpawnError"
        assert record.message == "Unknown user: 'nosuchuser'"

    def test_plain_exception(self):
        record = failure_from_exception(_raised(RuntimeError()))
        assert record.kind == "RuntimeError"
        assert record.message == "RuntimeError"


class TestDecodeFailure:
    """Test parsing frames read from the status pipe."""

    def test_decodes_encoded_frame(self):
        record = FailureRecord(kind="PermissionError", message="denied", errno=13)
        assert decode_failure(encode_failure(record)) == record

    def test_length_prefix_is_big_endian(self):
        frame = encode_failure(FailureRecord(kind="X", message="y"))
        assert int.from_bytes(frame[:4], "big") == len(frame) - 4

    @pytest.mark.parametrize(
        "payload",
        [b"\x00", b"\x00\x00\x00\x10{}", b"\x00\x00\x00\x02{}", b"garbage!garbage!"],
    )
    def test_malformed_payload_is_unknown_failure(self, payload: bytes):
        record = decode_failure(payload)
        assert record.kind == "UnknownFailure"
        assert "status channel" in record.message


class TestRaiseFailure:
    def test_raises_spawn_error_with_details(self):
        record = FailureRecord(
            kind="FileNotFoundError",
            message="No such file or directory: 'nosuchexecutable'",
            errno=errno.ENOENT,
            traceback=["line 1\n", "line 2\n"],
        )
        with pytest.raises(SpawnError) as exc_info:
            raise_failure(record)

        error = exc_info.value
        assert "nosuchexecutable" in str(error)
        assert error.kind == "FileNotFoundError"
        assert error.errno == errno.ENOENT
        assert error.child_traceback == ["line 1\n", "line 2\n"]


class TestWriteFailure:
    def test_frame_through_pipe(self):
        read_fd, write_fd = os.pipe()
        try:
            write_failure(write_fd, _raised(PermissionError(errno.EACCES, "Permission denied")), "/bin/x")
            os.close(write_fd)
            write_fd = -1
            payload = b""
            while chunk := os.read(read_fd, 4096):
                payload += chunk
        finally:
            os.close(read_fd)
            if write_fd != -1:
                os.close(write_fd)

        record = decode_failure(payload)
        assert record.kind == "PermissionError"
        assert record.message == "Permission denied: '/bin/x'"

    def test_write_to_closed_fd_is_dropped(self):
        read_fd, write_fd = os.pipe()
        os.close(read_fd)
        os.close(write_fd)
        write_failure(write_fd, RuntimeError("lost"))
