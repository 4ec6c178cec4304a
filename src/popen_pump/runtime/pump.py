"""Synchronous stream pump.

Drives a spawned child to completion on the calling thread:

1. ``on_pid``
2. loop: wait for readiness (poll interval), feed stdin, deliver stdout and
   stderr chunks, collect the status pipe, run the watchdog
3. after death: drain what is left, reap, ``on_timeout`` / ``on_size_limit``,
   ``on_exit`` exactly once
4. close every channel (unless the target abandoned the watch)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from ..config import Config, get_config
from ..errors import SpawnError
from ..status import ProcessStatus
from ..target import Target
from . import exec_failure
from .channel import Channel
from .process_base import ChildProcess, InterruptState
from .watchdog import Watchdog

__all__ = ["PumpBase", "StreamPump"]

logger = logging.getLogger(__name__)


class PumpBase:
    """Channel plumbing shared by the sync and async pumps."""

    def __init__(self, target: Target, config: Config | None = None) -> None:
        self._target = target
        self._config = config if config is not None else get_config()
        self._status_payload = bytearray()
        self._pending_input = b""

    def _exec_failure(self) -> SpawnError | None:
        """Decode the status pipe payload, if the child wrote one."""
        if not self._status_payload:
            return None
        record = exec_failure.decode_failure(bytes(self._status_payload))
        return SpawnError(
            record.message,
            kind=record.kind,
            errno=record.errno,
            child_traceback=record.traceback,
        )

    # =========================================================================
    # Input
    # =========================================================================

    def _start_input(self, process: ChildProcess) -> None:
        """Queue ``options.input`` for stdin.

        Where stdin writes block (``process.blocking_stdin``), the input is
        written by a daemon thread instead, so a child that fills its stdout
        before reading stdin cannot stall the pump.
        """
        stdin = process.stdin
        if stdin is None:
            return
        data = process.options.input_bytes or b""
        if not data:
            if not process.options.keep_stdin_open:
                stdin.close()
            return
        if not process.blocking_stdin:
            self._pending_input = data
            return

        thread = threading.Thread(
            target=self._write_input_blocking,
            args=(process, stdin, data),
            name=f"popen-pump-stdin-{process.pid}",
            daemon=True,
        )
        thread.start()

    def _write_input_blocking(self, process: ChildProcess, channel: Channel, data: bytes) -> None:
        """Thread body: write all of ``data``, then close unless kept open."""
        chunk_size = self._config.read_chunk_size
        try:
            while data and not channel.closed:
                written = channel.write(data[:chunk_size])
                data = data[written:]
        except (OSError, ValueError) as e:
            logger.debug(f"stdin of pid={process.pid} closed early: {e}")
            channel.close()
            return
        if not process.options.keep_stdin_open:
            channel.close()

    def _writers(self, process: ChildProcess) -> list[Channel]:
        stdin = process.stdin
        if self._pending_input and stdin is not None and not stdin.closed:
            return [stdin]
        return []

    def _feed_input(self, process: ChildProcess, channel: Channel) -> None:
        chunk = self._pending_input[: self._config.read_chunk_size]
        try:
            written = channel.write(chunk)
        except OSError as e:
            logger.debug(f"stdin of pid={process.pid} closed early: {e}")
            self._pending_input = b""
            channel.close()
            return
        self._pending_input = self._pending_input[written:]
        if not self._pending_input and not process.options.keep_stdin_open:
            channel.close()

    # =========================================================================
    # Output
    # =========================================================================

    def _handler(self, process: ChildProcess, channel: Channel) -> Callable[[bytes], None]:
        if channel is process.stdout:
            return self._target.on_stdout
        if channel is process.stderr:
            return self._target.on_stderr
        return self._status_payload.extend

    def _read_once(self, process: ChildProcess, channel: Channel) -> bool:
        """Read one chunk; returns False (and closes the channel) at EOF."""
        data = channel.read(self._config.read_chunk_size)
        if not data:
            logger.debug(f"EOF on {channel.name} of pid={process.pid}")
            channel.close()
            return False
        self._handler(process, channel)(data)
        return True

    def _drain(self, process: ChildProcess, readers: list[Channel]) -> None:
        """Read whatever is buffered after death, then close.

        POSIX never waits here, so a background grandchild holding a pipe
        open cannot keep the pump alive. Windows waits up to one poll
        interval per round for the dead child's pipes to report EOF.
        """
        wait = self._config.poll_interval if process.drain_all_upon_death else 0
        while readers:
            readable = process.wait_readable(readers, wait)
            if not readable:
                break
            for channel in readable:
                if not self._read_once(process, channel):
                    readers.remove(channel)
        for channel in readers:
            channel.close()
        readers.clear()


class StreamPump(PumpBase):
    """Blocking I/O pump for one child process.

    Example:
        process = create_process(options)
        process.spawn()
        status = StreamPump(target).run(process)
    """

    def run(self, process: ChildProcess) -> ProcessStatus | None:
        """Pump ``process`` until it exits.

        Returns:
            The exit status, or None when the target abandoned the watch. An
            abandoned process keeps its channels open; the caller must call
            ``process.safe_close_io()`` once done with it.

        Raises:
            SpawnError: The child failed before exec (after ``on_exit``)
            KillEscalationExhausted: The child survived every interrupt tier
        """
        target = self._target
        watchdog = Watchdog(process, target, self._config)
        failure: SpawnError | None = None

        try:
            target.on_pid(process.pid)
            self._start_input(process)

            if not watchdog.tick():
                return None

            readers = [
                channel
                for channel in (process.stdout, process.stderr, process.status_channel)
                if channel is not None
            ]
            next_tick = time.monotonic() + self._config.poll_interval
            while True:
                writers = self._writers(process)
                readable, writable = process.select(
                    readers, writers, self._config.poll_interval
                )
                for channel in writable:
                    self._feed_input(process, channel)

                dead = not process.alive()
                for channel in readable:
                    if not self._read_once(process, channel):
                        readers.remove(channel)

                if dead:
                    self._drain(process, readers)
                    break
                # reads wake the loop early; the watchdog keeps the poll cadence
                now = time.monotonic()
                if now < next_tick:
                    continue
                next_tick = now + self._config.poll_interval
                if not watchdog.tick():
                    return None

            status = process.wait_for_exit_status()
            failure = self._exec_failure()
            if failure is not None:
                logger.debug(f"Child pid={process.pid} failed before exec: {failure}")
            if watchdog.did_timeout:
                target.on_timeout()
            if watchdog.did_size_limit:
                target.on_size_limit()
            target.on_exit(status)
        except BaseException:
            if process.interrupt_state is not InterruptState.ABANDONED:
                process.force_kill()
            raise
        finally:
            if watchdog.abandoned and not process.interrupted:
                logger.debug(f"Leaving channels of pid={process.pid} open for the caller")
            else:
                process.safe_close_io()

        if failure is not None:
            raise failure
        return status
