"""Platform independent part of a spawned child process.

Holds the lifecycle state shared by the POSIX and Windows variants:

- the four channels (stdin, stdout, stderr and the POSIX status pipe)
- timeout and size-limit bookkeeping for the watchdog
- the escalating, non-blocking interrupt state machine

    IDLE --interrupt--> SOFT --grace--> HARD --grace--> FINAL --grace--> ABANDONED

Each ``interrupt()`` call advances at most one tier, and only once the
grace period since the previous tier has elapsed.
"""

from __future__ import annotations

import logging
import os
import stat
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum

from ..config import Config, get_config
from ..errors import KillEscalationExhausted, ProcessStateError
from ..options import SpawnOptions
from ..status import ProcessStatus
from .channel import Channel

__all__ = ["ChildProcess", "InterruptState"]

logger = logging.getLogger(__name__)


class InterruptState(Enum):
    """Escalation tier of the interrupt state machine."""

    IDLE = "idle"
    SOFT = "soft"
    HARD = "hard"
    FINAL = "final"
    ABANDONED = "abandoned"


_NEXT_TIER = {
    InterruptState.IDLE: InterruptState.SOFT,
    InterruptState.SOFT: InterruptState.HARD,
    InterruptState.HARD: InterruptState.FINAL,
}


class ChildProcess(ABC):
    """A single child process and the parent's ends of its pipes.

    Subclasses implement process creation, reaping, signalling and
    readiness waits for their platform.

    Args:
        options: Validated spawn options
        config: Runtime configuration (defaults to the global config)
    """

    #: Drain every open channel after death rather than only readable ones.
    drain_all_upon_death: bool = False

    #: stdin writes block; input is then written from a helper thread.
    blocking_stdin: bool = False

    def __init__(self, options: SpawnOptions, config: Config | None = None) -> None:
        self.options = options
        self.config = config if config is not None else get_config()

        self.pid: int | None = None
        self.stdin: Channel | None = None
        self.stdout: Channel | None = None
        self.stderr: Channel | None = None
        self.status_channel: Channel | None = None
        self.status: ProcessStatus | None = None

        self.start_time: float | None = None
        self.stop_time: float | None = None
        self.size_limit_bytes: int | None = None
        self.watch_directory: str | None = None

        self.interrupt_state = InterruptState.IDLE
        self.kill_time: float | None = None
        self.last_signal: str | None = None
        self._interrupted = False
        self._spawned = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pid={self.pid}, status={self.status})"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def spawn(self) -> None:
        """Start the child described by ``options.command``.

        Raises:
            ProcessStateError: Called twice
            SpawnError: Process creation failed synchronously
            ValueError: Invalid options
        """
        if self._spawned:
            raise ProcessStateError(f"Process already spawned pid={self.pid}")
        self.options.validate()
        self._spawned = True

        self.interrupt_state = InterruptState.IDLE
        self.kill_time = None
        self._interrupted = False

        self.start_time = time.monotonic()
        if self.options.timeout_seconds is not None:
            self.stop_time = self.start_time + self.options.timeout_seconds
        if self.options.size_limit_bytes is not None:
            self.size_limit_bytes = self.options.size_limit_bytes
            self.watch_directory = (
                self.options.watch_directory or self.options.directory or os.getcwd()
            )

        self._spawn_child()
        logger.debug(f"Spawned child pid={self.pid} command={self.options.command!r}")

    @property
    def spawned(self) -> bool:
        return self._spawned

    @property
    def interrupted(self) -> bool:
        """Sticky: True once any interrupt tier has been sent."""
        return self._interrupted

    @property
    def needs_watching(self) -> bool:
        target = self.options.target
        return (
            self.stop_time is not None
            or self.size_limit_bytes is not None
            or (target is not None and target.wants_watch)
        )

    def alive(self) -> bool:
        """Non-blocking liveness check; reaps and caches the status on exit."""
        self._require_spawned("alive")
        if self.status is not None:
            return False
        status = self._poll_status()
        if status is None:
            return True
        self.status = status
        logger.debug(f"Child pid={self.pid} exited {status.reason()}")
        return False

    def wait_for_exit_status(self) -> ProcessStatus:
        """Block until the child exits and return its status."""
        self._require_spawned("wait_for_exit_status")
        if self.status is None:
            self.status = self._wait_status()
            logger.debug(f"Child pid={self.pid} exited {self.status.reason()}")
        return self.status

    def wait_for_exec(self) -> None:
        """Block until the child has exec'd the requested program.

        No-op where creation failures are raised synchronously.

        Raises:
            SpawnError: The child failed before exec
        """
        self._require_spawned("wait_for_exec")

    def interrupt(self) -> bool:
        """Advance the interrupt state machine by at most one tier.

        Returns:
            False if the child is no longer alive, True otherwise

        Raises:
            KillEscalationExhausted: Every tier was sent and the child lives on
        """
        self._require_spawned("interrupt")
        if not self.alive():
            return False

        now = time.monotonic()
        if self.kill_time is not None and now < self.kill_time:
            return True

        next_tier = _NEXT_TIER.get(self.interrupt_state)
        if next_tier is None:
            self.interrupt_state = InterruptState.ABANDONED
            logger.warning(f"Giving up on child pid={self.pid} after final interrupt")
            raise KillEscalationExhausted(self.pid)

        self._interrupted = True
        self.last_signal = self._send_interrupt(next_tier)
        self.interrupt_state = next_tier
        self.kill_time = now + self.config.interrupt_grace_seconds
        logger.debug(
            f"Sent {self.last_signal} to child pid={self.pid} "
            f"(tier={next_tier.value})"
        )
        return True

    def force_kill(self) -> None:
        """Send the final tier immediately and reap the child.

        Used on error paths only; never raises for an already dead child.
        """
        if not self._spawned or self.pid is None or not self.alive():
            return
        self._interrupted = True
        self.last_signal = self._send_interrupt(InterruptState.FINAL)
        self.interrupt_state = InterruptState.FINAL
        self.wait_for_exit_status()

    # =========================================================================
    # Watch conditions
    # =========================================================================

    def timer_expired(self) -> bool:
        return self.stop_time is not None and time.monotonic() > self.stop_time

    def size_limit_exceeded(self) -> bool:
        """Sum regular file sizes under the watch directory.

        Stops walking as soon as the limit is exceeded. Files that vanish
        while walking are skipped.
        """
        if self.size_limit_bytes is None or self.watch_directory is None:
            return False
        total = 0
        for root, _dirs, files in os.walk(self.watch_directory):
            for name in files:
                try:
                    st = os.stat(os.path.join(root, name))
                except OSError:
                    continue
                if stat.S_ISREG(st.st_mode):
                    total += st.st_size
                    if total > self.size_limit_bytes:
                        return True
        return False

    # =========================================================================
    # Channels
    # =========================================================================

    @property
    def channels(self) -> list[Channel]:
        return [
            channel
            for channel in (self.stdin, self.stdout, self.stderr, self.status_channel)
            if channel is not None
        ]

    def safe_close_io(self) -> None:
        """Close every channel that is still open. Idempotent."""
        for channel in self.channels:
            channel.close()

    def wait_readable(self, channels: Sequence[Channel], timeout: float) -> list[Channel]:
        """Return the channels with data or EOF pending, waiting up to ``timeout``."""
        readable, _ = self.select(channels, (), timeout)
        return readable

    @abstractmethod
    def select(
        self,
        readers: Sequence[Channel],
        writers: Sequence[Channel],
        timeout: float,
    ) -> tuple[list[Channel], list[Channel]]:
        """Wait up to ``timeout`` for readable/writable channels."""

    # =========================================================================
    # Platform hooks
    # =========================================================================

    @abstractmethod
    def _spawn_child(self) -> None:
        """Create the child; set ``pid`` and the channels."""

    @abstractmethod
    def _poll_status(self) -> ProcessStatus | None:
        """Return the exit status if the child has exited, else None."""

    @abstractmethod
    def _wait_status(self) -> ProcessStatus:
        """Block until the child exits."""

    @abstractmethod
    def _send_interrupt(self, tier: InterruptState) -> str:
        """Deliver ``tier`` to the child; return the name of what was sent."""

    def _synthesized_status(self) -> ProcessStatus:
        return ProcessStatus.synthesized(self.pid, self._interrupted, self.last_signal)

    def _require_spawned(self, operation: str) -> None:
        if not self._spawned:
            raise ProcessStateError(f"{operation}() called before spawn()")
