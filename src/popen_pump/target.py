"""Callback surface notified about a spawned child.

A target receives, in order: ``on_pid`` once, any number of ``on_stdout`` /
``on_stderr`` chunks (each stream in order), periodic ``on_watch`` calls,
at most one ``on_timeout`` and one ``on_size_limit``, and ``on_exit``
exactly once, last.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.process_base import ChildProcess
    from .status import ProcessStatus

__all__ = ["Target", "CallbackTarget"]

logger = logging.getLogger(__name__)


class Target:
    """Base target with no-op callbacks. Override the ones you need."""

    def on_pid(self, pid: int) -> None:
        pass

    def on_stdout(self, data: bytes) -> None:
        pass

    def on_stderr(self, data: bytes) -> None:
        pass

    def on_watch(self, process: ChildProcess) -> bool:
        """Called on every watch tick.

        Returning False abandons the watch in sync mode: the pump returns
        None and the caller owns the still-running process and its channels.
        """
        return True

    @property
    def wants_watch(self) -> bool:
        """True when on_watch does more than the default."""
        return type(self).on_watch is not Target.on_watch

    def on_timeout(self) -> None:
        pass

    def on_size_limit(self) -> None:
        pass

    def on_exit(self, status: ProcessStatus) -> None:
        pass

    def on_async_exception(self, exc: BaseException) -> None:
        """Called in async mode when a callback or the pump itself raised."""
        logger.error("Unhandled exception in async popen", exc_info=exc)


@dataclass
class CallbackTarget(Target):
    """Target assembled from optional callables instead of a subclass.

    Example:
        target = CallbackTarget(
            stdout_handler=chunks.append,
            exit_handler=lambda status: print(status.reason()),
        )
    """

    pid_handler: Callable[[int], None] | None = None
    stdout_handler: Callable[[bytes], None] | None = None
    stderr_handler: Callable[[bytes], None] | None = None
    watch_handler: Callable[[ChildProcess], bool] | None = None
    timeout_handler: Callable[[], None] | None = None
    size_limit_handler: Callable[[], None] | None = None
    exit_handler: Callable[[ProcessStatus], None] | None = None
    async_exception_handler: Callable[[BaseException], None] | None = None

    def on_pid(self, pid: int) -> None:
        if self.pid_handler is not None:
            self.pid_handler(pid)

    def on_stdout(self, data: bytes) -> None:
        if self.stdout_handler is not None:
            self.stdout_handler(data)

    def on_stderr(self, data: bytes) -> None:
        if self.stderr_handler is not None:
            self.stderr_handler(data)

    def on_watch(self, process: ChildProcess) -> bool:
        if self.watch_handler is None:
            return True
        return bool(self.watch_handler(process))

    def on_timeout(self) -> None:
        if self.timeout_handler is not None:
            self.timeout_handler()

    def on_size_limit(self) -> None:
        if self.size_limit_handler is not None:
            self.size_limit_handler()

    def on_exit(self, status: ProcessStatus) -> None:
        if self.exit_handler is not None:
            self.exit_handler(status)

    def on_async_exception(self, exc: BaseException) -> None:
        if self.async_exception_handler is None:
            super().on_async_exception(exc)
        else:
            self.async_exception_handler(exc)

    @property
    def wants_watch(self) -> bool:
        return self.watch_handler is not None
