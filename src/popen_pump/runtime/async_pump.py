"""Asyncio stream pump.

Each output channel is pumped by its own task, woken through
``loop.add_reader`` where the running loop supports it (selector loops) and
by polling at the configured interval otherwise (proactor loops on
Windows). A supervising loop polls for exit, runs the watchdog on a
doubling interval and honors an optional ``anyio.CancelScope``.

Exceptions raised by target callbacks never escape the task: they go to
``target.on_async_exception`` and ``on_exit`` is still called once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import anyio

from ..config import Config
from ..status import ProcessStatus
from ..target import Target
from .channel import Channel
from .process_base import ChildProcess
from .pump import PumpBase
from .watchdog import Watchdog

__all__ = ["AsyncStreamPump"]

logger = logging.getLogger(__name__)


def _wake(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class AsyncStreamPump(PumpBase):
    """Event-driven I/O pump for one child process.

    Example:
        pump = AsyncStreamPump(target)
        status = await pump.run(create_process(options))

    Args:
        target: Callback receiver
        config: Runtime configuration (defaults to the global config)
        cancel_scope: When its cancel is requested, the child is interrupted
            on every tick until it exits
    """

    def __init__(
        self,
        target: Target,
        config: Config | None = None,
        *,
        cancel_scope: anyio.CancelScope | None = None,
    ) -> None:
        super().__init__(target, config)
        self._cancel_scope = cancel_scope
        self._use_loop_readiness = True
        self._exit_notified = False
        self._abandon_logged = False

    async def run(self, process: ChildProcess) -> ProcessStatus:
        """Spawn ``process`` if needed and pump it until it exits.

        Returns:
            The exit status; ``ProcessStatus(pid, 1)`` (or the reaped status)
            when the pump failed and the failure went to
            ``on_async_exception``
        """
        try:
            if not process.spawned:
                process.spawn()
            return await self._pump(process)
        except asyncio.CancelledError:
            process.force_kill()
            raise
        except Exception as exc:
            logger.debug(f"Async popen failed: {exc!r}")
            return self._handle_failure(process, exc)
        finally:
            process.safe_close_io()

    def _handle_failure(self, process: ChildProcess, exc: Exception) -> ProcessStatus:
        try:
            self._target.on_async_exception(exc)
        except Exception as handler_exc:
            logger.error(
                f"on_async_exception raised while handling {exc!r}",
                exc_info=handler_exc,
            )

        if process.spawned and process.pid is not None:
            process.force_kill()
        status = process.status or ProcessStatus(process.pid, 1)
        if not self._exit_notified:
            self._exit_notified = True
            try:
                self._target.on_exit(status)
            except Exception as exit_exc:
                logger.error("on_exit raised after async failure", exc_info=exit_exc)
        return status

    # =========================================================================
    # Supervision
    # =========================================================================

    async def _pump(self, process: ChildProcess) -> ProcessStatus:
        target = self._target
        watchdog = Watchdog(process, target, self._config)

        target.on_pid(process.pid)
        self._start_input(process)
        self._watch(watchdog)

        readers: list[asyncio.Task[None]] = [
            asyncio.create_task(self._pump_channel(process, channel))
            for channel in (process.stdout, process.stderr, process.status_channel)
            if channel is not None
        ]
        tasks = [*readers, asyncio.create_task(self._pump_input(process))]

        interval = self._config.poll_interval
        try:
            while process.alive():
                pending = [task for task in tasks if not task.done()]
                if pending:
                    await asyncio.wait(pending, timeout=interval)
                else:
                    await asyncio.sleep(interval)
                self._raise_task_errors(tasks)

                if self._cancel_requested():
                    process.interrupt()
                if process.needs_watching:
                    self._watch(watchdog)

                if any(not task.done() for task in readers):
                    interval = watchdog.next_interval(interval)
                else:
                    # output closed; the exit is imminent
                    interval = self._config.poll_interval
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                raise result

        self._drain(
            process,
            [
                channel
                for channel in (process.stdout, process.stderr, process.status_channel)
                if channel is not None and not channel.closed
            ],
        )
        status = process.wait_for_exit_status()

        failure = self._exec_failure()
        if failure is not None:
            raise failure
        if watchdog.did_timeout:
            target.on_timeout()
        if watchdog.did_size_limit:
            target.on_size_limit()
        self._exit_notified = True
        target.on_exit(status)
        return status

    def _watch(self, watchdog: Watchdog) -> None:
        if watchdog.tick() or self._abandon_logged:
            return
        self._abandon_logged = True
        logger.warning(
            "on_watch returned False in async mode; abandoning is not supported, "
            "call process.interrupt() instead"
        )

    def _cancel_requested(self) -> bool:
        return self._cancel_scope is not None and self._cancel_scope.cancel_called

    @staticmethod
    def _raise_task_errors(tasks: list[asyncio.Task[None]]) -> None:
        for task in tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()

    # =========================================================================
    # Channel tasks
    # =========================================================================

    async def _pump_channel(self, process: ChildProcess, channel: Channel) -> None:
        while not channel.closed:
            await self._wait_ready(process, channel)
            if not self._read_once(process, channel):
                return

    async def _pump_input(self, process: ChildProcess) -> None:
        while self._writers(process):
            await self._wait_ready(process, process.stdin, write=True)
            self._feed_input(process, process.stdin)

    async def _wait_ready(
        self,
        process: ChildProcess,
        channel: Channel,
        *,
        write: bool = False,
    ) -> None:
        if self._use_loop_readiness:
            loop = asyncio.get_running_loop()
            add: Callable[..., None] = loop.add_writer if write else loop.add_reader
            remove: Callable[[int], bool] = loop.remove_writer if write else loop.remove_reader
            future: asyncio.Future[None] = loop.create_future()
            fd = channel.fileno()
            try:
                add(fd, _wake, future)
            except NotImplementedError:
                logger.debug("Event loop has no fd readiness support, polling instead")
                self._use_loop_readiness = False
            else:
                try:
                    await future
                finally:
                    remove(fd)
                return

        while True:
            if write:
                _, ready = process.select((), (channel,), 0)
            else:
                ready = process.wait_readable((channel,), 0)
            if ready:
                return
            await asyncio.sleep(self._config.poll_interval)
