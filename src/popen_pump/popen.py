"""Entry points: spawn one child and pump it, synchronously or as a task."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import anyio

from .config import Config
from .options import Command, SpawnOptions
from .runtime import AsyncStreamPump, ChildProcess, StreamPump, platform_process_class
from .status import ProcessStatus
from .target import Target

__all__ = ["create_process", "popen3_sync", "popen3_async"]


def create_process(options: SpawnOptions, config: Config | None = None) -> ChildProcess:
    """Create (but do not spawn) the platform ChildProcess for ``options``."""
    return platform_process_class()(options, config)


def _build_options(
    command: Command,
    *,
    environment: Mapping[str, str | None] | None,
    directory: str | None,
    input: bytes | str | None,
    user: str | int | None,
    group: str | int | None,
    umask: int | str | None,
    locale: bool,
    inherit_io: bool,
    timeout_seconds: float | None,
    size_limit_bytes: int | None,
    watch_directory: str | None,
    keep_stdin_open: bool,
    target: Target | None,
) -> SpawnOptions:
    options = SpawnOptions(
        command=command,
        environment=environment,
        directory=directory,
        input=input,
        user=user,
        group=group,
        umask=umask,
        locale=locale,
        inherit_io=inherit_io,
        timeout_seconds=timeout_seconds,
        size_limit_bytes=size_limit_bytes,
        watch_directory=watch_directory,
        keep_stdin_open=keep_stdin_open,
        target=target,
    )
    options.validate()
    return options


def popen3_sync(
    command: Command,
    *,
    environment: Mapping[str, str | None] | None = None,
    directory: str | None = None,
    input: bytes | str | None = None,
    user: str | int | None = None,
    group: str | int | None = None,
    umask: int | str | None = None,
    locale: bool = True,
    inherit_io: bool = False,
    timeout_seconds: float | None = None,
    size_limit_bytes: int | None = None,
    watch_directory: str | None = None,
    keep_stdin_open: bool = False,
    target: Target | None = None,
    config: Config | None = None,
) -> ProcessStatus | None:
    """Run ``command`` and block until it exits.

    Output chunks, watch ticks and the final status are delivered to
    ``target``. See SpawnOptions for the meaning of each keyword.

    Returns:
        The exit status, or None when ``target.on_watch`` abandoned the watch

    Raises:
        SpawnError: The command could not be started
        ValueError: Invalid options
    """
    options = _build_options(
        command,
        environment=environment,
        directory=directory,
        input=input,
        user=user,
        group=group,
        umask=umask,
        locale=locale,
        inherit_io=inherit_io,
        timeout_seconds=timeout_seconds,
        size_limit_bytes=size_limit_bytes,
        watch_directory=watch_directory,
        keep_stdin_open=keep_stdin_open,
        target=target,
    )
    process = create_process(options, config)
    process.spawn()
    return StreamPump(options.resolved_target, config).run(process)


def popen3_async(
    command: Command,
    *,
    environment: Mapping[str, str | None] | None = None,
    directory: str | None = None,
    input: bytes | str | None = None,
    user: str | int | None = None,
    group: str | int | None = None,
    umask: int | str | None = None,
    locale: bool = True,
    inherit_io: bool = False,
    timeout_seconds: float | None = None,
    size_limit_bytes: int | None = None,
    watch_directory: str | None = None,
    keep_stdin_open: bool = False,
    target: Target | None = None,
    config: Config | None = None,
    cancel_scope: anyio.CancelScope | None = None,
) -> asyncio.Task[ProcessStatus]:
    """Start ``command`` on the running event loop and return the pump task.

    Must be called from a coroutine. Spawn failures and callback exceptions
    are delivered to ``target.on_async_exception``; the task itself
    resolves to the exit status.

    Raises:
        ValueError: Invalid options (raised immediately)
    """
    options = _build_options(
        command,
        environment=environment,
        directory=directory,
        input=input,
        user=user,
        group=group,
        umask=umask,
        locale=locale,
        inherit_io=inherit_io,
        timeout_seconds=timeout_seconds,
        size_limit_bytes=size_limit_bytes,
        watch_directory=watch_directory,
        keep_stdin_open=keep_stdin_open,
        target=target,
    )
    loop = asyncio.get_running_loop()
    pump = AsyncStreamPump(options.resolved_target, config, cancel_scope=cancel_scope)
    return loop.create_task(pump.run(create_process(options, config)))
