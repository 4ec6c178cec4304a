"""Windows child process: subprocess.Popen in a new process group.

Readiness is polled with ``PeekNamedPipe`` because ``select`` only accepts
sockets on Windows. Interrupt tiers are CTRL_BREAK_EVENT, then
TerminateProcess twice.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Sequence

from ..errors import SpawnError
from ..status import ProcessStatus
from .channel import Channel
from .environment import merge_environment
from .process_base import ChildProcess, InterruptState
from .which import find_executable_in_path, quote_token

__all__ = ["WindowsChildProcess", "read_registry_environment"]

logger = logging.getLogger(__name__)

MACHINE_ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
USER_ENVIRONMENT_KEY = "Environment"

# PeekNamedPipe has no wait; sleep this long between polls
_PEEK_INTERVAL = 0.01


def read_registry_environment(machine: bool) -> dict[str, str]:
    """Read persisted environment variables from the registry.

    ``REG_EXPAND_SZ`` values are expanded. A missing key yields an empty map.
    """
    import winreg

    root = winreg.HKEY_LOCAL_MACHINE if machine else winreg.HKEY_CURRENT_USER
    subkey = MACHINE_ENVIRONMENT_KEY if machine else USER_ENVIRONMENT_KEY
    environment: dict[str, str] = {}
    try:
        with winreg.OpenKey(root, subkey) as key:
            index = 0
            while True:
                try:
                    name, value, kind = winreg.EnumValue(key, index)
                except OSError:
                    break
                index += 1
                if kind == winreg.REG_EXPAND_SZ:
                    value = winreg.ExpandEnvironmentStrings(value)
                elif kind != winreg.REG_SZ:
                    continue
                environment[name] = value
    except OSError as e:
        logger.debug(f"Registry environment unavailable ({subkey}): {e}")
    return environment


def _lookup(environment: dict[str, str], name: str) -> str | None:
    """Case-insensitive environment lookup."""
    name = name.lower()
    for key, value in environment.items():
        if key.lower() == name:
            return value
    return None


def _running_as_system() -> bool:
    try:
        result = subprocess.run(
            ["whoami"], capture_output=True, text=True, timeout=5, check=False
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return result.stdout.strip().lower() == r"nt authority\system"


class WindowsChildProcess(ChildProcess):
    """Child process created through ``subprocess.Popen``."""

    drain_all_upon_death = True
    blocking_stdin = True

    _TIER_NAMES = {
        InterruptState.SOFT: "CTRL_BREAK_EVENT",
        InterruptState.HARD: "SIGTERM",
        InterruptState.FINAL: "SIGKILL",
    }

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._popen: subprocess.Popen[bytes] | None = None

    def _spawn_child(self) -> None:
        environment = self._child_environment()
        command_line = self._command_line(
            self.options.command,
            path=_lookup(environment, "PATH"),
            pathext=_lookup(environment, "PATHEXT"),
            cwd=self.options.directory,
        )
        if self.options.umask is not None:
            logger.debug("umask is ignored on Windows")

        try:
            popen = subprocess.Popen(
                command_line,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.options.directory,
                env=environment,
                close_fds=not self.options.inherit_io,
                creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
                bufsize=0,
            )
        except OSError as e:
            self.status = ProcessStatus(None, 1)
            raise SpawnError(
                f"{e.strerror or e}: {command_line!r}",
                kind=type(e).__name__,
                errno=e.errno,
            ) from e

        self._popen = popen
        self.pid = popen.pid
        try:
            self.stdin = Channel("stdin", popen.stdin.fileno(), file=popen.stdin)
            self.stdout = Channel("stdout", popen.stdout.fileno(), file=popen.stdout)
            self.stderr = Channel("stderr", popen.stderr.fileno(), file=popen.stderr)
        except (OSError, ValueError) as e:
            self.safe_close_io()
            popen.kill()
            popen.wait()
            self.status = ProcessStatus(self.pid, 1)
            raise SpawnError(f"Failed to attach pipes: {e}", kind=type(e).__name__) from e

    def _child_environment(self) -> dict[str, str]:
        user_environment = None
        if not _running_as_system():
            user_environment = read_registry_environment(machine=False)
        merged = merge_environment(
            self.options.environment,
            user_environment=user_environment,
            machine_environment=read_registry_environment(machine=True),
        )
        return {key: value for key, value in merged.items() if value is not None}

    @staticmethod
    def _command_line(
        command: str | Sequence[str],
        *,
        path: str | None = None,
        pathext: str | None = None,
        cwd: str | None = None,
    ) -> str:
        """Resolve the executable and build a CreateProcess command line.

        The search uses the child's ``PATH``/``PATHEXT`` and working
        directory. An unresolvable executable is passed through unchanged so
        that process creation reports it.
        """
        def resolve(token: str) -> str | None:
            return find_executable_in_path(token, path=path, pathext=pathext, cwd=cwd)

        if isinstance(command, str):
            token, sep, rest = command.strip().partition(" ")
            executable = resolve(token) or token
            return f"{quote_token(executable)}{sep}{rest}"

        argv = [os.fspath(arg) for arg in command]
        executable = resolve(argv[0]) or argv[0]
        return subprocess.list2cmdline([executable, *argv[1:]])

    # =========================================================================
    # Reaping and signals
    # =========================================================================

    def _status_from_returncode(self, returncode: int) -> ProcessStatus:
        if self.interrupted:
            return ProcessStatus(self.pid, returncode, self.last_signal)
        return ProcessStatus(self.pid, returncode)

    def _poll_status(self) -> ProcessStatus | None:
        returncode = self._popen.poll()
        if returncode is None:
            return None
        return self._status_from_returncode(returncode)

    def _wait_status(self) -> ProcessStatus:
        return self._status_from_returncode(self._popen.wait())

    def _send_interrupt(self, tier: InterruptState) -> str:
        try:
            if tier is InterruptState.SOFT:
                os.kill(self.pid, signal.CTRL_BREAK_EVENT)
            elif tier is InterruptState.HARD:
                self._popen.terminate()
            else:
                self._popen.kill()
        except OSError as e:
            logger.debug(f"Interrupt {tier.value} failed for pid={self.pid}: {e}")
        return self._TIER_NAMES[tier]

    # =========================================================================
    # Readiness
    # =========================================================================

    @staticmethod
    def _peek(channel: Channel) -> bool:
        """True when data or EOF is pending on a read channel."""
        import _winapi
        import msvcrt

        try:
            handle = msvcrt.get_osfhandle(channel.fileno())
            available, _ = _winapi.PeekNamedPipe(handle, 0)
        except (OSError, ValueError):
            # broken pipe: a read will return EOF
            return True
        return available > 0

    def select(
        self,
        readers: Sequence[Channel],
        writers: Sequence[Channel],
        timeout: float,
    ) -> tuple[list[Channel], list[Channel]]:
        readers = [c for c in readers if not c.closed]
        # anonymous pipe writes cannot be polled; the pump writes stdin from a
        # thread, so writers are only reported for callers polling themselves
        writable = [c for c in writers if not c.closed]
        deadline = time.monotonic() + timeout
        while True:
            readable = [c for c in readers if self._peek(c)]
            if readable or writable or time.monotonic() >= deadline:
                return readable, writable
            time.sleep(min(_PEEK_INTERVAL, max(0.0, deadline - time.monotonic())))
