"""POSIX child process: fork/exec with four pipes.

Pipes created per child:

    stdin   parent writes  -> child fd 0
    stdout  child fd 1     -> parent reads
    stderr  child fd 2     -> parent reads
    status  child (CLOEXEC) -> parent reads; carries the exec failure frame

The child is placed in its own process group so that interrupt signals
reach its descendants too.
"""

from __future__ import annotations

import logging
import os
import select
import signal
from collections.abc import Sequence

from ..errors import SpawnError
from ..status import ProcessStatus
from . import exec_failure
from .channel import Channel
from .environment import merge_posix_environment
from .process_base import ChildProcess, InterruptState

__all__ = ["PosixChildProcess"]

logger = logging.getLogger(__name__)

EXEC_FAILURE_EXIT_CODE = 127

_TIER_SIGNALS = {
    InterruptState.SOFT: signal.SIGINT,
    InterruptState.HARD: signal.SIGTERM,
    InterruptState.FINAL: signal.SIGKILL,
}


def _max_fd() -> int:
    try:
        return os.sysconf("SC_OPEN_MAX")
    except (AttributeError, ValueError):
        return 256


class PosixChildProcess(ChildProcess):
    """Child process created with ``os.fork`` and ``os.execvpe``."""

    drain_all_upon_death = False
    blocking_stdin = False

    def _spawn_child(self) -> None:
        argv = self._argv()
        environment = merge_posix_environment(
            self.options.environment, locale=self.options.locale
        )

        # os.pipe() descriptors are non-inheritable (close-on-exec)
        pipes = [os.pipe() for _ in range(4)]
        (stdin_r, stdin_w), (stdout_r, stdout_w), (stderr_r, stderr_w), (status_r, status_w) = pipes

        try:
            pid = os.fork()
        except OSError as e:
            for read_end, write_end in pipes:
                os.close(read_end)
                os.close(write_end)
            raise SpawnError(f"fork failed: {e}", kind=type(e).__name__, errno=e.errno) from e

        if pid == 0:
            self._exec_child(argv, environment, stdin_r, stdout_w, stderr_w, status_w)

        for fd in (stdin_r, stdout_w, stderr_w, status_w):
            os.close(fd)

        try:
            os.setpgid(pid, pid)
        except OSError:
            # child already exec'd (EACCES) and set its own group
            pass

        self.pid = pid
        self.stdin = Channel("stdin", stdin_w)
        self.stdin.set_blocking(False)
        self.stdout = Channel("stdout", stdout_r)
        self.stderr = Channel("stderr", stderr_r)
        self.status_channel = Channel("status", status_r)

    def _argv(self) -> list[str]:
        command = self.options.command
        if isinstance(command, str):
            return ["/bin/sh", "-c", command]
        return [os.fspath(arg) for arg in command]

    def _exec_child(
        self,
        argv: list[str],
        environment: dict[str, str],
        stdin_r: int,
        stdout_w: int,
        stderr_w: int,
        status_w: int,
    ) -> None:
        """Runs in the forked child. Never returns."""
        try:
            os.setpgid(0, 0)
            os.dup2(stdin_r, 0)
            os.dup2(stdout_w, 1)
            os.dup2(stderr_w, 2)
            if not self.options.inherit_io:
                os.closerange(3, status_w)
                os.closerange(status_w + 1, _max_fd())

            gid = self._resolve_group()
            if gid is not None:
                os.setgid(gid)
            uid = self._resolve_user()
            if uid is not None:
                os.setuid(uid)
            if self.options.directory is not None:
                os.chdir(self.options.directory)
            umask = self.options.umask_value
            if umask is not None:
                os.umask(umask)

            os.execvpe(argv[0], argv, environment)
        except BaseException as exc:
            exec_failure.write_failure(status_w, exc, filename=argv[0])
        finally:
            os._exit(EXEC_FAILURE_EXIT_CODE)

    def _resolve_user(self) -> int | None:
        user = self.options.user
        if user is None or isinstance(user, int):
            return user
        import pwd

        try:
            return pwd.getpwnam(user).pw_uid
        except KeyError:
            raise SpawnError(f"Unknown user: {user!r}") from None

    def _resolve_group(self) -> int | None:
        group = self.options.group
        if group is None or isinstance(group, int):
            return group
        import grp

        try:
            return grp.getgrnam(group).gr_gid
        except KeyError:
            raise SpawnError(f"Unknown group: {group!r}") from None

    # =========================================================================
    # Exec failure
    # =========================================================================

    def wait_for_exec(self) -> None:
        """Block until the status pipe reaches EOF.

        EOF without data means the exec succeeded and the pipe was closed by
        close-on-exec. A failure frame closes every channel and raises.

        Raises:
            SpawnError: The child failed before exec
        """
        super().wait_for_exec()
        channel = self.status_channel
        if channel is None or channel.closed:
            return
        payload = bytearray()
        while True:
            data = channel.read(self.config.read_chunk_size)
            if not data:
                break
            payload += data
        channel.close()
        if payload:
            self.safe_close_io()
            self.wait_for_exit_status()
            exec_failure.raise_failure(exec_failure.decode_failure(bytes(payload)))

    # =========================================================================
    # Reaping and signals
    # =========================================================================

    def _poll_status(self) -> ProcessStatus | None:
        try:
            pid, wait_status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            return self._synthesized_status()
        if pid == 0:
            return None
        return ProcessStatus.from_wait_status(self.pid, wait_status)

    def _wait_status(self) -> ProcessStatus:
        try:
            _, wait_status = os.waitpid(self.pid, 0)
        except ChildProcessError:
            return self._synthesized_status()
        return ProcessStatus.from_wait_status(self.pid, wait_status)

    def _send_interrupt(self, tier: InterruptState) -> str:
        sig = _TIER_SIGNALS[tier]
        try:
            os.killpg(self.pid, sig)
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            try:
                os.kill(self.pid, sig)
            except ProcessLookupError:
                pass
        return sig.name

    # =========================================================================
    # Readiness
    # =========================================================================

    def select(
        self,
        readers: Sequence[Channel],
        writers: Sequence[Channel],
        timeout: float,
    ) -> tuple[list[Channel], list[Channel]]:
        readers = [c for c in readers if not c.closed]
        writers = [c for c in writers if not c.closed]
        try:
            readable, writable, _ = select.select(readers, writers, [], timeout)
        except (OSError, ValueError) as e:
            # a descriptor went bad under us; let the reads report EOF
            logger.debug(f"select failed, reporting all channels ready: {e}")
            return readers, writers
        return readable, writable
