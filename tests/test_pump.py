"""Synchronous pump tests against real child processes.

Test coverage:
- byte-exact stdout/stderr delivery and exit codes
- stdin input, keep_stdin_open and blocking stdin pipes
- exec failures (missing executable, unknown user)
- timeout, size limit and watch abandonment
- children that outlive their pipes or leave grandchildren behind
- environment, working directory and umask
- watch cadence under heavy output
- descriptor inheritance (inherit_io)

Each child is the fixtures/fake_cli.py program run by the current
interpreter.
"""

from __future__ import annotations

import os
import sys
import time

import pytest

from conftest import IS_WINDOWS, fake_cli_argv
from popen_pump import OutputCollector, popen3_sync
from popen_pump.config import Config
from popen_pump.errors import SpawnError
from popen_pump.options import SpawnOptions
from popen_pump.runtime import StreamPump
from popen_pump.target import CallbackTarget


def _lines(*items: str) -> str:
    return "".join(f"{item}{os.linesep}" for item in items)


# =============================================================================
# Output and exit status
# =============================================================================


class TestOutput:
    """Test output delivery and exit statuses."""

    @pytest.mark.timeout(30)
    def test_mixed_output_is_byte_exact(self):
        collector = OutputCollector()
        status = popen3_sync(fake_cli_argv("mixed", 1000, "--exit-code", 99), target=collector)

        assert status is collector.status
        assert status.exit_status == 99
        assert status.success is False
        assert collector.stdout_text() == _lines(*(f"stdout {i}" for i in range(1000)))
        assert collector.stderr_text() == _lines(*(f"stderr {i}" for i in range(0, 1000, 10)))
        assert not collector.did_timeout
        assert not collector.did_size_limit

    @pytest.mark.timeout(30)
    def test_exit_code_reported(self):
        collector = OutputCollector()
        popen3_sync(fake_cli_argv("mixed", 1, "--exit-code", 146), target=collector)
        assert collector.status.exit_status == 146

    @pytest.mark.timeout(30)
    def test_stderr_only(self):
        collector = OutputCollector()
        status = popen3_sync(fake_cli_argv("stderr-only", 200), target=collector)

        assert status.success is True
        assert collector.stdout == b""
        assert collector.stderr_text() == _lines(*(f"stderr {i}" for i in range(200)))

    @pytest.mark.timeout(30)
    def test_pid_reported_before_exit(self):
        events: list[str] = []
        target = CallbackTarget(
            pid_handler=lambda pid: events.append("pid"),
            stdout_handler=lambda data: events.append("out"),
            exit_handler=lambda status: events.append("exit"),
        )
        popen3_sync(fake_cli_argv("mixed", 3), target=target)

        assert events[0] == "pid"
        assert events[-1] == "exit"
        assert events.count("exit") == 1

    @pytest.mark.timeout(30)
    def test_default_target(self):
        status = popen3_sync(fake_cli_argv("mixed", 5))
        assert status.success is True

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell")
    @pytest.mark.timeout(30)
    def test_string_command_runs_through_shell(self):
        collector = OutputCollector()
        popen3_sync("echo one && echo two >&2; exit 4", target=collector)

        assert collector.stdout_text() == "one\n"
        assert collector.stderr_text() == "two\n"
        assert collector.status.exit_status == 4


class TestInput:
    """Test feeding stdin."""

    @pytest.mark.timeout(30)
    def test_input_is_delivered(self):
        collector = OutputCollector()
        status = popen3_sync(fake_cli_argv("increment"), input="42\n", target=collector)

        assert status.success is True
        assert collector.stdout_text().strip() == "43"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX cat")
    @pytest.mark.timeout(30)
    def test_large_input_round_trips_through_cat(self):
        payload = b"0123456789abcdef" * 64 * 1024
        collector = OutputCollector()
        popen3_sync(["cat"], input=payload, target=collector)

        assert bytes(collector.stdout) == payload


# =============================================================================
# Exec failures
# =============================================================================


class TestExecFailure:
    """Test children that never run the requested program."""

    @pytest.mark.timeout(30)
    def test_missing_executable(self):
        exits = []
        target = CallbackTarget(exit_handler=exits.append)

        with pytest.raises(SpawnError) as exc_info:
            popen3_sync(["nosuchexecutable"], target=target)

        assert "nosuchexecutable" in str(exc_info.value)
        if not IS_WINDOWS:
            assert len(exits) == 1
            assert exits[0].exit_status == 127

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX user switching")
    @pytest.mark.timeout(30)
    def test_unknown_user(self):
        with pytest.raises(SpawnError) as exc_info:
            popen3_sync(fake_cli_argv("mixed", 1), user="nosuchuser")

        assert "nosuchuser" in str(exc_info.value)
        assert exc_info.value.kind == "SpawnError"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX exec")
    @pytest.mark.timeout(30)
    def test_missing_directory(self, tmp_path):
        with pytest.raises(SpawnError) as exc_info:
            popen3_sync(fake_cli_argv("mixed", 1), directory=str(tmp_path / "missing"))

        assert exc_info.value.kind == "FileNotFoundError"

    def test_invalid_options_raise_before_spawn(self):
        with pytest.raises(ValueError):
            popen3_sync(fake_cli_argv("mixed", 1), timeout_seconds=0)


# =============================================================================
# Watchdog
# =============================================================================


class TestTimeout:
    """Test the timeout watch condition."""

    @pytest.mark.timeout(30)
    def test_timeout_interrupts_child(self, fast_config):
        timeouts: list[None] = []
        collector = OutputCollector()
        target = CallbackTarget(
            stdout_handler=collector.on_stdout,
            timeout_handler=lambda: timeouts.append(None),
            exit_handler=collector.on_exit,
        )

        start = time.monotonic()
        status = popen3_sync(
            fake_cli_argv("sleep", 30),
            timeout_seconds=0.5,
            target=target,
            config=fast_config,
        )
        elapsed = time.monotonic() - start

        assert timeouts == [None]
        assert status.success is not True
        assert collector.status is status
        assert elapsed < 10

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX signals")
    @pytest.mark.timeout(30)
    def test_timeout_escalates_past_ignored_signals(self, fast_config):
        collector = OutputCollector()
        status = popen3_sync(
            fake_cli_argv("sleep", 30, "--ignore-signals"),
            timeout_seconds=0.3,
            target=collector,
            config=fast_config,
        )

        assert collector.did_timeout
        assert status.term_signal == "SIGKILL"
        assert status.success is None

    @pytest.mark.timeout(30)
    def test_child_closing_stdout_still_times_out(self, fast_config):
        collector = OutputCollector()
        popen3_sync(
            fake_cli_argv("close-stdout", 30),
            timeout_seconds=0.5,
            target=collector,
            config=fast_config,
        )

        assert collector.did_timeout
        assert collector.stdout_text().strip() == "closing"


class TestSizeLimit:
    """Test the watch directory size limit."""

    @pytest.mark.timeout(30)
    def test_size_limit_interrupts_child(self, temp_workspace, fast_config):
        collector = OutputCollector()
        status = popen3_sync(
            fake_cli_argv("write", temp_workspace, "--count", 50, "--size", 100),
            size_limit_bytes=500,
            watch_directory=str(temp_workspace),
            timeout_seconds=20,
            target=collector,
            config=fast_config,
        )

        assert collector.did_size_limit
        assert not collector.did_timeout
        assert status.success is not True
        assert len(os.listdir(temp_workspace)) < 50

    @pytest.mark.timeout(30)
    def test_below_limit_does_not_fire(self, temp_workspace, fast_config):
        (temp_workspace / "small.txt").write_bytes(b"x" * 10)
        collector = OutputCollector()
        status = popen3_sync(
            fake_cli_argv("mixed", 5),
            size_limit_bytes=1000,
            watch_directory=str(temp_workspace),
            target=collector,
            config=fast_config,
        )

        assert status.success is True
        assert not collector.did_size_limit


class TestAbandon:
    """Test on_watch returning False."""

    @pytest.mark.timeout(30)
    def test_abandon_returns_none_and_leaves_channels_open(self, fast_config):
        watched = []

        def watch(process):
            watched.append(process)
            return False

        exits = []
        target = CallbackTarget(watch_handler=watch, exit_handler=exits.append)
        status = popen3_sync(fake_cli_argv("sleep", 30), target=target, config=fast_config)

        assert status is None
        assert exits == []
        process = watched[0]
        try:
            assert process.alive()
            assert not process.stdout.closed
            assert not process.stderr.closed
        finally:
            process.force_kill()
            process.safe_close_io()

        assert process.stdout.closed
        assert not process.alive()

    @pytest.mark.timeout(30)
    def test_watch_called_while_running(self, fast_config):
        ticks = []

        def watch(process):
            ticks.append(process.pid)
            return True

        collector = OutputCollector()
        target = CallbackTarget(
            pid_handler=collector.on_pid,
            watch_handler=watch,
            exit_handler=collector.on_exit,
        )
        popen3_sync(fake_cli_argv("sleep", 0.5), target=target, config=fast_config)

        assert ticks
        assert set(ticks) == {collector.pid}
        assert collector.status.success is True


# =============================================================================
# Children that outlive their pipes
# =============================================================================


class TestLingeringPipes:
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX drain semantics")
    @pytest.mark.timeout(30)
    def test_background_grandchild_does_not_block(self):
        collector = OutputCollector()
        start = time.monotonic()
        status = popen3_sync(fake_cli_argv("background", 5), target=collector)
        elapsed = time.monotonic() - start

        assert status.success is True
        assert "spawned" in collector.stdout_text()
        assert elapsed < 4


# =============================================================================
# Spawn options
# =============================================================================


class TestSpawnOptions:
    """Test environment, directory and umask handling."""

    @pytest.mark.timeout(30)
    def test_environment_set_and_cleared(self, monkeypatch):
        monkeypatch.setenv("POPEN_PUMP_CLEARED", "present")
        collector = OutputCollector()
        popen3_sync(
            fake_cli_argv("print-env", "POPEN_PUMP_ADDED", "POPEN_PUMP_CLEARED"),
            environment={"POPEN_PUMP_ADDED": "hello", "POPEN_PUMP_CLEARED": None},
            target=collector,
        )

        lines = collector.stdout_text().splitlines()
        assert "POPEN_PUMP_ADDED=hello" in lines
        assert "POPEN_PUMP_CLEARED=<unset>" in lines

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX locale")
    @pytest.mark.timeout(30)
    def test_locale_forced_by_default(self):
        collector = OutputCollector()
        popen3_sync(fake_cli_argv("print-env", "LC_ALL"), target=collector)
        assert collector.stdout_text() == "LC_ALL=C\n"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX locale")
    @pytest.mark.timeout(30)
    def test_locale_disabled(self, monkeypatch):
        monkeypatch.delenv("LC_ALL", raising=False)
        collector = OutputCollector()
        popen3_sync(fake_cli_argv("print-env", "LC_ALL"), locale=False, target=collector)
        assert collector.stdout_text() == "LC_ALL=<unset>\n"

    @pytest.mark.timeout(30)
    def test_directory(self, temp_workspace):
        collector = OutputCollector()
        popen3_sync(
            [sys.executable, "-c", "import os; print(os.getcwd())"],
            directory=str(temp_workspace),
            target=collector,
        )
        reported = collector.stdout_text().strip()
        assert os.path.realpath(reported) == os.path.realpath(temp_workspace)

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX umask")
    @pytest.mark.timeout(30)
    def test_umask(self):
        collector = OutputCollector()
        popen3_sync(
            [sys.executable, "-c", "import os; print(oct(os.umask(0)))"],
            umask="027",
            target=collector,
        )
        assert collector.stdout_text().strip() == "0o27"


class TestStdinHandling:
    """Test stdin lifetime and blocking stdin pipes."""

    _COUNT_STDIN = [sys.executable, "-c", "import sys; sys.stdout.write(str(len(sys.stdin.read())))"]

    @pytest.mark.timeout(30)
    def test_stdin_closed_after_input(self):
        collector = OutputCollector()
        status = popen3_sync(self._COUNT_STDIN, input="abc", target=collector)

        assert status.success is True
        assert collector.stdout_text() == "3"

    @pytest.mark.timeout(30)
    def test_keep_stdin_open_leaves_child_waiting(self, fast_config):
        collector = OutputCollector()
        popen3_sync(
            self._COUNT_STDIN,
            input="abc",
            keep_stdin_open=True,
            timeout_seconds=0.5,
            target=collector,
            config=fast_config,
        )

        assert collector.did_timeout
        assert collector.stdout == b""
        assert collector.status.success is not True

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX fork")
    @pytest.mark.timeout(30)
    def test_blocking_stdin_does_not_stall_output(self, fast_config):
        from popen_pump.runtime.posix_process import PosixChildProcess

        class BlockingStdinProcess(PosixChildProcess):
            blocking_stdin = True

            def _spawn_child(self):
                super()._spawn_child()
                self.stdin.set_blocking(True)

        # both payloads exceed any pipe buffer: the child only reads stdin
        # once its stdout has been drained
        payload = b"y" * (1024 * 1024)
        collector = OutputCollector()
        process = BlockingStdinProcess(
            SpawnOptions(command=fake_cli_argv("flood", 1024 * 1024), input=payload),
            fast_config,
        )
        process.spawn()
        status = StreamPump(collector, fast_config).run(process)

        assert status.success is True
        assert collector.stdout_text().splitlines()[-1] == f"read {len(payload)}"
        assert process.stdin.closed


class TestWatchCadence:
    """Test that output does not speed up the watch cycle."""

    @pytest.mark.timeout(30)
    def test_watch_runs_once_per_poll_interval(self, temp_workspace):
        config = Config(poll_interval=0.1, read_chunk_size=512)
        ticks = []
        chunks = []
        target = CallbackTarget(
            stdout_handler=chunks.append,
            watch_handler=lambda process: ticks.append(time.monotonic()) or True,
        )

        start = time.monotonic()
        status = popen3_sync(
            fake_cli_argv("mixed", 50000),
            size_limit_bytes=10**9,
            watch_directory=str(temp_workspace),
            target=target,
            config=config,
        )
        elapsed = time.monotonic() - start

        assert status.success is True
        assert len(chunks) > 100
        assert len(ticks) <= elapsed / config.poll_interval + 3
        assert len(ticks) < len(chunks)


@pytest.mark.skipif(IS_WINDOWS, reason="POSIX descriptor inheritance")
class TestInheritIO:
    """Test the parent's extra descriptors in the child."""

    @staticmethod
    def _run(fd: int, **options) -> OutputCollector:
        collector = OutputCollector()
        popen3_sync(
            [sys.executable, "-c", f"import os; os.fstat({fd}); print('open')"],
            target=collector,
            **options,
        )
        return collector

    @pytest.mark.timeout(30)
    def test_extra_descriptors_closed_by_default(self):
        read_end, write_end = os.pipe()
        os.set_inheritable(write_end, True)
        try:
            collector = self._run(write_end)
        finally:
            os.close(read_end)
            os.close(write_end)

        assert collector.status.success is False
        assert collector.stdout == b""

    @pytest.mark.timeout(30)
    def test_inherit_io_keeps_descriptors(self):
        read_end, write_end = os.pipe()
        os.set_inheritable(write_end, True)
        try:
            collector = self._run(write_end, inherit_io=True)
        finally:
            os.close(read_end)
            os.close(write_end)

        assert collector.status.success is True
        assert collector.stdout_text() == "open\n"
