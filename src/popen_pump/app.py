"""popen-pump command line entry point.

Runs one command, echoes its output and exits with its exit status:

    python -m popen_pump --timeout 5 -- make test

Exit codes: the child's own exit code, 124 after a timeout, 125 after the
size limit was hit, 127 when the command could not be started.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import Config, get_config
from .errors import PopenError, SpawnError
from .popen import popen3_async, popen3_sync
from .status import ProcessStatus
from .target import Target

__all__ = ["configure_logging", "main", "EchoTarget"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_TIMEOUT = 124
EXIT_SIZE_LIMIT = 125
EXIT_SPAWN_FAILED = 127


def configure_logging(config: Config | None = None) -> None:
    """Install log handlers for command line use."""
    config = config if config is not None else get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # debug mode: log to a temp file
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # third party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("popen_pump").setLevel(log_level)


class EchoTarget(Target):
    """Copies child output to our own stdout/stderr and records limit notices."""

    def __init__(self) -> None:
        self.status: ProcessStatus | None = None
        self.did_timeout = False
        self.did_size_limit = False
        self.failure: BaseException | None = None

    def on_stdout(self, data: bytes) -> None:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()

    def on_stderr(self, data: bytes) -> None:
        sys.stderr.buffer.write(data)
        sys.stderr.buffer.flush()

    def on_timeout(self) -> None:
        self.did_timeout = True

    def on_size_limit(self) -> None:
        self.did_size_limit = True

    def on_exit(self, status: ProcessStatus) -> None:
        self.status = status

    def on_async_exception(self, exc: BaseException) -> None:
        self.failure = exc

    def exit_code(self) -> int:
        if isinstance(self.failure, SpawnError):
            return EXIT_SPAWN_FAILED
        if self.did_timeout:
            return EXIT_TIMEOUT
        if self.did_size_limit:
            return EXIT_SIZE_LIMIT
        if self.failure is not None or self.status is None:
            return 1
        if self.status.exit_status is not None:
            return self.status.exit_status
        return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="popen-pump",
        description="Run one command, stream its output and watch its limits.",
    )
    parser.add_argument("--timeout", type=float, default=None, help="seconds before interrupting")
    parser.add_argument("--size-limit", type=int, default=None, help="bytes allowed in --watch-dir")
    parser.add_argument("--watch-dir", default=None, help="directory measured for --size-limit")
    parser.add_argument("--directory", default=None, help="working directory for the command")
    parser.add_argument("--input", default=None, help="text written to the command's stdin")
    parser.add_argument(
        "--async",
        dest="use_async",
        action="store_true",
        help="pump the command on an asyncio event loop",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command and arguments")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command is required")

    configure_logging()

    target = EchoTarget()
    options = dict(
        directory=args.directory,
        input=args.input,
        timeout_seconds=args.timeout,
        size_limit_bytes=args.size_limit,
        watch_directory=args.watch_dir,
        target=target,
    )
    try:
        if args.use_async:
            async def _run() -> None:
                await popen3_async(command, **options)

            asyncio.run(_run())
        else:
            popen3_sync(command, **options)
    except SpawnError as e:
        logger.error(f"Failed to start {command[0]!r}: {e}")
        target.failure = e
    except (PopenError, ValueError) as e:
        logger.error(f"{e}")
        return 1
    return target.exit_code()


if __name__ == "__main__":
    sys.exit(main())
