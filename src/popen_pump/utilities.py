"""Blocking convenience runners built on popen3_sync."""

from __future__ import annotations

import logging
from typing import Any

from .collector import OutputCollector
from .errors import PopenError
from .options import Command
from .popen import popen3_sync
from .status import ProcessStatus

__all__ = [
    "run",
    "run_collecting_output",
    "run_with_stdin_collecting_output",
]

logger = logging.getLogger(__name__)


def run_collecting_output(command: Command, **options: Any) -> tuple[ProcessStatus, str, str]:
    """Run ``command`` to completion and collect its output.

    Args:
        command: Shell command line or argv
        **options: Any popen3_sync keyword except ``target``

    Returns:
        (status, stdout, stderr), output decoded as UTF-8
    """
    collector = OutputCollector()
    popen3_sync(command, target=collector, **options)
    return collector.status, collector.stdout_text(), collector.stderr_text()


def run_with_stdin_collecting_output(
    command: Command,
    input: bytes | str,
    **options: Any,
) -> tuple[ProcessStatus, str, str]:
    """Like run_collecting_output, feeding ``input`` to the child's stdin."""
    return run_collecting_output(command, input=input, **options)


def run(command: Command, **options: Any) -> tuple[str, str]:
    """Run ``command`` and return (stdout, stderr).

    Raises:
        PopenError: The command did not exit successfully
    """
    status, out, err = run_collecting_output(command, **options)
    if not status.success:
        logger.debug(f"Command {command!r} failed {status.reason()}")
        raise PopenError(
            f"Command {command!r} failed {status.reason()}: stdout {out!r}, stderr {err!r}"
        )
    return out, err
