"""Periodic timeout / size-limit / watch-callback check for a running child."""

from __future__ import annotations

import logging

from ..config import Config, get_config
from ..target import Target
from .process_base import ChildProcess

__all__ = ["Watchdog"]

logger = logging.getLogger(__name__)


class Watchdog:
    """Runs one watch cycle per pump tick.

    The timeout is checked before the size limit, so a tick where both hold
    reports the timeout. Whichever fires first is latched and the child is
    interrupted on every later tick until it dies; the flags are therefore
    still set when the pump reports them, even if the files that tripped
    the size limit have since been removed.

    Attributes:
        did_timeout: The timeout fired
        did_size_limit: The size limit fired
        abandoned: ``target.on_watch`` returned False
    """

    def __init__(
        self,
        process: ChildProcess,
        target: Target,
        config: Config | None = None,
    ) -> None:
        self._process = process
        self._target = target
        self._config = config if config is not None else get_config()
        self.did_timeout = False
        self.did_size_limit = False
        self.abandoned = False

    @property
    def fired(self) -> bool:
        return self.did_timeout or self.did_size_limit

    def tick(self) -> bool:
        """Run one watch cycle.

        Returns:
            False when the target abandoned the watch, True otherwise

        Raises:
            KillEscalationExhausted: The child survived every interrupt tier
        """
        process = self._process
        if not process.alive():
            return True

        if self.fired:
            process.interrupt()
            return True

        if process.timer_expired():
            logger.info(f"Timeout expired for pid={process.pid}, interrupting")
            self.did_timeout = True
            process.interrupt()
            return True

        if process.size_limit_exceeded():
            logger.info(
                f"Size limit of {process.size_limit_bytes} bytes exceeded in "
                f"{process.watch_directory} for pid={process.pid}, interrupting"
            )
            self.did_size_limit = True
            process.interrupt()
            return True

        if not self._target.on_watch(process):
            logger.warning(f"Watch abandoned for pid={process.pid}")
            self.abandoned = True
            return False
        return True

    def next_interval(self, current: float) -> float:
        """Double ``current`` up to the configured maximum watch interval."""
        return min(current * 2, self._config.max_watch_interval)
