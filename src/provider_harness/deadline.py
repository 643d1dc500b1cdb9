"""
Run-level deadline.

A single deadline governs the whole harness run. Blocking operations check
it between steps, and a blocked exec stream can be armed with a timer that
closes the stream when the deadline fires so the caller can unwind and
release the environment.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from .errors import RunDeadlineExceeded

logger = logging.getLogger(__name__)


class Deadline:
    """Absolute point in time after which the run must stop."""

    def __init__(
        self,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if seconds <= 0:
            raise ValueError("Deadline must be positive")

        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    @classmethod
    def from_minutes(cls, minutes: int) -> "Deadline":
        return cls(minutes * 60)

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str = "run") -> None:
        """Raise RunDeadlineExceeded if the deadline has passed."""
        if self.expired():
            raise RunDeadlineExceeded(
                f"Run deadline of {self.seconds:.0f}s exceeded during {operation}"
            )

    @contextmanager
    def watch(self, on_expire: Callable[[], None]) -> Iterator[None]:
        """
        Call on_expire from a timer thread if the deadline fires while
        the body is still running.

        Args:
            on_expire: Callback that unblocks the body, e.g. by closing a
                socket the body is reading from
        """
        def _fire() -> None:
            logger.warning(f"Deadline of {self.seconds:g}s reached, aborting in-flight operation")
            try:
                on_expire()
            except Exception as e:
                logger.debug(f"Error while aborting operation: {e}")

        timer = threading.Timer(self.remaining(), _fire)
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()
