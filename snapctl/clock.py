"""Cancellable timer used by every polling loop."""

import threading
import time


class Clock:
    """Monotonic clock whose waits can be interrupted by ``cancel()``."""

    def __init__(self):
        self._cancelled = threading.Event()

    def now(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float) -> bool:
        """Wait up to ``seconds``. Returns False if the wait was cancelled."""
        if seconds <= 0:
            return not self._cancelled.is_set()
        return not self._cancelled.wait(seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def reset(self) -> None:
        """Clear a previous cancellation so the clock can be reused."""
        self._cancelled.clear()
