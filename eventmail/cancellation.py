from __future__ import annotations

import threading

from eventmail.errors import Cancelled


class CancellationToken:
    """
    Cooperative cancellation signal owned by one scheduler loop.

    Every suspension point (tick wait, store call, process wait, retry delay,
    notifier call) either waits on the token or calls `raise_if_cancelled`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True when woken by cancellation."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()
