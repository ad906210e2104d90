from __future__ import annotations

import threading
import time
import unittest

from eventmail.cancellation import CancellationToken
from eventmail.errors import Cancelled


class CancellationTokenTests(unittest.TestCase):
    def test_wait_returns_early_on_cancel(self) -> None:
        token = CancellationToken()
        threading.Timer(0.1, token.cancel).start()
        started = time.monotonic()
        self.assertTrue(token.wait(10))
        self.assertLess(time.monotonic() - started, 5)

    def test_wait_times_out_when_not_cancelled(self) -> None:
        token = CancellationToken()
        self.assertFalse(token.wait(0.01))
        self.assertFalse(token.wait(0))

    def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        self.assertTrue(token.is_cancelled)
        self.assertTrue(token.wait(0))
        with self.assertRaises(Cancelled):
            token.raise_if_cancelled()


if __name__ == "__main__":
    unittest.main()
