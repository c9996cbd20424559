from __future__ import annotations

import threading
import time
from typing import Optional


class CountDownLatch:
    """
    Countdown barrier with a timed wait.

    Media-server and browser callbacks call :meth:`count_down`; the scenario
    thread blocks in :meth:`wait`. A latch is single-use: once it reaches zero
    every later wait returns immediately, so allocate a fresh latch per
    expected barrier.
    """

    def __init__(self, count: int = 1) -> None:
        if count < 1:
            raise ValueError("count must be >= 1")
        self._count = count
        self._condition = threading.Condition()

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def count_down(self) -> None:
        with self._condition:
            if self._count == 0:
                return
            self._count -= 1
            if self._count == 0:
                self._condition.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the count reaches zero; ``False`` if ``timeout`` seconds pass first."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while self._count > 0:
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True

    def __repr__(self) -> str:
        return f"CountDownLatch(count={self.count})"


__all__ = ["CountDownLatch"]
