"""Runtime utilities for platform-layer consumers."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Optional


def get_time_ms() -> int:
    """Return the current wall-clock time in milliseconds."""
    return int(round(time.time() * 1000))


class StabilityClock:
    """Wall-clock deadline for scenarios that loop until their run time is over."""

    def __init__(self, clock: Callable[[], int] = get_time_ms) -> None:
        self._clock = clock
        self.end_time_ms: Optional[int] = None

    def start(self, duration_ms: int) -> int:
        if duration_ms < 0:
            raise ValueError("duration_ms must be >= 0")
        self.end_time_ms = self._clock() + duration_ms
        return self.end_time_ms

    def time_to_finish(self, end_ms: Optional[int] = None) -> bool:
        """True once the clock has passed ``end_ms`` (or the started deadline)."""
        deadline = end_ms if end_ms is not None else self.end_time_ms
        if deadline is None:
            raise RuntimeError("Stability clock has not been started")
        return self._clock() > deadline

    def remaining_ms(self) -> int:
        if self.end_time_ms is None:
            return 0
        return max(0, self.end_time_ms - self._clock())


__all__ = ["get_time_ms", "StabilityClock"]
