from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional


@dataclass(frozen=True)
class BrowserEvent:
    peer: str
    name: str
    timestamp: float


class BrowserEventBus:
    """
    Named event subscription with blocking, consuming waits.

    Events of one peer are kept in emission order. Each successful
    :meth:`wait_for_event` consumes the oldest pending occurrence of that
    name, so the same name can be awaited any number of times in sequence.
    """

    def __init__(self, peer: str = "peer", clock: Callable[[], float] = time.monotonic) -> None:
        self._peer = peer
        self._clock = clock
        self._subscribed_at: Dict[str, float] = {}
        self._pending: Dict[str, Deque[BrowserEvent]] = {}
        self._history: List[BrowserEvent] = []
        self._condition = threading.Condition()

    @property
    def peer(self) -> str:
        return self._peer

    @property
    def subscriptions(self) -> tuple[str, ...]:
        with self._condition:
            return tuple(self._subscribed_at)

    @property
    def history(self) -> tuple[BrowserEvent, ...]:
        with self._condition:
            return tuple(self._history)

    def pending(self, name: str) -> int:
        with self._condition:
            return len(self._pending.get(name, ()))

    def subscribe(self, *names: str) -> None:
        now = self._clock()
        with self._condition:
            for name in names:
                if name not in self._subscribed_at:
                    self._subscribed_at[name] = now
                    self._pending[name] = deque()

    def publish(self, name: str, timestamp: Optional[float] = None) -> bool:
        """Record an occurrence of ``name``. Returns ``False`` when the event is dropped."""
        stamp = self._clock() if timestamp is None else timestamp
        with self._condition:
            subscribed_at = self._subscribed_at.get(name)
            if subscribed_at is None or stamp < subscribed_at:
                return False
            event = BrowserEvent(peer=self._peer, name=name, timestamp=stamp)
            self._history.append(event)
            self._pending[name].append(event)
            self._condition.notify_all()
            return True

    def wait_for_event(
        self,
        name: str,
        timeout: Optional[float],
        *,
        pump: Optional[Callable[[], None]] = None,
        poll_interval: float = 0.05,
    ) -> bool:
        """
        Block until the next occurrence of ``name`` or until ``timeout`` elapses.

        Args:
            name: Subscribed event name.
            timeout: Seconds to wait; ``None`` waits forever.
            pump: Called between polls to pull events from a driver that can
                only be used from the waiting thread.
            poll_interval: Seconds between pump calls.
        """
        with self._condition:
            if name not in self._subscribed_at:
                raise ValueError(f"Event {name!r} is not subscribed on {self._peer}")

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if pump is not None:
                pump()
            with self._condition:
                if self._consume(name):
                    return True
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                wait = poll_interval if pump is not None else remaining
                if remaining is not None and wait is not None:
                    wait = min(wait, remaining)
                self._condition.wait(timeout=wait)
                if self._consume(name):
                    return True

    def _consume(self, name: str) -> bool:
        queue = self._pending.get(name)
        if not queue:
            return False
        queue.popleft()
        return True


__all__ = ["BrowserEvent", "BrowserEventBus"]
