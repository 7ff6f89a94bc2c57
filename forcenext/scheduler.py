"""
Timer queue for the single poll loop. Nothing here sleeps: the loop calls
run_due() on every iteration and due callbacks run in deadline order.
"""

import heapq
import itertools
import logging
import time
from typing import Callable, List, Optional


class Timer:
    __slots__ = ("due", "seq", "callback", "cancelled", "fired")

    def __init__(self, due: float, seq: int, callback: Callable[[], None]):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def __lt__(self, other: "Timer") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class Scheduler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[Timer] = []
        self._seq = itertools.count()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Timer:
        timer = Timer(self._clock() + max(0.0, delay_ms) / 1000.0, next(self._seq), callback)
        heapq.heappush(self._heap, timer)
        return timer

    def run_due(self) -> int:
        """Run every timer whose deadline has passed. Returns how many fired."""
        fired = 0
        now = self._clock()
        while self._heap and self._heap[0].due <= now:
            timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            timer.fired = True
            fired += 1
            try:
                timer.callback()
            except Exception as e:
                logging.error(f"Timer callback failed: {e}")
        return fired

    def next_due_in(self) -> Optional[float]:
        """Seconds until the next live timer, or None when idle."""
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
        if not self._heap:
            return None
        return max(0.0, self._heap[0].due - self._clock())

    def pending(self) -> int:
        return sum(1 for t in self._heap if t.active)
