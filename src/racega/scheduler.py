"""Task queue keyed by simulated time, polled once per tick."""
from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(order=True)
class ScheduledTask:
    due: float
    seq: int
    callback: Callable[[], Any] = field(compare=False)
    interval: Optional[float] = field(default=None, compare=False)
    name: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class SimScheduler:
    """Delayed and periodic callbacks driven by simulated, not wall-clock, time."""

    def __init__(self, start_time: float = 0.0) -> None:
        self.now = float(start_time)
        self._queue: List[ScheduledTask] = []
        self._seq = itertools.count()

    def call_at(self, when: float, callback: Callable[[], Any], *, name: str = "") -> ScheduledTask:
        task = ScheduledTask(float(when), next(self._seq), callback, None, name)
        heapq.heappush(self._queue, task)
        return task

    def call_later(self, delay: float, callback: Callable[[], Any], *, name: str = "") -> ScheduledTask:
        return self.call_at(self.now + max(float(delay), 0.0), callback, name=name)

    def call_soon(self, callback: Callable[[], Any], *, name: str = "") -> ScheduledTask:
        """Run at the next poll, after everything already due."""

        return self.call_at(self.now, callback, name=name)

    def call_every(
        self,
        interval: float,
        callback: Callable[[], Any],
        *,
        name: str = "",
        first_delay: Optional[float] = None,
    ) -> ScheduledTask:
        if interval <= 0.0:
            raise ValueError(f"interval must be positive, got {interval}")
        delay = interval if first_delay is None else first_delay
        task = ScheduledTask(self.now + delay, next(self._seq), callback, float(interval), name)
        heapq.heappush(self._queue, task)
        return task

    def run_due(self, now: Optional[float] = None) -> int:
        """Advance the clock to ``now`` and run every task due by then.

        Tasks scheduled by callbacks for a time ``<= now`` run in the same
        poll. Returns the number of callbacks executed.
        """

        if now is not None:
            self.now = max(self.now, float(now))
        executed = 0
        while self._queue and self._queue[0].due <= self.now:
            task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            if task.interval is not None:
                task.due += task.interval
                task.seq = next(self._seq)
                heapq.heappush(self._queue, task)
            task.callback()
            executed += 1
        return executed

    def pending(self) -> int:
        return sum(1 for task in self._queue if not task.cancelled)

    def clear(self) -> None:
        for task in self._queue:
            task.cancelled = True
        self._queue.clear()


__all__ = ["ScheduledTask", "SimScheduler"]
