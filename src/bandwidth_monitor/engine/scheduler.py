from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from bandwidth_monitor.core.config import MAX_INTERVAL_SECONDS, MIN_INTERVAL_SECONDS
from bandwidth_monitor.core.utils import clamp


@dataclass
class TickScheduler:
    """
    Deadline-based periodic timer.

    Deadlines advance by whole intervals so ticks do not drift; when the
    owner falls behind, missed ticks are skipped rather than replayed.
    """

    interval_seconds: float = 1.0
    clock: Callable[[], float] = time.monotonic
    _next_due: float | None = None

    def __post_init__(self) -> None:
        self.interval_seconds = clamp(float(self.interval_seconds), MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS)

    def start(self) -> None:
        self._next_due = self.clock()

    def stop(self) -> None:
        self._next_due = None

    def reschedule(self, interval_seconds: float) -> None:
        self.interval_seconds = clamp(float(interval_seconds), MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS)
        if self._next_due is not None:
            self._next_due = self.clock() + self.interval_seconds

    def seconds_until_due(self) -> float | None:
        if self._next_due is None:
            return None
        return max(0.0, self._next_due - self.clock())

    def poll(self) -> bool:
        """Return True (and advance the deadline) if a tick is due."""
        if self._next_due is None:
            return False
        now = self.clock()
        if now < self._next_due:
            return False
        self._next_due += self.interval_seconds
        if self._next_due <= now:
            self._next_due = now + self.interval_seconds
        return True
