from __future__ import annotations

import queue
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterator

from bandwidth_monitor.analytics.aggregator import DataCapStatus, Totals
from bandwidth_monitor.engine.delta import InterfaceRate


@dataclass(frozen=True)
class RateSnapshot:
    download_label: str
    upload_label: str
    timestamp: datetime


@dataclass(frozen=True)
class RecentSample:
    time: datetime
    down: int
    up: int
    elapsed_seconds: float

    def rates(self) -> tuple[float, float]:
        if self.elapsed_seconds <= 0:
            return 0.0, 0.0
        return self.down / self.elapsed_seconds, self.up / self.elapsed_seconds


class RecentBuffer:
    """Rolling in-memory window of per-tick deltas for sparklines. Never persisted."""

    def __init__(self, window: timedelta = timedelta(minutes=5)) -> None:
        self.window = window
        self._samples: deque[RecentSample] = deque()

    def append(self, sample: RecentSample) -> None:
        self._samples.append(sample)
        cutoff = sample.time - self.window
        while self._samples and self._samples[0].time < cutoff:
            self._samples.popleft()

    def clear(self) -> None:
        self._samples.clear()

    def __iter__(self) -> Iterator[RecentSample]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


@dataclass
class EngineSnapshot:
    rates: RateSnapshot | None = None
    running: bool = False
    ticks: int = 0
    last_tick_at: datetime | None = None
    last_tick_latency_ms: float | None = None

    peak_download_bps: float = 0.0
    peak_upload_bps: float = 0.0
    peak_download_label: str = ""
    peak_upload_label: str = ""

    total_download_all_time: int = 0
    total_upload_all_time: int = 0

    interfaces: list[str] = field(default_factory=list)
    per_interface: list[InterfaceRate] = field(default_factory=list)
    recent: list[RecentSample] = field(default_factory=list)

    last_events: list[str] = field(default_factory=list)
    last_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UsageReport:
    generated_at: datetime
    all_time: Totals
    last_24h: Totals
    cycle_start: datetime
    current_cycle: Totals
    data_cap: DataCapStatus | None = None


@dataclass(frozen=True)
class EngineCommand:
    kind: str  # apply_config | reset | quit
    payload: dict[str, Any] = field(default_factory=dict)


class CommandQueue:
    def __init__(self) -> None:
        self._q: "queue.Queue[EngineCommand]" = queue.Queue()

    def put(self, cmd: EngineCommand) -> None:
        self._q.put(cmd)

    def get(self, timeout: float | None = None) -> EngineCommand | None:
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None
