from __future__ import annotations

import bisect
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Sequence

import numpy as np

from bandwidth_monitor.core.utils import UINT64_MAX, clamp
from bandwidth_monitor.persistence.models import HistorySample

BYTES_PER_GB = 1000**3


@dataclass(frozen=True)
class Totals:
    download: int = 0
    upload: int = 0

    @property
    def combined(self) -> int:
        return (self.download + self.upload) & UINT64_MAX


@dataclass(frozen=True)
class DataCapStatus:
    cap_bytes: int
    used_bytes: int
    remaining_bytes: int
    cycle_start: datetime
    exceeded: bool


def safe_delta(newer: int, older: int) -> int:
    """
    Difference of two cumulative counters.

    A counter that went down was reset (interface restart, driver reset or
    overflow); the newer reading is then taken as the bytes since the reset.
    This is an approximation that the delta engine shares.
    """
    if newer >= older:
        return newer - older
    return newer


def safe_delta_array(counters: np.ndarray) -> np.ndarray:
    newer = counters[1:]
    older = counters[:-1]
    # uint64 subtraction wraps where newer < older; those lanes take ``newer``
    return np.where(newer >= older, newer - older, newer)


def windowed_totals(history: Sequence[HistorySample], since: datetime) -> Totals:
    """Sum of safe deltas over consecutive pairs whose later sample is >= since."""
    if len(history) < 2:
        return Totals()
    first = bisect.bisect_left(history, since, key=lambda s: s.timestamp)
    start = max(first, 1) - 1
    window = history[start:]
    if len(window) < 2:
        return Totals()

    rx = np.fromiter((s.rx for s in window), dtype=np.uint64, count=len(window))
    tx = np.fromiter((s.tx for s in window), dtype=np.uint64, count=len(window))
    # np.sum on uint64 wraps like the counters it adds
    down = int(safe_delta_array(rx).sum(dtype=np.uint64))
    up = int(safe_delta_array(tx).sum(dtype=np.uint64))
    return Totals(download=down, upload=up)


def trailing_24h(history: Sequence[HistorySample], now: datetime) -> Totals:
    return windowed_totals(history, now - timedelta(hours=24))


def billing_cycle_start(now: datetime, billing_day: int, tz: tzinfo | None = None) -> datetime:
    """
    Local midnight of the most recent ``billing_day`` at or before ``now``.

    ``billing_day`` is clamped to 1..28 so every month has it. With no
    ``tz`` the system's local zone is used, including its DST rules.
    """
    day = int(clamp(int(billing_day), 1, 28))
    local = now.astimezone(tz)
    year, month = local.year, local.month
    if local.day < day:
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    if tz is None:
        # naive astimezone() resolves the offset in effect on that date
        return datetime(year, month, day).astimezone()
    return datetime(year, month, day, tzinfo=tz)


def current_cycle_totals(
    history: Sequence[HistorySample],
    now: datetime,
    billing_day: int,
    tz: tzinfo | None = None,
) -> tuple[datetime, Totals]:
    start = billing_cycle_start(now, billing_day, tz)
    return start, windowed_totals(history, start)


def data_cap_status(cycle: Totals, cap_gb: float, cycle_start: datetime) -> DataCapStatus:
    cap_bytes = int(round(cap_gb * BYTES_PER_GB))
    used = cycle.combined
    remaining = cap_bytes - used if cap_bytes > used else 0
    return DataCapStatus(
        cap_bytes=cap_bytes,
        used_bytes=used,
        remaining_bytes=remaining,
        cycle_start=cycle_start,
        exceeded=cap_bytes > 0 and used >= cap_bytes,
    )
