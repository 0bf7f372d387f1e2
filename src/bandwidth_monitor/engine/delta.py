from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from bandwidth_monitor.analytics.aggregator import safe_delta
from bandwidth_monitor.analytics.formatting import MIN_ELAPSED_SECONDS
from bandwidth_monitor.monitoring.interfaces import RawSample, aggregate


@dataclass
class PeakTracker:
    """Highest rates (bytes per second) seen since launch or reset."""

    peak_download_bps: float = 0.0
    peak_upload_bps: float = 0.0

    def observe(self, download_bps: float, upload_bps: float) -> bool:
        changed = False
        if download_bps > self.peak_download_bps:
            self.peak_download_bps = download_bps
            changed = True
        if upload_bps > self.peak_upload_bps:
            self.peak_upload_bps = upload_bps
            changed = True
        return changed

    def reset(self) -> None:
        self.peak_download_bps = 0.0
        self.peak_upload_bps = 0.0


@dataclass(frozen=True)
class InterfaceRate:
    name: str
    rx_bps: float
    tx_bps: float


@dataclass(frozen=True)
class DeltaResult:
    delta_rx: int
    delta_tx: int
    elapsed_seconds: float
    rx: int
    tx: int
    names: frozenset[str]
    first: bool = False
    interfaces_changed: bool = False
    per_interface: tuple[InterfaceRate, ...] = ()

    @property
    def download_bps(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.delta_rx / self.elapsed_seconds

    @property
    def upload_bps(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.delta_tx / self.elapsed_seconds


@dataclass
class DeltaEngine:
    """
    Turns successive filtered snapshots into byte deltas.

    The first tick after construction or reset() only records a baseline.
    A tick whose interface set differs from the previous one emits a zero
    delta and rebases, since the aggregate counters are not comparable.
    Otherwise each direction uses safe_delta, so a counter that went down
    contributes its new value.
    """

    peaks: PeakTracker = field(default_factory=PeakTracker)
    prev_rx: int = 0
    prev_tx: int = 0
    prev_time: datetime | None = None
    prev_names: frozenset[str] = frozenset()
    first_sample: bool = True
    _prev_per_interface: dict[str, tuple[int, int]] = field(default_factory=dict)
    _log: Any = field(default_factory=lambda: logging.getLogger("bandwidth_monitor.delta"))

    def tick(self, filtered: Sequence[RawSample], now: datetime) -> DeltaResult:
        rx, tx, names = aggregate(filtered)

        if self.first_sample or self.prev_time is None:
            self._rebase(filtered, rx, tx, names, now)
            self.first_sample = False
            return DeltaResult(0, 0, 0.0, rx, tx, names, first=True)

        elapsed = max(MIN_ELAPSED_SECONDS, (now - self.prev_time).total_seconds())

        if names != self.prev_names:
            self._log.info(
                "interface set changed",
                extra={"added": sorted(names - self.prev_names), "removed": sorted(self.prev_names - names)},
            )
            self._rebase(filtered, rx, tx, names, now)
            return DeltaResult(0, 0, elapsed, rx, tx, names, interfaces_changed=True)

        delta_rx = safe_delta(rx, self.prev_rx)
        delta_tx = safe_delta(tx, self.prev_tx)
        per_interface = self._per_interface_rates(filtered, elapsed)
        self._rebase(filtered, rx, tx, names, now)

        self.peaks.observe(delta_rx / elapsed, delta_tx / elapsed)
        return DeltaResult(delta_rx, delta_tx, elapsed, rx, tx, names, per_interface=per_interface)

    def reset(self) -> None:
        self.prev_rx = 0
        self.prev_tx = 0
        self.prev_time = None
        self.prev_names = frozenset()
        self.first_sample = True
        self._prev_per_interface = {}

    def _per_interface_rates(self, filtered: Sequence[RawSample], elapsed: float) -> tuple[InterfaceRate, ...]:
        out: list[InterfaceRate] = []
        for s in sorted(filtered, key=lambda r: r.interface_name):
            prev = self._prev_per_interface.get(s.interface_name)
            if prev is None:
                continue
            out.append(
                InterfaceRate(
                    name=s.interface_name,
                    rx_bps=safe_delta(s.bytes_in, prev[0]) / elapsed,
                    tx_bps=safe_delta(s.bytes_out, prev[1]) / elapsed,
                )
            )
        return tuple(out)

    def _rebase(
        self,
        filtered: Sequence[RawSample],
        rx: int,
        tx: int,
        names: frozenset[str],
        now: datetime,
    ) -> None:
        self.prev_rx = rx
        self.prev_tx = tx
        self.prev_time = now
        self.prev_names = names
        self._prev_per_interface = {s.interface_name: (s.bytes_in, s.bytes_out) for s in filtered}
