from __future__ import annotations

import logging
from concurrent.futures import Executor
from datetime import datetime, timedelta
from typing import Callable

from bandwidth_monitor.analytics.aggregator import (
    Totals,
    current_cycle_totals,
    data_cap_status,
    trailing_24h,
)
from bandwidth_monitor.analytics.formatting import format_peak, format_rate
from bandwidth_monitor.core.config import AppConfig
from bandwidth_monitor.core.throttle import Throttle
from bandwidth_monitor.core.utils import utc_now
from bandwidth_monitor.engine.delta import DeltaEngine, DeltaResult, PeakTracker
from bandwidth_monitor.engine.state import (
    EngineSnapshot,
    RateSnapshot,
    RecentBuffer,
    RecentSample,
    UsageReport,
)
from bandwidth_monitor.monitoring.interfaces import (
    InterfaceSource,
    PsutilInterfaceSource,
    RawSample,
    filter_interfaces,
)
from bandwidth_monitor.persistence.history_store import HistoryStore
from bandwidth_monitor.persistence.models import HistorySample

DATA_CAP_CHECK_SECONDS = 60.0


class Sampler:
    """
    One poll-sample-compute-publish cycle per call to tick().

    Owns all engine state and is not thread-safe; MonitorEngine serializes
    access to it.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        source: InterfaceSource,
        store: HistoryStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store
        self._clock = clock
        self._log = logging.getLogger("bandwidth_monitor.sampler")

        self.peaks = PeakTracker()
        self.delta = DeltaEngine(peaks=self.peaks)
        self.recent = RecentBuffer(timedelta(seconds=config.sampling.recent_window_seconds))
        self.rates = self._zero_rates(clock())
        self.last_result: DeltaResult | None = None
        self.ticks = 0

        self._cap_throttle = Throttle(
            throttle_seconds=DATA_CAP_CHECK_SECONDS,
            clock=lambda: self._clock().timestamp(),
        )
        self._cap_warned_cycle: datetime | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        source: InterfaceSource | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "Sampler":
        store = HistoryStore(
            config.persistence.resolved_state_path(),
            retention=timedelta(days=config.persistence.retention_days),
            save_throttle_seconds=config.persistence.save_throttle_seconds,
            clock=clock,
            executor=executor,
        )
        return cls(config, source=source or PsutilInterfaceSource(), store=store, clock=clock)

    # ---- lifecycle ----

    def load(self) -> None:
        self.store.load()

    def tick(self) -> DeltaResult:
        now = self._clock()
        filtered = filter_interfaces(self._read_source(), self.config.interfaces.selection())
        result = self.delta.tick(filtered, now)
        self.last_result = result
        self.ticks += 1

        if result.first:
            self.rates = self._zero_rates(now)
            return result

        self.store.add_totals(result.delta_rx, result.delta_tx)
        self.store.append(HistorySample(timestamp=now, rx=result.rx, tx=result.tx))
        self.store.persist()

        self.recent.append(RecentSample(now, result.delta_rx, result.delta_tx, result.elapsed_seconds))
        self.rates = RateSnapshot(
            download_label=self._fmt(result.delta_rx, result.elapsed_seconds),
            upload_label=self._fmt(result.delta_tx, result.elapsed_seconds),
            timestamp=now,
        )
        self._check_data_cap(now)
        return result

    def apply_config(self, config: AppConfig) -> None:
        self.config = config
        self.store.configure(
            retention=timedelta(days=config.persistence.retention_days),
            save_throttle_seconds=config.persistence.save_throttle_seconds,
        )
        self.recent.window = timedelta(seconds=config.sampling.recent_window_seconds)
        self._cap_warned_cycle = None
        self._cap_throttle.clear()

    def reset(self) -> None:
        """Clear history, totals, peaks and baselines, then persist immediately."""
        self.store.reset()
        self.peaks.reset()
        self.delta.reset()
        self.recent.clear()
        self.last_result = None
        self._cap_warned_cycle = None
        self.rates = self._zero_rates(self._clock())
        self._log.info("totals reset")

    def rebase(self) -> None:
        """Treat the next tick as a first sample, keeping history and totals."""
        self.delta.reset()

    def flush(self) -> None:
        self.store.persist(force=True, wait=True)

    # ---- outputs ----

    def snapshot(self) -> EngineSnapshot:
        display = self.config.display
        down, up = self.store.totals_all_time
        result = self.last_result
        return EngineSnapshot(
            rates=self.rates,
            ticks=self.ticks,
            last_tick_at=self.rates.timestamp if self.ticks else None,
            peak_download_bps=self.peaks.peak_download_bps,
            peak_upload_bps=self.peaks.peak_upload_bps,
            peak_download_label=format_peak(
                self.peaks.peak_download_bps, display.show_bits, display.use_si, display.iec_rate_labels
            ),
            peak_upload_label=format_peak(
                self.peaks.peak_upload_bps, display.show_bits, display.use_si, display.iec_rate_labels
            ),
            total_download_all_time=down,
            total_upload_all_time=up,
            interfaces=sorted(result.names) if result else [],
            per_interface=list(result.per_interface) if result else [],
            recent=list(self.recent),
        )

    def usage(self, now: datetime | None = None) -> UsageReport:
        now = now or self._clock()
        history = self.store.history
        cap = self.config.data_cap
        cycle_start, cycle = current_cycle_totals(history, now, cap.billing_day, cap.tzinfo())
        down, up = self.store.totals_all_time
        return UsageReport(
            generated_at=now,
            all_time=Totals(download=down, upload=up),
            last_24h=trailing_24h(history, now),
            cycle_start=cycle_start,
            current_cycle=cycle,
            data_cap=data_cap_status(cycle, cap.cap_gb, cycle_start) if cap.enabled else None,
        )

    # ---- internals ----

    def _read_source(self) -> list[RawSample]:
        try:
            return list(self.source.read())
        except Exception as exc:
            self._log.warning("snapshot read failed", extra={"error": str(exc)})
            return []

    def _fmt(self, delta_bytes: int, elapsed: float) -> str:
        d = self.config.display
        return format_rate(delta_bytes, elapsed, d.show_bits, d.use_si, d.iec_rate_labels)

    def _zero_rates(self, now: datetime) -> RateSnapshot:
        label = self._fmt(0, 1.0)
        return RateSnapshot(download_label=label, upload_label=label, timestamp=now)

    def _check_data_cap(self, now: datetime) -> None:
        cap = self.config.data_cap
        if not cap.enabled or not self._cap_throttle.allow("data_cap"):
            return
        cycle_start, cycle = current_cycle_totals(self.store.history, now, cap.billing_day, cap.tzinfo())
        status = data_cap_status(cycle, cap.cap_gb, cycle_start)
        if status.exceeded and self._cap_warned_cycle != cycle_start:
            self._cap_warned_cycle = cycle_start
            self._log.warning(
                "data cap exceeded",
                extra={
                    "used_bytes": status.used_bytes,
                    "cap_bytes": status.cap_bytes,
                    "cycle_start": cycle_start.isoformat(),
                },
            )
