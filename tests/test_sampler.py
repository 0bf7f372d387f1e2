from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from bandwidth_monitor.analytics.aggregator import Totals
from bandwidth_monitor.core.config import AppConfig
from bandwidth_monitor.engine.sampler import Sampler
from bandwidth_monitor.monitoring.interfaces import RawSample

T0 = datetime(2026, 4, 20, 8, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class _FakeSource:
    def __init__(self) -> None:
        self.next: list[RawSample] = []
        self.fail = False

    def read(self) -> list[RawSample]:
        if self.fail:
            raise OSError("getifaddrs failed")
        return list(self.next)


def _sampler(tmp_path: Path, *, bits: bool = False, **overrides) -> tuple[Sampler, _FakeSource, _Clock]:
    cfg = AppConfig().merged(
        {
            "display": {"show_bits": bits, "use_si": True},
            "persistence": {"state_path": str(tmp_path / "history.json")},
            **overrides,
        }
    )
    source = _FakeSource()
    clock = _Clock(T0)
    sampler = Sampler.from_config(cfg, source=source, clock=clock)
    sampler.load()
    return sampler, source, clock


def test_first_tick_then_rates(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)

    source.next = [RawSample("en0", 100, 50)]
    first = sampler.tick()
    assert (first.delta_rx, first.delta_tx) == (0, 0)
    assert sampler.rates.download_label == "0 B/s"
    assert sampler.rates.upload_label == "0 B/s"
    assert len(sampler.store) == 0

    clock.advance(1.0)
    source.next = [RawSample("en0", 1100, 550)]
    second = sampler.tick()
    assert (second.delta_rx, second.delta_tx) == (1000, 500)
    assert sampler.rates.download_label == "1 kB/s"
    assert sampler.rates.upload_label == "500 B/s"
    assert sampler.store.totals_all_time == (1000, 500)
    assert [(s.rx, s.tx) for s in sampler.store.history] == [(1100, 550)]
    assert sampler.peaks.peak_download_bps == 1000.0


def test_bits_mode_labels(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path, bits=True)
    source.next = [RawSample("en0", 0, 0)]
    sampler.tick()
    assert sampler.rates.download_label == "0 bps"
    clock.advance(1.0)
    source.next = [RawSample("en0", 1_000_000, 1000)]
    sampler.tick()
    assert sampler.rates.download_label == "8.00 Mbps"
    assert sampler.rates.upload_label == "8 kbps"


def test_default_filter_ignores_tunnels(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    source.next = [RawSample("en0", 0, 0), RawSample("utun2", 0, 0)]
    sampler.tick()
    clock.advance(1)
    source.next = [RawSample("en0", 10, 10), RawSample("utun2", 10_000, 10_000)]
    r = sampler.tick()
    assert (r.delta_rx, r.delta_tx) == (10, 10)
    assert r.names == frozenset({"en0"})


def test_history_and_window_agree_with_totals(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    counters = [0, 100, 250, 40, 90]  # includes one reset
    for i, c in enumerate(counters):
        source.next = [RawSample("en0", c, c // 2)]
        sampler.tick()
        clock.advance(1)
    usage = sampler.usage()
    down, up = sampler.store.totals_all_time
    assert down == 100 + 150 + 40 + 50
    assert usage.last_24h == Totals(download=down - 100, upload=up - 50)
    assert usage.all_time == Totals(download=down, upload=up)


def test_snapshot_read_failure_degrades_to_zero(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    source.next = [RawSample("en0", 0, 0)]
    sampler.tick()
    clock.advance(1)
    source.fail = True
    r = sampler.tick()
    assert (r.delta_rx, r.delta_tx) == (0, 0)
    assert r.interfaces_changed is True


def test_reset_clears_everything_and_persists(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    for c in (0, 1_000, 5_000):
        source.next = [RawSample("en0", c, c)]
        sampler.tick()
        clock.advance(1)

    sampler.reset()
    assert len(sampler.store) == 0
    assert sampler.store.totals_all_time == (0, 0)
    assert sampler.peaks.peak_download_bps == 0.0
    assert len(sampler.recent) == 0
    assert sampler.delta.first_sample is True

    source.next = [RawSample("en0", 9_000, 9_000)]
    r = sampler.tick()
    assert r.first is True

    reloaded, _, _ = _sampler(tmp_path)
    assert len(reloaded.store) == 0
    assert reloaded.store.totals_all_time == (0, 0)


def test_state_survives_restart(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    for c in (0, 500, 800):
        source.next = [RawSample("en0", c, c)]
        sampler.tick()
        clock.advance(1)
    sampler.flush()

    restarted, source2, _ = _sampler(tmp_path)
    assert restarted.store.totals_all_time == (800, 800)
    source2.next = [RawSample("en0", 10, 10)]
    assert restarted.tick().first is True


def test_recent_buffer_is_bounded(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path, sampling={"recent_window_seconds": 10})
    for c in range(30):
        source.next = [RawSample("en0", c * 100, c * 10)]
        sampler.tick()
        clock.advance(1)
    samples = list(sampler.recent)
    assert 10 <= len(samples) <= 11
    assert samples[-1].rates() == (100.0, 10.0)


def test_usage_reports_data_cap(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(
        tmp_path,
        data_cap={"enabled": True, "cap_gb": 0.000001, "billing_day": 1, "timezone": "UTC"},
    )
    for c in (0, 600, 1_200, 1_800):
        source.next = [RawSample("en0", c, 0)]
        sampler.tick()
        clock.advance(1)
    usage = sampler.usage()
    assert usage.cycle_start == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert usage.data_cap is not None
    assert usage.data_cap.cap_bytes == 1_000
    assert usage.data_cap.used_bytes == 1_200
    assert usage.data_cap.exceeded is True


def test_snapshot_exposes_outputs(tmp_path: Path) -> None:
    sampler, source, clock = _sampler(tmp_path)
    source.next = [RawSample("en0", 0, 0), RawSample("en1", 0, 0)]
    sampler.tick()
    clock.advance(2)
    source.next = [RawSample("en0", 2_000, 0), RawSample("en1", 0, 4_000)]
    sampler.tick()

    snap = sampler.snapshot()
    assert snap.ticks == 2
    assert snap.interfaces == ["en0", "en1"]
    assert snap.total_download_all_time == 2_000
    assert snap.peak_download_label == "1 kB/s"
    assert snap.peak_upload_label == "2 kB/s"
    assert [p.name for p in snap.per_interface] == ["en0", "en1"]
    assert len(snap.recent) == 1
