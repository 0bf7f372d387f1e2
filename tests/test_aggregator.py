from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from bandwidth_monitor.analytics.aggregator import (
    Totals,
    billing_cycle_start,
    current_cycle_totals,
    data_cap_status,
    safe_delta,
    trailing_24h,
    windowed_totals,
)
from bandwidth_monitor.persistence.models import HistorySample

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


def _hist(*points: tuple[float, int, int]) -> list[HistorySample]:
    """(hours before NOW, rx, tx) -> samples, oldest first."""
    return [HistorySample(NOW - timedelta(hours=h), rx, tx) for h, rx, tx in points]


def test_safe_delta() -> None:
    assert safe_delta(10, 4) == 6
    assert safe_delta(4, 4) == 0
    assert safe_delta(3, 10) == 3


def test_empty_and_single_sample_totals() -> None:
    assert windowed_totals([], NOW) == Totals()
    assert windowed_totals(_hist((1, 100, 100)), NOW - timedelta(days=1)) == Totals()


def test_trailing_24h_uses_pair_with_later_sample_in_window() -> None:
    history = _hist(
        (30, 0, 0),
        (25, 1_000, 100),
        (23, 1_500, 150),  # pair (25h, 23h) counts: later sample inside window
        (2, 2_500, 400),
        (1, 2_600, 450),
    )
    assert trailing_24h(history, NOW) == Totals(download=1_600, upload=350)


def test_reset_inside_window_counts_new_value() -> None:
    history = _hist((3, 5_000, 5_000), (2, 6_000, 5_500), (1, 200, 100))
    assert windowed_totals(history, NOW - timedelta(hours=24)) == Totals(download=1_200, upload=600)


def test_windowed_totals_is_idempotent() -> None:
    history = _hist((5, 0, 0), (4, 10, 20), (3, 5, 25), (2, 50, 60))
    since = NOW - timedelta(hours=4, minutes=30)
    assert windowed_totals(history, since) == windowed_totals(history, since)


def test_large_counters_do_not_lose_precision() -> None:
    big = 2**63 + 12345
    history = _hist((2, big, big), (1, big + 7, big + 9))
    assert windowed_totals(history, NOW - timedelta(days=1)) == Totals(download=7, upload=9)


def test_window_after_all_samples_is_zero() -> None:
    history = _hist((5, 0, 0), (4, 10, 20))
    assert windowed_totals(history, NOW) == Totals()


def test_billing_cycle_before_billing_day_starts_previous_month() -> None:
    now = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 15, timezone.utc) == datetime(2026, 2, 15, tzinfo=timezone.utc)


def test_billing_cycle_after_billing_day_starts_this_month() -> None:
    now = datetime(2026, 3, 20, 9, 30, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 15, timezone.utc) == datetime(2026, 3, 15, tzinfo=timezone.utc)


def test_billing_cycle_on_billing_day_starts_today() -> None:
    now = datetime(2026, 3, 15, 0, 0, 1, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 15, timezone.utc) == datetime(2026, 3, 15, tzinfo=timezone.utc)


def test_billing_cycle_january_rolls_back_a_year() -> None:
    now = datetime(2026, 1, 3, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 5, timezone.utc) == datetime(2025, 12, 5, tzinfo=timezone.utc)


def test_billing_day_is_clamped() -> None:
    now = datetime(2026, 3, 30, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 31, timezone.utc) == datetime(2026, 3, 28, tzinfo=timezone.utc)
    assert billing_cycle_start(now, 0, timezone.utc) == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_billing_cycle_uses_local_calendar() -> None:
    # 02:00 UTC on the 15th is still the 14th in New York
    now = datetime(2026, 3, 15, 2, 0, tzinfo=timezone.utc)
    tz = ZoneInfo("America/New_York")
    start = billing_cycle_start(now, 15, tz)
    assert start == datetime(2026, 2, 15, tzinfo=tz)


@pytest.fixture
def new_york_local(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset unavailable")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_system_local_cycle_start_follows_dst(new_york_local) -> None:
    # DST began 2026-03-08; the cycle started on 03-01 under EST (UTC-5)
    now = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
    start = billing_cycle_start(now, 1)
    assert start.utcoffset() == timedelta(hours=-5)
    assert start == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)


def test_current_cycle_totals() -> None:
    history = [
        HistorySample(datetime(2026, 3, 14, 23, tzinfo=timezone.utc), 100, 100),
        HistorySample(datetime(2026, 3, 15, 1, tzinfo=timezone.utc), 300, 200),
        HistorySample(datetime(2026, 3, 16, 1, tzinfo=timezone.utc), 400, 260),
    ]
    start, totals = current_cycle_totals(history, NOW, 15, timezone.utc)
    assert start == datetime(2026, 3, 15, tzinfo=timezone.utc)
    assert totals == Totals(download=300, upload=160)


def test_data_cap_status() -> None:
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    status = data_cap_status(Totals(download=600_000_000, upload=100_000_000), 1.0, start)
    assert status.cap_bytes == 1_000_000_000
    assert status.used_bytes == 700_000_000
    assert status.remaining_bytes == 300_000_000
    assert status.exceeded is False

    over = data_cap_status(Totals(download=2_000_000_000, upload=0), 1.0, start)
    assert over.remaining_bytes == 0
    assert over.exceeded is True
