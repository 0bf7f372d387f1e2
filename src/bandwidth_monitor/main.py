from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from bandwidth_monitor.analytics.formatting import format_total
from bandwidth_monitor.core.config import AppConfig, load_config
from bandwidth_monitor.core.utils import platform_summary, safe_json_dumps, setup_logging
from bandwidth_monitor.engine.monitor_engine import MonitorEngine
from bandwidth_monitor.engine.sampler import Sampler
from bandwidth_monitor.engine.state import EngineSnapshot, UsageReport


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="bandwidth-monitor")
    p.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    p.add_argument("--interval", type=float, default=None, help="Override sampling interval (seconds)")
    p.add_argument("--log-level", type=str, default=None)
    p.add_argument(
        "--report",
        action="store_true",
        help="Print stored usage totals as JSON and exit without sampling",
    )
    return p.parse_args(argv)


def usage_payload(report: UsageReport, config: AppConfig) -> dict[str, object]:
    use_si = config.display.use_si
    labels = {
        "all_time_download": format_total(report.all_time.download, use_si),
        "all_time_upload": format_total(report.all_time.upload, use_si),
        "last_24h_download": format_total(report.last_24h.download, use_si),
        "last_24h_upload": format_total(report.last_24h.upload, use_si),
    }
    payload: dict[str, object] = {
        "generated_at": report.generated_at,
        "all_time": report.all_time,
        "last_24h": report.last_24h,
        "cycle_start": report.cycle_start,
        "current_cycle": report.current_cycle,
        "labels": labels,
    }
    if report.data_cap is not None:
        payload["data_cap"] = report.data_cap
        labels["cycle_used"] = format_total(report.data_cap.used_bytes, use_si)
        labels["cycle_remaining"] = format_total(report.data_cap.remaining_bytes, use_si)
    return payload


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    config = load_config(args.config)
    if args.interval is not None:
        config = config.merged({"sampling": {"interval_seconds": args.interval}})

    if args.report:
        sampler = Sampler.from_config(config)
        sampler.load()
        print(safe_json_dumps(usage_payload(sampler.usage(), config)))
        return 0

    setup_logging(config.logging.log_dir, level=args.log_level or config.logging.level)
    log = logging.getLogger("bandwidth_monitor")
    log.info(
        "starting",
        extra={
            "platform": dict(platform_summary()),
            "state_path": str(config.persistence.resolved_state_path()),
        },
    )

    rate_log = logging.getLogger("bandwidth_monitor.rates")

    def _on_update(snap: EngineSnapshot) -> None:
        if snap.rates is None:
            return
        rate_log.info(
            f"↓ {snap.rates.download_label} ↑ {snap.rates.upload_label}",
            extra={"interfaces": snap.interfaces},
        )

    engine = MonitorEngine(config=config, on_update=_on_update)
    done = threading.Event()

    def _handle_sig(signum: int, _frame: object) -> None:
        if done.is_set():
            return
        done.set()
        log.warning("shutdown requested", extra={"signal": signum})
        engine.request_stop()

    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)

    engine.start()
    while not done.wait(timeout=0.5):
        if not engine.running:
            break
    engine.stop()

    log.info("stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
