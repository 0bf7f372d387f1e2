from __future__ import annotations

import argparse
import sys

from bandwidth_monitor.core.config import load_config
from bandwidth_monitor.monitoring.interfaces import PsutilInterfaceSource, filter_interfaces
from bandwidth_monitor.persistence.history_store import HistoryStore


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="doctor")
    p.add_argument("--config", type=str, default=None)
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    cfg = load_config(args.config)
    print(
        f"[OK] Config: interval={cfg.sampling.interval_seconds}s "
        f"bits={cfg.display.show_bits} si={cfg.display.use_si} "
        f"data_cap={'on' if cfg.data_cap.enabled else 'off'}"
    )

    raw = PsutilInterfaceSource().read()
    if not raw:
        print("[FAIL] No up, non-loopback interfaces reported")
        return 2
    print(f"[OK] Interfaces up: {len(raw)}")
    selection = cfg.interfaces.selection()
    kept = {s.interface_name for s in filter_interfaces(raw, selection)}
    for s in sorted(raw, key=lambda r: r.interface_name):
        mark = "+" if s.interface_name in kept else "-"
        print(f"  {mark} {s.interface_name}: in={s.bytes_in} out={s.bytes_out}")
    if not kept:
        print(f"[WARN] Filter keeps no interfaces (selection={sorted(selection) or 'default'})")

    path = cfg.persistence.resolved_state_path()
    if not path.exists():
        print(f"[WARN] No state file yet at {path}")
        return 0
    store = HistoryStore(path)
    state = store.load()
    print(
        f"[OK] State file {path}: samples={len(state.history)} "
        f"all_time_down={state.total_download_all_time} all_time_up={state.total_upload_all_time}"
    )
    if state.history:
        print(f"  first={state.history[0].timestamp.isoformat()} last={state.history[-1].timestamp.isoformat()}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
