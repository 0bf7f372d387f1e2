from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from bandwidth_monitor.analytics.aggregator import safe_delta_array
from bandwidth_monitor.core.config import load_config
from bandwidth_monitor.persistence.history_store import HistoryStore
from bandwidth_monitor.persistence.models import HistorySample


def history_frame(history: Sequence[HistorySample]) -> pd.DataFrame:
    """Samples as a frame, with per-row deltas under the counter reset rule."""
    df = pd.DataFrame(
        {
            "timestamp": [s.timestamp.isoformat() for s in history],
            "rx": np.array([s.rx for s in history], dtype=np.uint64),
            "tx": np.array([s.tx for s in history], dtype=np.uint64),
        }
    )
    for col in ("rx", "tx"):
        counters = df[col].to_numpy(dtype=np.uint64)
        deltas = safe_delta_array(counters) if len(counters) > 1 else np.array([], dtype=np.uint64)
        df[f"delta_{col}"] = np.concatenate([np.zeros(min(len(counters), 1), dtype=np.uint64), deltas])
    return df


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="export_history_csv")
    p.add_argument("--config", type=str, default=None)
    p.add_argument("--out", type=str, default="history.csv")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    cfg = load_config(args.config)
    store = HistoryStore(cfg.persistence.resolved_state_path())
    state = store.load()
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = history_frame(state.history)
    df.to_csv(out, index=False)
    print(f"Wrote {len(df)} rows to {out}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
