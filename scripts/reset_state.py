from __future__ import annotations

import argparse
import shutil
import sys
from datetime import datetime, timezone

from bandwidth_monitor.core.config import load_config


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="reset_state")
    p.add_argument("--config", type=str, default=None)
    p.add_argument("--no-backup", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    cfg = load_config(args.config)
    path = cfg.persistence.resolved_state_path()
    if not path.exists():
        print("State file not found; nothing to reset")
        return 0
    if args.no_backup:
        path.unlink()
        print(f"Removed {path}")
    else:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        backup = path.with_suffix(path.suffix + f".bak_{stamp}")
        shutil.move(str(path), str(backup))
        print(f"Moved state -> {backup}")
    print("Reset complete")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
