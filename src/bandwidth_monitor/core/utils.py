from __future__ import annotations

import dataclasses
import json
import logging
import os
import platform
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping

UINT64_MAX = 2**64 - 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def wrapping_add(a: int, b: int) -> int:
    """Add two counters with uint64 wraparound."""
    return (a + b) & UINT64_MAX


def safe_json_dumps(obj: Any) -> str:
    def _default(o: Any) -> Any:
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        if isinstance(o, datetime):
            # naive datetimes are UTC throughout this package
            return (o if o.tzinfo else o.replace(tzinfo=timezone.utc)).astimezone(timezone.utc).isoformat()
        if hasattr(o, "model_dump"):
            return o.model_dump()
        if isinstance(o, Path):
            return str(o)
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return str(o)

    return json.dumps(obj, default=_default, ensure_ascii=False, separators=(",", ":"))


# attributes every LogRecord carries; anything else came in via ``extra``
_RESERVED_RECORD_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line with the record's extras merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_RECORD_KEYS:
                continue
            payload[key] = value
        return safe_json_dumps(payload)


LOG_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _rotating(path: Path, max_bytes: int, backups: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: str | Path, level: str = "INFO") -> None:
    """Console plus rotating text and JSONL files under ``log_dir``; replaces root handlers."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    level_num = getattr(logging, level.upper(), logging.INFO)
    text = logging.Formatter(fmt=LOG_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(stream=sys.stdout)
    console.setFormatter(text)
    handlers: list[logging.Handler] = [
        console,
        _rotating(log_dir / "bandwidth_monitor.log", 5_000_000, 5, text),
        _rotating(log_dir / "bandwidth_monitor.jsonl", 10_000_000, 3, JsonFormatter()),
    ]

    root = logging.getLogger()
    root.setLevel(level_num)
    root.handlers.clear()
    for h in handlers:
        h.setLevel(level_num)
        root.addHandler(h)


def env_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def platform_summary() -> Mapping[str, Any]:
    return {
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "machine": platform.machine(),
    }
