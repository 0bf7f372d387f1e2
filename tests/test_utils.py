from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from bandwidth_monitor.core.utils import JsonFormatter, safe_json_dumps, setup_logging, wrapping_add


def test_json_formatter_merges_extras() -> None:
    record = logging.LogRecord("bandwidth_monitor.history", logging.WARNING, __file__, 1, "write failed", None, None)
    record.path = Path("/tmp/history.json")
    out = json.loads(JsonFormatter().format(record))
    assert out["level"] == "WARNING"
    assert out["logger"] == "bandwidth_monitor.history"
    assert out["msg"] == "write failed"
    assert out["path"] == "/tmp/history.json"
    assert "lineno" not in out
    assert "args" not in out


def test_safe_json_dumps_datetimes_are_utc() -> None:
    naive = datetime(2026, 5, 1, 12, 0)
    assert json.loads(safe_json_dumps({"t": naive})) == {"t": "2026-05-01T12:00:00+00:00"}
    assert json.loads(safe_json_dumps({"s": {"b", "a"}})) == {"s": ["a", "b"]}


def test_wrapping_add_wraps_at_uint64() -> None:
    assert wrapping_add(2**64 - 1, 2) == 1


def test_setup_logging_writes_text_and_jsonl(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(tmp_path / "logs", level="debug")
        logging.getLogger("bandwidth_monitor.test").info("hello", extra={"samples": 3})
        for h in root.handlers:
            h.flush()
        assert "hello" in (tmp_path / "logs" / "bandwidth_monitor.log").read_text(encoding="utf-8")
        line = (tmp_path / "logs" / "bandwidth_monitor.jsonl").read_text(encoding="utf-8").strip().splitlines()[-1]
        assert json.loads(line)["samples"] == 3
        assert root.level == logging.DEBUG
    finally:
        for h in root.handlers:
            h.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
