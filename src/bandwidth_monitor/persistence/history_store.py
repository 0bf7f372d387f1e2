from __future__ import annotations

import bisect
import dataclasses
import logging
import os
import tempfile
import threading
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from bandwidth_monitor.core.exceptions import PersistenceError
from bandwidth_monitor.core.throttle import Throttle
from bandwidth_monitor.core.utils import utc_now, wrapping_add
from bandwidth_monitor.persistence.models import (
    HistorySample,
    PersistedDocument,
    PersistedState,
    parse_document,
)

DEFAULT_RETENTION = timedelta(days=35)
DEFAULT_SAVE_THROTTLE_SECONDS = 15.0

_SAVE_KEY = "persist"


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file, fsync it, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class HistoryStore:
    """
    Time-ordered log of aggregate counter samples plus all-time totals.

    Everything here runs on the engine thread except the file write, which
    receives an immutable PersistedState and may run on ``executor``.
    reset() bumps a generation counter; background writes of snapshots
    taken before the bump are dropped so they cannot resurrect old data.
    """

    def __init__(
        self,
        path: Path,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        save_throttle_seconds: float = DEFAULT_SAVE_THROTTLE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        executor: Executor | None = None,
    ) -> None:
        self.path = Path(path)
        self.retention = retention
        self.executor = executor
        self._clock = clock
        self._throttle = Throttle(
            throttle_seconds=float(save_throttle_seconds),
            clock=lambda: self._clock().timestamp(),
        )
        self._write_lock = threading.RLock()
        self._generation = 0
        self._log = logging.getLogger("bandwidth_monitor.history")

        self._history: list[HistorySample] = []
        self._total_download = 0
        self._total_upload = 0

    def configure(self, *, retention: timedelta, save_throttle_seconds: float) -> None:
        self.retention = retention
        self._throttle.throttle_seconds = float(save_throttle_seconds)

    # ---- reads ----

    @property
    def history(self) -> list[HistorySample]:
        """Live view of the log; callers must not mutate it."""
        return self._history

    @property
    def totals_all_time(self) -> tuple[int, int]:
        return self._total_download, self._total_upload

    def __len__(self) -> int:
        return len(self._history)

    def snapshot(self) -> PersistedState:
        return PersistedState(
            history=tuple(self._history),
            total_download_all_time=self._total_download,
            total_upload_all_time=self._total_upload,
        )

    # ---- mutations ----

    def append(self, sample: HistorySample) -> bool:
        """Add ``sample`` and prune; returns False if it was already past retention."""
        now = self._clock()
        if sample.timestamp < now - self.retention:
            self._log.debug("dropping expired sample", extra={"sample_ts": sample.timestamp.isoformat()})
            self.prune(now)
            return False
        if self._history and sample.timestamp < self._history[-1].timestamp:
            self._log.debug(
                "clock went backwards; clamping sample timestamp",
                extra={"sample_ts": sample.timestamp.isoformat()},
            )
            sample = dataclasses.replace(sample, timestamp=self._history[-1].timestamp)
        self._history.append(sample)
        self.prune(now)
        return True

    def add_totals(self, download: int, upload: int) -> None:
        self._total_download = wrapping_add(self._total_download, download)
        self._total_upload = wrapping_add(self._total_upload, upload)

    def prune(self, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - self.retention
        idx = bisect.bisect_left(self._history, cutoff, key=lambda s: s.timestamp)
        if idx:
            del self._history[:idx]
        return idx

    def replace_state(self, state: PersistedState) -> None:
        cutoff = self._clock() - self.retention
        kept = sorted((s for s in state.history if s.timestamp >= cutoff), key=lambda s: s.timestamp)
        self._history = kept
        self._total_download = state.total_download_all_time
        self._total_upload = state.total_upload_all_time

    def reset(self) -> None:
        self._history = []
        self._total_download = 0
        self._total_upload = 0
        with self._write_lock:
            self._generation += 1
        self.persist(force=True, wait=True)

    # ---- durability ----

    def load(self) -> PersistedState:
        """Read the durable state; a missing or unreadable file is a cold start."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._log.info("no history file; starting empty", extra={"path": str(self.path)})
            self.replace_state(PersistedState())
            return self.snapshot()
        except OSError as exc:
            self._log.warning("history file unreadable; starting empty", extra={"error": str(exc)})
            self.replace_state(PersistedState())
            return self.snapshot()

        try:
            state = parse_document(raw)
        except ValidationError as exc:
            self._log.warning(
                "history file corrupt; starting empty",
                extra={"path": str(self.path), "errors": exc.error_count()},
            )
            state = PersistedState()

        self.replace_state(state)
        self._log.info(
            "history loaded",
            extra={"samples": len(self._history), "dropped": len(state.history) - len(self._history)},
        )
        return self.snapshot()

    def persist(self, *, force: bool = False, wait: bool = False) -> bool:
        """
        Write the current state if the throttle allows it (or ``force``).

        Returns True when a write was issued. Background writes are handed
        to the executor unless ``wait`` is set.
        """
        if force:
            self._throttle.mark(_SAVE_KEY)
        elif not self._throttle.allow(_SAVE_KEY):
            return False

        state = self.snapshot()
        generation = self._generation
        if self.executor is None or wait:
            self._write_quietly(state, generation)
            return True
        try:
            fut: Future[None] = self.executor.submit(self._write_quietly, state, generation)
        except RuntimeError:
            # executor already shut down
            self._write_quietly(state, generation)
            return True
        fut.add_done_callback(_log_unexpected)
        return True

    def write(self, state: PersistedState) -> None:
        payload = PersistedDocument.from_state(state).to_json()
        with self._write_lock:
            try:
                atomic_write_text(self.path, payload)
            except OSError as exc:
                raise PersistenceError(f"failed writing {self.path}: {exc}") from exc

    def _write_quietly(self, state: PersistedState, generation: int) -> None:
        with self._write_lock:
            if generation != self._generation:
                self._log.debug("dropping write queued before reset")
                return
            try:
                self.write(state)
            except PersistenceError as exc:
                self._log.warning("history write failed", extra={"error": str(exc)})


def _log_unexpected(fut: Future[None]) -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logging.getLogger("bandwidth_monitor.history").error(
            "history writer crashed", exc_info=(type(exc), exc, exc.__traceback__)
        )
