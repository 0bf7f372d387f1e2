from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from bandwidth_monitor.core.config import AppConfig
from bandwidth_monitor.core.exceptions import ConfigError
from bandwidth_monitor.core.utils import monotonic_ms
from bandwidth_monitor.engine.sampler import Sampler
from bandwidth_monitor.engine.scheduler import TickScheduler
from bandwidth_monitor.engine.state import CommandQueue, EngineCommand, EngineSnapshot, UsageReport
from bandwidth_monitor.monitoring.interfaces import InterfaceSource


class MonitorEngine:
    """
    Runs a Sampler on its own thread at the configured interval.

    The engine thread is the only one that mutates sampler state; other
    threads talk to it through commands and read copies via get_snapshot()
    and get_usage(). History writes go to a single background worker.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        source: InterfaceSource | None = None,
        sampler: Sampler | None = None,
        on_update: Callable[[EngineSnapshot], None] | None = None,
    ) -> None:
        self.config = config
        self._log = logging.getLogger("bandwidth_monitor.engine")
        self._on_update = on_update

        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history-writer")
        self.sampler = sampler or Sampler.from_config(config, source=source, executor=self._writer)
        self.sampler.load()

        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="bandwidth-engine", daemon=True)
        self._lock = threading.Lock()
        self._scheduler = TickScheduler(interval_seconds=config.sampling.interval_seconds)
        self._commands = CommandQueue()
        self._events: deque[str] = deque(maxlen=50)
        self._errors: deque[str] = deque(maxlen=50)
        self._last_latency_ms: float | None = None
        self._stopped = False

    # ---- lifecycle ----

    def start(self) -> None:
        """Start ticking; a stopped engine restarts with a fresh baseline."""
        if self._thread.is_alive():
            return
        if self._stopped or self._thread.ident is not None:
            self._restart_resources()
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)

    def request_stop(self) -> None:
        self._stop.set()
        self._commands.put(EngineCommand(kind="quit"))

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop ticking, drain pending writes and persist once more synchronously."""
        if self._stopped:
            return
        self.request_stop()
        if self._thread.is_alive():
            self.join(timeout=timeout)
        self._writer.shutdown(wait=True)
        with self._lock:
            self.sampler.flush()
        self._stopped = True
        self._event("engine stopped")

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    # ---- commands ----

    def enqueue(self, cmd: EngineCommand) -> None:
        self._commands.put(cmd)

    def apply_config(self, config: AppConfig | dict[str, Any]) -> None:
        payload = config.model_dump() if isinstance(config, AppConfig) else dict(config)
        self.enqueue(EngineCommand(kind="apply_config", payload={"config": payload}))

    def reset(self) -> None:
        self.enqueue(EngineCommand(kind="reset"))

    # ---- outputs ----

    def get_snapshot(self) -> EngineSnapshot:
        with self._lock:
            snap = self.sampler.snapshot()
        snap.running = self.running
        snap.last_tick_latency_ms = self._last_latency_ms
        snap.last_events = list(self._events)[:10]
        snap.last_errors = list(self._errors)[:10]
        return snap

    def get_usage(self) -> UsageReport:
        with self._lock:
            return self.sampler.usage()

    # ---- internals ----

    def _restart_resources(self) -> None:
        if self._stopped:
            old = self._writer
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history-writer")
            if self.sampler.store.executor is old:
                self.sampler.store.executor = self._writer
        self._stop = threading.Event()
        self._commands = CommandQueue()
        self._thread = threading.Thread(target=self._run, name="bandwidth-engine", daemon=True)
        with self._lock:
            self.sampler.rebase()
        self._stopped = False

    def _event(self, msg: str, **extra: Any) -> None:
        self._events.appendleft(msg)
        self._log.info(msg, extra=extra or None)

    def _record_error(self, msg: str, *, exc: BaseException | None = None) -> None:
        self._errors.appendleft(msg)
        self._log.error(msg, exc_info=exc)

    def _run(self) -> None:
        self._event("engine started", interval_seconds=self._scheduler.interval_seconds)
        self._scheduler.start()
        while not self._stop.is_set():
            cmd = self._commands.get(timeout=self._scheduler.seconds_until_due())
            if cmd is not None:
                self._process_command(cmd)
                continue
            if self._scheduler.poll():
                self._tick()
        self._scheduler.stop()
        self._event("engine stopping")

    def _tick(self) -> None:
        started = monotonic_ms()
        try:
            with self._lock:
                self.sampler.tick()
        except Exception as exc:
            self._record_error(f"tick failed: {exc}", exc=exc)
            return
        self._last_latency_ms = float(monotonic_ms() - started)
        self._publish()

    def _publish(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self.get_snapshot())
        except Exception as exc:
            self._record_error(f"update callback failed: {exc}", exc=exc)

    def _process_command(self, cmd: EngineCommand) -> None:
        if cmd.kind == "quit":
            self._stop.set()
        elif cmd.kind == "reset":
            with self._lock:
                self.sampler.reset()
            self._event("totals reset")
            self._publish()
        elif cmd.kind == "apply_config":
            self._apply_config(cmd.payload.get("config") or {})
        else:
            self._log.warning("unknown command", extra={"kind": cmd.kind})

    def _apply_config(self, config_dict: dict[str, Any]) -> None:
        try:
            cfg = self.config.merged(config_dict)
        except ConfigError as exc:
            self._record_error(f"invalid config: {exc}")
            return

        interval_changed = cfg.sampling.interval_seconds != self.config.sampling.interval_seconds
        self.config = cfg
        with self._lock:
            self.sampler.apply_config(cfg)
        if interval_changed:
            self._scheduler.reschedule(cfg.sampling.interval_seconds)
        self._event("config applied", interval_seconds=cfg.sampling.interval_seconds)
