from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Protocol

import psutil

from bandwidth_monitor.core.utils import wrapping_add

# Virtual, AirDrop, VPN and hotspot adapters that double count traffic.
IGNORED_PREFIXES: tuple[str, ...] = ("awdl", "llw", "utun", "bridge", "ap", "p2p")

_LOOPBACK_RE = re.compile(r"^lo\d*$")

_log = logging.getLogger("bandwidth_monitor.interfaces")


@dataclass(frozen=True)
class RawSample:
    interface_name: str
    bytes_in: int
    bytes_out: int


class InterfaceSource(Protocol):
    def read(self) -> list[RawSample]:
        ...


class PsutilInterfaceSource:
    """Cumulative per-interface counters for up, non-loopback interfaces."""

    def read(self) -> list[RawSample]:
        try:
            counters = psutil.net_io_counters(pernic=True)
            stats = psutil.net_if_stats()
        except Exception as exc:
            _log.warning("interface counters unavailable", extra={"error": str(exc)})
            return []

        out: list[RawSample] = []
        for name, c in counters.items():
            st = stats.get(name)
            if st is None or not st.isup:
                continue
            if _is_loopback(name, getattr(st, "flags", "")):
                continue
            out.append(RawSample(name, int(c.bytes_recv), int(c.bytes_sent)))
        return out


def _is_loopback(name: str, flags: str) -> bool:
    if "loopback" in (flags or "").split(","):
        return True
    return bool(_LOOPBACK_RE.match(name))


def filter_interfaces(samples: Iterable[RawSample], selection: Iterable[str] = ()) -> list[RawSample]:
    """
    Narrow a snapshot to the interfaces that count towards usage.

    An explicit selection wins; without one every interface is kept except
    those whose name starts with an entry of IGNORED_PREFIXES.
    """
    selected = frozenset(selection)
    if selected:
        return [s for s in samples if s.interface_name in selected]
    return [s for s in samples if not s.interface_name.startswith(IGNORED_PREFIXES)]


def aggregate(samples: Iterable[RawSample]) -> tuple[int, int, frozenset[str]]:
    rx = 0
    tx = 0
    names: set[str] = set()
    for s in samples:
        rx = wrapping_add(rx, s.bytes_in)
        tx = wrapping_add(tx, s.bytes_out)
        names.add(s.interface_name)
    return rx, tx, frozenset(names)
