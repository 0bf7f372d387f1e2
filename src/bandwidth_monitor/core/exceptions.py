from __future__ import annotations


class BandwidthMonitorError(Exception):
    """Base error for the bandwidth monitor."""


class ConfigError(BandwidthMonitorError):
    pass


class PersistenceError(BandwidthMonitorError):
    pass
