from __future__ import annotations

import os
import sys
from datetime import tzinfo as TZInfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from bandwidth_monitor.core.exceptions import ConfigError
from bandwidth_monitor.core.utils import clamp, env_path

MIN_INTERVAL_SECONDS = 0.25
MAX_INTERVAL_SECONDS = 5.0

STATE_PATH_ENV = "BANDWIDTH_MONITOR_STATE_PATH"


def default_state_path() -> Path:
    """Per-user application data location for the history document."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / "BandwidthMonitor"
    elif sys.platform.startswith("win"):
        base = Path(os.getenv("APPDATA") or Path.home()) / "BandwidthMonitor"
    else:
        base = Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share") / "bandwidth-monitor"
    return base / "history.json"


class SamplingConfig(BaseModel):
    interval_seconds: float = 1.0
    recent_window_seconds: float = 300.0

    @field_validator("interval_seconds")
    @classmethod
    def _interval_bounds(cls, v: float) -> float:
        return clamp(float(v), MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS)

    @field_validator("recent_window_seconds")
    @classmethod
    def _window_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("recent_window_seconds must be > 0")
        return v


class DisplayConfig(BaseModel):
    show_bits: bool = True
    use_si: bool = True
    iec_rate_labels: bool = False


class InterfacesConfig(BaseModel):
    selected: list[str] = Field(default_factory=list)

    def selection(self) -> frozenset[str]:
        return frozenset(s.strip() for s in self.selected if s.strip())


class DataCapConfig(BaseModel):
    enabled: bool = False
    cap_gb: float = 500.0
    billing_day: int = 1
    timezone: str | None = None

    @field_validator("billing_day")
    @classmethod
    def _billing_day_bounds(cls, v: int) -> int:
        # 29-31 do not exist in every month
        return int(clamp(int(v), 1, 28))

    @field_validator("cap_gb")
    @classmethod
    def _cap_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("cap_gb must be >= 0")
        return v

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {v}") from exc
        return v

    def tzinfo(self) -> TZInfo | None:
        """Configured zone, or None for the system's local zone."""
        return ZoneInfo(self.timezone) if self.timezone else None


class PersistenceConfig(BaseModel):
    state_path: str | None = None
    retention_days: float = 35.0
    save_throttle_seconds: float = 15.0

    @field_validator("retention_days", "save_throttle_seconds")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    def resolved_state_path(self) -> Path:
        if self.state_path:
            return Path(self.state_path).expanduser()
        return default_state_path()


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./logs"


class AppConfig(BaseModel):
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    interfaces: InterfacesConfig = Field(default_factory=InterfacesConfig)
    data_cap: DataCapConfig = Field(default_factory=DataCapConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def merged(self, override: dict[str, Any]) -> "AppConfig":
        """Return a new validated config with ``override`` deep-merged on top."""
        raw = _deep_merge_dicts(self.model_dump(), override)
        try:
            return AppConfig.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc


def load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except Exception as exc:
        raise ConfigError(f"Failed reading config yaml: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config yaml must be a mapping: {path}")
    return data


def load_config(config_path: str | Path | None = None) -> AppConfig:
    load_dotenv(override=False)
    raw: dict[str, Any] = load_yaml(Path(config_path)) if config_path else {}

    state_override = env_path(STATE_PATH_ENV)
    if state_override is not None:
        raw = _deep_merge_dicts(raw, {"persistence": {"state_path": str(state_override)}})

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def _deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge_dicts(out[k], v)
        else:
            out[k] = v
    return out
