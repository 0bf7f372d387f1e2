from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from bandwidth_monitor.core.utils import UINT64_MAX


@dataclass(frozen=True)
class HistorySample:
    """Aggregate cumulative counters captured at one tick (not deltas)."""

    timestamp: datetime
    rx: int
    tx: int


@dataclass(frozen=True)
class PersistedState:
    history: tuple[HistorySample, ...] = ()
    total_download_all_time: int = 0
    total_upload_all_time: int = 0


# ---- on-disk document ----


class HistorySampleRecord(BaseModel):
    timestamp: datetime
    rx: int = Field(ge=0, le=UINT64_MAX)
    tx: int = Field(ge=0, le=UINT64_MAX)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        # naive timestamps from older files are UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        try:
            return v.astimezone(timezone.utc)
        except OverflowError as exc:
            raise ValueError(f"timestamp out of range: {v.isoformat()}") from exc

    def to_sample(self) -> HistorySample:
        return HistorySample(timestamp=self.timestamp, rx=self.rx, tx=self.tx)

    @classmethod
    def from_sample(cls, s: HistorySample) -> "HistorySampleRecord":
        return cls(timestamp=s.timestamp, rx=s.rx, tx=s.tx)


class PersistedDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    history: list[HistorySampleRecord] = Field(default_factory=list)
    total_download_all_time: int = Field(default=0, ge=0, le=UINT64_MAX, alias="totalDownloadAllTime")
    total_upload_all_time: int = Field(default=0, ge=0, le=UINT64_MAX, alias="totalUploadAllTime")

    def to_state(self) -> PersistedState:
        return PersistedState(
            history=tuple(r.to_sample() for r in self.history),
            total_download_all_time=self.total_download_all_time,
            total_upload_all_time=self.total_upload_all_time,
        )

    @classmethod
    def from_state(cls, state: PersistedState) -> "PersistedDocument":
        return cls(
            history=[HistorySampleRecord.from_sample(s) for s in state.history],
            total_download_all_time=state.total_download_all_time,
            total_upload_all_time=state.total_upload_all_time,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# Older releases wrote a bare array of samples without totals.
LegacyHistory = TypeAdapter(list[HistorySampleRecord])


def parse_document(raw: str | bytes) -> PersistedState:
    """
    Parse either document shape.

    Raises pydantic.ValidationError when the payload matches neither.
    """
    try:
        return PersistedDocument.model_validate_json(raw).to_state()
    except ValueError:
        records = LegacyHistory.validate_json(raw)
        return PersistedState(history=tuple(r.to_sample() for r in records))
