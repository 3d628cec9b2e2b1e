"""
Weather Input & Record Schemas.

Per-area inputs produced by the ingestion side (radar, model and station
features plus hourly/daily model samples) and the immutable snapshots the
decision cycle persists from them.
"""

from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ──────────────────────────────────────────────────────────────


class AreaType(StrEnum):
    DISTRICT = "district"
    NEIGHBOURHOOD = "neighbourhood"


class RadarIntensity(StrEnum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class AlertLabel(StrEnum):
    HEAVY_RAIN_LIKELY = "HEAVY_RAIN_LIKELY"
    SEVERE_THUNDERSTORM_RISK = "SEVERE_THUNDERSTORM_RISK"
    LOCAL_DOWNPOUR_ONGOING = "LOCAL_DOWNPOUR_ONGOING"


class Severity(StrEnum):
    INFO = "info"
    MEDIUM = "medium"
    HIGH = "high"


class EvidenceSource(StrEnum):
    RADAR = "Radar"
    STATIONS = "Stations"
    NOWCAST = "Nowcast"


class IntensityBucket(StrEnum):
    NONE = "none"
    DRIZZLE = "drizzle"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    VERY_HEAVY = "very heavy"


class Scope(StrEnum):
    NOW = "now"
    TODAY = "today"
    WEEK = "week"


# ── Time window ────────────────────────────────────────────────────────


class TimeWindow(BaseModel):
    """Half-open UTC interval [start, end). Formatting is left to the display layer."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc_edges(cls, v: datetime) -> datetime:
        return as_utc(v)

    def label(self) -> str:
        return f"{_iso_minutes(self.start)}/{_iso_minutes(self.end)}"

    def shifted_from(self, other: "TimeWindow") -> timedelta:
        """Largest absolute displacement of either edge relative to ``other``."""
        return max(abs(self.start - other.start), abs(self.end - other.end))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso_minutes(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%MZ")


# ── Features ───────────────────────────────────────────────────────────


class RadarFeatures(BaseModel):
    eta_min: Optional[int] = Field(default=None, ge=0)
    duration_min: Optional[int] = Field(default=None, ge=0)
    intensity: RadarIntensity = RadarIntensity.NONE


class MeteoFeatures(BaseModel):
    precip_hour: Optional[float] = Field(default=None, ge=0)
    probability: Optional[float] = Field(default=None, ge=0, le=100)
    intensity: RadarIntensity = RadarIntensity.NONE
    stale: bool = False


class AreaFeatures(BaseModel):
    """Everything the rule engine looks at for one area in one cycle."""

    area_id: str
    area_name: str
    type: AreaType
    radar: RadarFeatures = Field(default_factory=RadarFeatures)
    meteo: MeteoFeatures = Field(default_factory=MeteoFeatures)
    nowcast_text: Optional[str] = None
    observed_at: datetime

    @field_validator("observed_at")
    @classmethod
    def _utc_observed_at(cls, v: datetime) -> datetime:
        return as_utc(v)


class HourlySample(BaseModel):
    time: datetime
    probability: Optional[float] = Field(default=None, ge=0, le=100)
    precipitation: Optional[float] = Field(default=None, ge=0)

    @field_validator("time")
    @classmethod
    def _utc_time(cls, v: datetime) -> datetime:
        return as_utc(v)


class DailyForecast(BaseModel):
    day: date
    precipitation_sum: Optional[float] = Field(default=None, ge=0)
    probability_max: Optional[float] = Field(default=None, ge=0, le=100)
    temperature_max: Optional[float] = None
    temperature_min: Optional[float] = None


class AreaSnapshot(BaseModel):
    """One area's full input record: features plus the model outlook."""

    features: AreaFeatures
    hourly: list[HourlySample] = Field(default_factory=list)
    daily: list[DailyForecast] = Field(default_factory=list)


# ── Rule engine output ─────────────────────────────────────────────────


class PreAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    labels: tuple[AlertLabel, ...]
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    sources: tuple[EvidenceSource, ...]

    @property
    def thunder(self) -> bool:
        return AlertLabel.SEVERE_THUNDERSTORM_RISK in self.labels


# ── Persisted snapshots ────────────────────────────────────────────────


class ObservationSnapshot(BaseModel):
    """Derived per-area aggregates for one cycle (append-only)."""

    area_id: str
    cycle_id: str
    observed_at: datetime
    precip_hour: Optional[float] = None
    probability: Optional[float] = None
    intensity_class: IntensityBucket = IntensityBucket.NONE
    radar_eta_min: Optional[int] = None
    radar_duration_min: Optional[int] = None
    radar_intensity: RadarIntensity = RadarIntensity.NONE
    now_prob: Optional[float] = None
    max_prob_12h: Optional[float] = None
    sum_precip_12h: Optional[float] = None
    three_hour_total_mm: Optional[float] = None
    peak_hour: Optional[datetime] = None
    stale_sources: list[str] = Field(default_factory=list)

    @field_validator("observed_at", "peak_hour")
    @classmethod
    def _utc_times(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class AlertSnapshot(BaseModel):
    area_id: str
    scope: Scope
    issued_at: datetime
    window: TimeWindow
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    labels: list[AlertLabel] = Field(default_factory=list)
    sources: list[EvidenceSource] = Field(default_factory=list)
    text_en: str = ""
    text_te: str = ""


class DailyForecastSnapshot(BaseModel):
    """One area's outlook for one calendar day. Re-written every cycle until the day passes."""

    area_id: str
    day: date
    precipitation_sum: Optional[float] = None
    probability_max: Optional[float] = None
    temperature_max: Optional[float] = None
    temperature_min: Optional[float] = None
    severity: Severity = Severity.INFO
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    text_en: str = ""
    text_te: str = ""
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def _utc_updated_at(cls, v: datetime) -> datetime:
        return as_utc(v)
