"""
Display Blocks — per-scope views of an area's observation.

Each scope (now / today / week) gets its own block type carrying exactly the
fields its trigger and formatter need. All blocks expose the same small
interface (bucket, window, precip_bounds, score_inputs) so the scorer and the
governor never branch on scope.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from rainwatch.engine.intensity import (
    classify_daily_total,
    classify_rate,
    classify_three_hour_total,
    range_around,
    value_range,
)
from rainwatch.schemas.weather import (
    DailyForecast,
    IntensityBucket,
    ObservationSnapshot,
    PreAlert,
    Scope,
    TimeWindow,
)

ETA_SPREAD_MINUTES = 10
DURATION_SPREAD_MINUTES = 15


@dataclass(frozen=True)
class ScoreInputs:
    bucket: IntensityBucket
    max_prob: float = 0.0
    thunder: bool = False
    eta_from: Optional[int] = None
    three_hour_total: float = 0.0
    twelve_hour_sum: float = 0.0


class NowBlock(BaseModel):
    scope: Literal[Scope.NOW] = Scope.NOW
    intensity: IntensityBucket
    mmh_low: Optional[float] = None
    mmh_high: Optional[float] = None
    eta_from: Optional[int] = None
    eta_to: Optional[int] = None
    duration_min: Optional[int] = None
    duration_from: Optional[int] = None
    duration_to: Optional[int] = None
    confidence_pct: Optional[float] = None
    thunder: bool = False
    radar_seen: bool = False
    max_prob_12h: Optional[float] = None
    three_hour_total_mm: Optional[float] = None
    sum_precip_12h: Optional[float] = None
    window: Optional[TimeWindow] = None

    @property
    def bucket(self) -> IntensityBucket:
        return self.intensity

    @property
    def precip_bounds(self) -> tuple[Optional[float], Optional[float]]:
        return self.mmh_low, self.mmh_high

    def score_inputs(self) -> ScoreInputs:
        return ScoreInputs(
            bucket=self.intensity,
            max_prob=self.max_prob_12h or 0.0,
            thunder=self.thunder,
            eta_from=self.eta_from,
            three_hour_total=self.three_hour_total_mm or 0.0,
            twelve_hour_sum=self.sum_precip_12h or 0.0,
        )


class TodayBlock(BaseModel):
    scope: Literal[Scope.TODAY] = Scope.TODAY
    intensity: IntensityBucket
    three_hour_total_mm: Optional[float] = None
    three_low: Optional[float] = None
    three_high: Optional[float] = None
    max_prob_12h: Optional[float] = None
    sum_precip_12h: Optional[float] = None
    radar_seen: bool = False
    window: Optional[TimeWindow] = None

    @property
    def bucket(self) -> IntensityBucket:
        return self.intensity

    @property
    def precip_bounds(self) -> tuple[Optional[float], Optional[float]]:
        return self.three_low, self.three_high

    def score_inputs(self) -> ScoreInputs:
        return ScoreInputs(
            bucket=self.intensity,
            max_prob=self.max_prob_12h or 0.0,
            three_hour_total=self.three_hour_total_mm or 0.0,
            twelve_hour_sum=self.sum_precip_12h or 0.0,
        )


class WeekDay(BaseModel):
    day: datetime
    mm: float
    mm_low: float
    mm_high: float
    intensity: IntensityBucket
    max_prob: Optional[float] = None


class WeekBlock(BaseModel):
    scope: Literal[Scope.WEEK] = Scope.WEEK
    days: list[WeekDay] = Field(default_factory=list)

    @property
    def headline(self) -> Optional[WeekDay]:
        """Wettest day of the week (earliest on ties)."""
        if not self.days:
            return None
        return max(self.days, key=lambda d: (d.mm, -d.day.timestamp()))

    @property
    def bucket(self) -> IntensityBucket:
        top = self.headline
        return top.intensity if top else IntensityBucket.NONE

    @property
    def window(self) -> Optional[TimeWindow]:
        top = self.headline
        if top is None:
            return None
        return TimeWindow(start=top.day, end=top.day + timedelta(days=1))

    @property
    def precip_bounds(self) -> tuple[Optional[float], Optional[float]]:
        top = self.headline
        if top is None:
            return None, None
        return top.mm_low, top.mm_high

    def score_inputs(self) -> ScoreInputs:
        top = self.headline
        return ScoreInputs(
            bucket=self.bucket,
            max_prob=(top.max_prob or 0.0) if top else 0.0,
        )


DisplayBlock = Annotated[Union[NowBlock, TodayBlock, WeekBlock], Field(discriminator="scope")]


# ── Builders ──────────────────────────────────────────────────────────


def build_now_block(
    observation: ObservationSnapshot,
    pre_alert: Optional[PreAlert] = None,
) -> NowBlock:
    rate = observation.precip_hour or 0.0
    mmh_low, mmh_high = value_range(observation.precip_hour)
    eta_from, eta_to = range_around(observation.radar_eta_min, ETA_SPREAD_MINUTES)
    duration_from, duration_to = range_around(
        observation.radar_duration_min, DURATION_SPREAD_MINUTES
    )

    if pre_alert is not None:
        confidence_pct = round(pre_alert.confidence * 100)
    else:
        confidence_pct = observation.now_prob

    window = None
    if eta_from is not None:
        window = TimeWindow(
            start=observation.observed_at + timedelta(minutes=eta_from),
            end=observation.observed_at + timedelta(minutes=eta_to),
        )

    return NowBlock(
        intensity=classify_rate(rate),
        mmh_low=mmh_low,
        mmh_high=mmh_high,
        eta_from=eta_from,
        eta_to=eta_to,
        duration_min=observation.radar_duration_min,
        duration_from=duration_from,
        duration_to=duration_to,
        confidence_pct=confidence_pct,
        thunder=pre_alert.thunder if pre_alert is not None else False,
        radar_seen=observation.radar_eta_min is not None,
        max_prob_12h=observation.max_prob_12h,
        three_hour_total_mm=observation.three_hour_total_mm,
        sum_precip_12h=observation.sum_precip_12h,
        window=window,
    )


def build_today_block(
    observation: ObservationSnapshot,
    peak: Optional[TimeWindow] = None,
) -> TodayBlock:
    three = observation.three_hour_total_mm
    three_low, three_high = value_range(three)
    return TodayBlock(
        intensity=classify_three_hour_total(three or 0.0),
        three_hour_total_mm=three,
        three_low=three_low,
        three_high=three_high,
        max_prob_12h=observation.max_prob_12h,
        sum_precip_12h=observation.sum_precip_12h,
        radar_seen=observation.radar_eta_min is not None,
        window=peak,
    )


def build_week_block(daily: Sequence[DailyForecast]) -> WeekBlock:
    days = []
    for forecast in sorted(daily, key=lambda f: f.day):
        mm = forecast.precipitation_sum or 0.0
        mm_low, mm_high = value_range(mm)
        days.append(WeekDay(
            day=datetime(forecast.day.year, forecast.day.month, forecast.day.day, tzinfo=timezone.utc),
            mm=mm,
            mm_low=mm_low,
            mm_high=mm_high,
            intensity=classify_daily_total(mm),
            max_prob=forecast.probability_max,
        ))
    return WeekBlock(days=days)
