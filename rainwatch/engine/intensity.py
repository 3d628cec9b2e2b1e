"""
Window & Intensity Classifier.

Fixed threshold tables that turn rainfall aggregates into intensity buckets,
plus the 12-hour outlook summary and the display ranges derived from it.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from rainwatch.schemas.weather import HourlySample, IntensityBucket, TimeWindow, as_utc

# (upper bound, bucket, inclusive upper bound)
RATE_TABLE = (
    (0.2, IntensityBucket.NONE, False),
    (1.0, IntensityBucket.LIGHT, False),
    (4.0, IntensityBucket.MODERATE, False),
    (15.0, IntensityBucket.HEAVY, False),
)
THREE_HOUR_TABLE = (
    (1.0, IntensityBucket.DRIZZLE, False),
    (5.0, IntensityBucket.LIGHT, False),
    (15.0, IntensityBucket.MODERATE, False),
    (35.0, IntensityBucket.HEAVY, False),
)
DAILY_TABLE = (
    (1.0, IntensityBucket.DRIZZLE, False),
    (15.0, IntensityBucket.LIGHT, True),
    (64.4, IntensityBucket.MODERATE, True),
    (115.5, IntensityBucket.HEAVY, True),
)

BUCKET_RANK: dict[IntensityBucket, int] = {
    IntensityBucket.NONE: 0,
    IntensityBucket.DRIZZLE: 0,
    IntensityBucket.LIGHT: 1,
    IntensityBucket.MODERATE: 2,
    IntensityBucket.HEAVY: 3,
    IntensityBucket.VERY_HEAVY: 4,
}

OUTLOOK_HOURS = 12
PEAK_WINDOW_HOURS = 3
RANGE_LOW_FACTOR = 0.7
RANGE_HIGH_FACTOR = 1.3


def _classify(value: float, table) -> IntensityBucket:
    for bound, bucket, inclusive in table:
        if value < bound or (inclusive and value == bound):
            return bucket
    return IntensityBucket.VERY_HEAVY


def classify_rate(mm_per_hour: float) -> IntensityBucket:
    """Instantaneous rate in mm/h → bucket (NOW block)."""
    return _classify(mm_per_hour, RATE_TABLE)


def classify_three_hour_total(mm: float) -> IntensityBucket:
    return _classify(mm, THREE_HOUR_TABLE)


def classify_daily_total(mm: float) -> IntensityBucket:
    return _classify(mm, DAILY_TABLE)


def bucket_rank(bucket: IntensityBucket) -> int:
    return BUCKET_RANK[bucket]


# ── Outlook summary ───────────────────────────────────────────────────


@dataclass(frozen=True)
class OutlookSummary:
    now_prob: Optional[float]
    max_prob_12h: Optional[float]
    sum_precip_12h: Optional[float]
    peak_hour: Optional[datetime]
    samples: tuple


def _floor_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def summarize_outlook(hourly: Sequence[HourlySample], now: datetime) -> OutlookSummary:
    """
    Summarize the next 12 hourly samples starting at the current hour.

    When the current hour is not in the series the summary starts at the
    first sample. The peak hour is the first sample with the highest
    probability.
    """
    if not hourly:
        return OutlookSummary(None, None, None, None, ())

    ordered = sorted(hourly, key=lambda s: as_utc(s.time))
    current = _floor_hour(as_utc(now))
    start = next(
        (i for i, sample in enumerate(ordered) if _floor_hour(as_utc(sample.time)) == current),
        0,
    )
    window = tuple(ordered[start:start + OUTLOOK_HOURS])

    probs = [s.probability for s in window if s.probability is not None]
    precips = [s.precipitation for s in window if s.precipitation is not None]

    peak_hour = None
    max_prob = None
    if probs:
        max_prob = max(probs)
        peak = next(s for s in window if s.probability == max_prob)
        peak_hour = as_utc(peak.time)

    return OutlookSummary(
        now_prob=window[0].probability,
        max_prob_12h=max_prob,
        sum_precip_12h=round(sum(precips), 2) if precips else None,
        peak_hour=peak_hour,
        samples=window,
    )


def peak_window(peak_hour: datetime) -> TimeWindow:
    """3-hour span centered on the peak hour's sample: [H-1h, H+2h)."""
    start = as_utc(peak_hour) - timedelta(hours=1)
    return TimeWindow(start=start, end=start + timedelta(hours=PEAK_WINDOW_HOURS))


def window_total(samples: Iterable[HourlySample], window: TimeWindow) -> float:
    """Precipitation summed over samples whose hour starts inside the window."""
    total = 0.0
    for sample in samples:
        ts = as_utc(sample.time)
        if window.start <= ts < window.end and sample.precipitation is not None:
            total += sample.precipitation
    return round(total, 2)


# ── Display ranges ────────────────────────────────────────────────────


def value_range(value: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """Central estimate → (low, high) band rounded to one decimal."""
    if value is None:
        return None, None
    low = round(value * RANGE_LOW_FACTOR, 1)
    high = max(low, round(value * RANGE_HIGH_FACTOR, 1))
    return low, high


def range_around(center: Optional[float], spread: float) -> tuple[Optional[int], Optional[int]]:
    """Whole-minute range around a centre; ``to`` is always strictly after ``from``."""
    if center is None:
        return None, None
    lo = max(0, math.floor(center - spread))
    hi = max(lo + 1, math.ceil(center + spread))
    return lo, hi
