"""
Trigger Predicates — independent per-scope gates.

A scope becomes a notification candidate only when its predicate holds and
its precipitation band carries some signal.
"""

from typing import Optional

from rainwatch.engine.blocks import NowBlock, TodayBlock, WeekBlock
from rainwatch.engine.profiles import TRIGGER_PROFILES, TriggerProfile
from rainwatch.schemas.weather import IntensityBucket


def should_trigger_now(block: NowBlock, profile: Optional[TriggerProfile] = None) -> bool:
    p = profile or TRIGGER_PROFILES["standard"]
    if (block.mmh_high or 0.0) >= p.now_mmh_high_min:
        return True
    if (
        block.intensity == IntensityBucket.LIGHT
        and (block.confidence_pct or 0.0) >= p.now_light_confidence_min
    ):
        return True
    if (block.duration_min or 0) >= p.now_duration_min:
        return True
    if block.thunder:
        return True
    return block.eta_from is not None and block.eta_from <= p.now_eta_max


def should_trigger_today(block: TodayBlock, profile: Optional[TriggerProfile] = None) -> bool:
    p = profile or TRIGGER_PROFILES["standard"]
    return (
        (block.max_prob_12h or 0.0) >= p.today_probability_min
        and block.intensity in p.today_intensities
    )


def should_trigger_week(block: WeekBlock, profile: Optional[TriggerProfile] = None) -> bool:
    p = profile or TRIGGER_PROFILES["standard"]
    for day in block.days:
        if day.mm_high >= p.week_mm_high_min:
            return True
        if (
            p.week_light_probability_min is not None
            and day.intensity == IntensityBucket.LIGHT
            and (day.max_prob or 0.0) >= p.week_light_probability_min
        ):
            return True
    return False


def has_signal(block) -> bool:
    """False when both precipitation bounds round to zero at display precision."""
    low, high = block.precip_bounds
    return round(low or 0.0, 1) != 0.0 or round(high or 0.0, 1) != 0.0


def should_trigger(block, profile: Optional[TriggerProfile] = None) -> bool:
    """Scope gate plus zero-signal short-circuit, dispatched on block type."""
    if not has_signal(block):
        return False
    if isinstance(block, NowBlock):
        return should_trigger_now(block, profile)
    if isinstance(block, TodayBlock):
        return should_trigger_today(block, profile)
    return should_trigger_week(block, profile)
