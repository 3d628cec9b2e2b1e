"""
Threshold Profiles — every tunable number of the decision pipeline in one place.

Rule profiles drive the rule engine, trigger profiles drive the per-scope
gates, and scoring weights drive candidate ranking. Profiles are selected by
name from configuration; callers never hard-code thresholds.
"""

from dataclasses import dataclass, field
from typing import Optional

from rainwatch.schemas.weather import IntensityBucket, Scope


@dataclass(frozen=True)
class RelaxedRule:
    """Extra HEAVY_RAIN_LIKELY path used in low-signal seasons."""

    probability_min: float = 40.0
    precip_min: float = 1.0
    medium_probability_min: float = 60.0
    medium_precip_min: float = 3.0


@dataclass(frozen=True)
class RuleProfile:
    name: str
    heavy_rain_eta_max: int = 90
    heavy_rain_probability_min: float = 70.0
    heavy_rain_precip_min: float = 2.0
    thunderstorm_eta_max: int = 60
    downpour_precip_min: float = 10.0
    confidence_base: float = 0.3
    confidence_eta_horizon: float = 90.0
    confidence_eta_scale: float = 180.0
    confidence_probability_weight: float = 0.3
    moderate_radar_bonus: float = 0.1
    heavy_radar_bonus: float = 0.2
    relaxed: Optional[RelaxedRule] = None


@dataclass(frozen=True)
class OutlookRule:
    """When a TODAY outlook alert is recorded, and how confident it is."""

    probability_min: float = 60.0
    sum_12h_min: float = 10.0
    medium_probability_min: float = 70.0
    medium_sum_12h_min: float = 15.0
    probability_weight: float = 0.4
    amount_weight: float = 0.3
    amount_saturation_mm: float = 20.0
    radar_weight: float = 0.2
    radar_eta_max: int = 180
    base: float = 0.1


@dataclass(frozen=True)
class DailyRule:
    """Severity, confidence and wording of the per-day outlook rows."""

    medium_probability_min: float = 70.0
    medium_sum_min: float = 15.0
    probability_weight: float = 0.6
    amount_weight: float = 0.4
    amount_saturation_mm: float = 20.0
    # below both, the day reads as a low chance of rain
    notable_probability_min: float = 40.0
    notable_sum_min: float = 5.0


@dataclass(frozen=True)
class TriggerProfile:
    name: str
    now_mmh_high_min: float = 0.5
    now_light_confidence_min: float = 80.0
    now_duration_min: int = 120
    now_eta_max: int = 90
    today_probability_min: float = 70.0
    today_intensities: frozenset = frozenset(
        {IntensityBucket.MODERATE, IntensityBucket.HEAVY, IntensityBucket.VERY_HEAVY}
    )
    week_mm_high_min: float = 15.0
    # None disables the light-but-likely path for the week scope
    week_light_probability_min: Optional[float] = None


@dataclass(frozen=True)
class ScoringWeights:
    scope_weights: dict = field(
        default_factory=lambda: {Scope.NOW: 60.0, Scope.TODAY: 30.0, Scope.WEEK: 0.0}
    )
    bucket_rank: float = 25.0
    max_probability: float = 0.4
    thunder: float = 10.0
    eta_soon: float = 10.0
    eta_soon_minutes: int = 60
    three_hour_total: float = 0.5
    twelve_hour_sum: float = 0.4
    metro: float = 6.0


RULE_PROFILES: dict[str, RuleProfile] = {
    "standard": RuleProfile(name="standard"),
    "relaxed": RuleProfile(name="relaxed", relaxed=RelaxedRule()),
}

TRIGGER_PROFILES: dict[str, TriggerProfile] = {
    "standard": TriggerProfile(name="standard"),
    "widened": TriggerProfile(
        name="widened",
        today_intensities=frozenset({
            IntensityBucket.LIGHT,
            IntensityBucket.MODERATE,
            IntensityBucket.HEAVY,
            IntensityBucket.VERY_HEAVY,
        }),
        week_light_probability_min=80.0,
    ),
}

DEFAULT_WEIGHTS = ScoringWeights()
DEFAULT_OUTLOOK_RULE = OutlookRule()
DEFAULT_DAILY_RULE = DailyRule()


def get_rule_profile(name: str) -> RuleProfile:
    try:
        return RULE_PROFILES[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown rule profile '{name}' (expected one of {sorted(RULE_PROFILES)})"
        ) from None


def get_trigger_profile(name: str) -> TriggerProfile:
    try:
        return TRIGGER_PROFILES[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown trigger profile '{name}' (expected one of {sorted(TRIGGER_PROFILES)})"
        ) from None
