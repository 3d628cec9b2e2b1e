"""
Rule Engine — area features → zero-or-one pre-alert.

Pure and deterministic: identical features and profile always yield an
identical result, and nothing here touches I/O or the clock.

Labels:
- HEAVY_RAIN_LIKELY: radar cell close and at least moderate, or a likely
  model/station hour with measurable rain (plus the relaxed path when the
  active profile enables it)
- SEVERE_THUNDERSTORM_RISK: heavy radar cell within the hour
- LOCAL_DOWNPOUR_ONGOING: station/model hour already at downpour rate
"""

from typing import NamedTuple, Optional

import structlog

from rainwatch.engine.profiles import (
    DEFAULT_DAILY_RULE,
    DEFAULT_OUTLOOK_RULE,
    RULE_PROFILES,
    DailyRule,
    OutlookRule,
    RuleProfile,
)
from rainwatch.schemas.weather import (
    AlertLabel,
    AreaFeatures,
    DailyForecast,
    EvidenceSource,
    ObservationSnapshot,
    PreAlert,
    RadarIntensity,
    Severity,
)

logger = structlog.get_logger(__name__)


class RuleEngine:
    """Classifies one area's features under a named threshold profile."""

    def __init__(self, profile: Optional[RuleProfile] = None):
        self.profile = profile or RULE_PROFILES["standard"]

    def evaluate(self, features: AreaFeatures) -> Optional[PreAlert]:
        p = self.profile
        eta = features.radar.eta_min
        radar_intensity = features.radar.intensity
        probability = features.meteo.probability or 0.0
        precip = features.meteo.precip_hour or 0.0

        labels: list[AlertLabel] = []
        sources: list[EvidenceSource] = []

        def _add(label: AlertLabel, source: EvidenceSource) -> None:
            if label not in labels:
                labels.append(label)
            if source not in sources:
                sources.append(source)

        radar_close = eta is not None and eta <= p.heavy_rain_eta_max
        if (
            radar_close and radar_intensity in (RadarIntensity.MODERATE, RadarIntensity.HEAVY)
        ) or (probability >= p.heavy_rain_probability_min and precip >= p.heavy_rain_precip_min):
            _add(AlertLabel.HEAVY_RAIN_LIKELY, EvidenceSource.RADAR)

        if (
            eta is not None
            and eta <= p.thunderstorm_eta_max
            and radar_intensity == RadarIntensity.HEAVY
        ):
            _add(AlertLabel.SEVERE_THUNDERSTORM_RISK, EvidenceSource.RADAR)

        if precip >= p.downpour_precip_min:
            _add(AlertLabel.LOCAL_DOWNPOUR_ONGOING, EvidenceSource.STATIONS)

        relaxed_hit = p.relaxed is not None and (
            probability >= p.relaxed.probability_min or precip >= p.relaxed.precip_min
        )
        if relaxed_hit:
            _add(AlertLabel.HEAVY_RAIN_LIKELY, EvidenceSource.STATIONS)

        if not labels:
            return None

        if AlertLabel.SEVERE_THUNDERSTORM_RISK in labels:
            severity = Severity.HIGH
        elif AlertLabel.HEAVY_RAIN_LIKELY in labels:
            severity = Severity.MEDIUM
        else:
            severity = Severity.INFO

        # Relaxed alerts are never louder than medium
        if relaxed_hit:
            strong = (
                probability >= p.relaxed.medium_probability_min
                or precip >= p.relaxed.medium_precip_min
            )
            severity = Severity.MEDIUM if strong else Severity.INFO

        pre_alert = PreAlert(
            labels=tuple(labels),
            severity=severity,
            confidence=self.confidence(features),
            sources=tuple(sources),
        )
        logger.debug(
            "pre_alert_emitted",
            area_id=features.area_id,
            labels=[str(label) for label in labels],
            severity=str(severity),
            confidence=pre_alert.confidence,
            profile=p.name,
        )
        return pre_alert

    def confidence(self, features: AreaFeatures) -> float:
        """0.3 base + radar proximity + model probability + radar intensity bonus, clipped to [0, 1]."""
        p = self.profile
        eta = features.radar.eta_min
        probability = features.meteo.probability or 0.0

        eta_term = 0.0
        if eta is not None:
            eta_term = max(0.0, (p.confidence_eta_horizon - eta) / p.confidence_eta_scale)

        bonus = 0.0
        if features.radar.intensity == RadarIntensity.MODERATE:
            bonus = p.moderate_radar_bonus
        elif features.radar.intensity == RadarIntensity.HEAVY:
            bonus = p.heavy_radar_bonus

        raw = (
            p.confidence_base
            + eta_term
            + (probability / 100.0) * p.confidence_probability_weight
            + bonus
        )
        return round(min(1.0, max(0.0, raw)), 4)


def assess_outlook(
    observation: ObservationSnapshot,
    rule: OutlookRule = DEFAULT_OUTLOOK_RULE,
) -> Optional[PreAlert]:
    """
    TODAY outlook from the 12-hour model summary.

    Fires when the 12h peak probability or the 12h total is notable.
    Confidence blends probability, amount (saturating) and radar proximity.
    """
    probability = observation.max_prob_12h or 0.0
    total = observation.sum_precip_12h or 0.0
    if probability < rule.probability_min and total < rule.sum_12h_min:
        return None

    eta = observation.radar_eta_min
    radar_near = eta is not None and eta <= rule.radar_eta_max
    confidence = (
        rule.probability_weight * (probability / 100.0)
        + rule.amount_weight * min(1.0, total / rule.amount_saturation_mm)
        + (rule.radar_weight if radar_near else 0.0)
        + rule.base
    )

    medium = probability >= rule.medium_probability_min or total >= rule.medium_sum_12h_min
    return PreAlert(
        labels=(AlertLabel.HEAVY_RAIN_LIKELY,) if medium else (),
        severity=Severity.MEDIUM if medium else Severity.INFO,
        confidence=round(min(1.0, max(0.0, confidence)), 4),
        sources=(EvidenceSource.RADAR,) if radar_near else (),
    )


class DayAssessment(NamedTuple):
    severity: Severity
    confidence: float
    notable: bool


def assess_day(day: DailyForecast, rule: DailyRule = DEFAULT_DAILY_RULE) -> DayAssessment:
    """Per-day outlook: 0.6·probability + 0.4·amount (saturating at 20 mm), clipped to [0, 1]."""
    probability = day.probability_max or 0.0
    total = day.precipitation_sum or 0.0
    confidence = (
        rule.probability_weight * (probability / 100.0)
        + rule.amount_weight * min(1.0, total / rule.amount_saturation_mm)
    )
    medium = probability >= rule.medium_probability_min or total >= rule.medium_sum_min
    return DayAssessment(
        severity=Severity.MEDIUM if medium else Severity.INFO,
        confidence=round(min(1.0, max(0.0, confidence)), 4),
        notable=probability >= rule.notable_probability_min or total >= rule.notable_sum_min,
    )
