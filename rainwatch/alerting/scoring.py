"""
Candidate Scorer.

score = scopeWeight + 25·bucketRank + 0.4·maxProb + 10·thunder
        + 10·etaSoon + 0.5·threeHourTotal + 0.4·twelveHourSum + 6·metro

Higher is more urgent. Weights come from ``ScoringWeights`` so the formula
is tuned by configuration, not code.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from rainwatch.alerting.dedup import content_hash
from rainwatch.engine.blocks import ScoreInputs
from rainwatch.engine.intensity import bucket_rank
from rainwatch.engine.profiles import DEFAULT_WEIGHTS, ScoringWeights
from rainwatch.schemas.weather import IntensityBucket, Scope, TimeWindow


@dataclass(frozen=True)
class MetroPolicy:
    """Which areas belong to the metro group (shared diversity slot, extra hashtag)."""

    area_ids: frozenset = frozenset({"dist-hyderabad", "dist-hyd"})
    prefixes: tuple = ("nbhd-",)
    group_key: str = "metro:hyderabad"

    @classmethod
    def from_settings(cls, s) -> "MetroPolicy":
        return cls(
            area_ids=frozenset(s.metro_area_ids),
            prefixes=tuple(s.metro_area_prefixes),
            group_key=s.metro_group_key,
        )

    def is_metro(self, area_id: str) -> bool:
        return area_id in self.area_ids or any(area_id.startswith(p) for p in self.prefixes)

    def group_for(self, area_id: str) -> str:
        return self.group_key if self.is_metro(area_id) else area_id


@dataclass
class TweetCandidate:
    area_id: str
    area_name: str
    scope: Scope
    bucket: IntensityBucket
    score: float
    group_key: str
    severe: bool
    metro: bool
    hash: str
    window: Optional[TimeWindow] = None
    window_label: str = ""
    order: int = 0
    block: Any = None
    observed_at: Optional[datetime] = None


class CandidateScorer:
    def __init__(
        self,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        metro: Optional[MetroPolicy] = None,
    ):
        self.weights = weights
        self.metro = metro or MetroPolicy()

    def score(self, scope: Scope, inputs: ScoreInputs, metro: bool) -> float:
        w = self.weights
        eta_soon = inputs.eta_from is not None and inputs.eta_from <= w.eta_soon_minutes
        total = (
            w.scope_weights.get(scope, 0.0)
            + w.bucket_rank * bucket_rank(inputs.bucket)
            + w.max_probability * inputs.max_prob
            + (w.thunder if inputs.thunder else 0.0)
            + (w.eta_soon if eta_soon else 0.0)
            + w.three_hour_total * inputs.three_hour_total
            + w.twelve_hour_sum * inputs.twelve_hour_sum
            + (w.metro if metro else 0.0)
        )
        return round(total, 3)

    def build(
        self,
        area_id: str,
        area_name: str,
        block,
        order: int = 0,
        observed_at: Optional[datetime] = None,
    ) -> TweetCandidate:
        """Turn a triggered display block into a scored candidate."""
        inputs = block.score_inputs()
        metro = self.metro.is_metro(area_id)
        window = block.window
        window_label = window.label() if window is not None else ""
        return TweetCandidate(
            area_id=area_id,
            area_name=area_name,
            scope=block.scope,
            bucket=block.bucket,
            score=self.score(block.scope, inputs, metro),
            group_key=self.metro.group_for(area_id),
            severe=inputs.thunder or block.bucket == IntensityBucket.VERY_HEAVY,
            metro=metro,
            hash=content_hash(area_id, block.scope, block.bucket, window_label),
            window=window,
            window_label=window_label,
            order=order,
            block=block,
            observed_at=observed_at,
        )
