"""
Notification Schemas.

Outcomes, durable log entries and the per-cycle decision report.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from rainwatch.schemas.weather import IntensityBucket, Scope, as_utc


# ── Enums ──────────────────────────────────────────────────────────────


class CandidateOutcome(StrEnum):
    REJECTED_DEDUP = "rejected_dedup"
    REJECTED_BUDGET = "rejected_budget"
    REJECTED_CAP = "rejected_cap"
    REJECTED_COOLDOWN = "rejected_cooldown"
    SUPPRESSED_DEGRADED = "suppressed_degraded"
    HELD = "held"                       # Approved, hourly cap reached
    POSTED = "posted"
    DRY_LOGGED = "dry_logged"           # Approved, publishing disabled
    FAILED_LOGGED = "failed_logged"     # Approved, submission failed


class PostStatus(StrEnum):
    POSTED = "posted"
    DRY_RUN = "dry_run"
    FAILED = "failed"


class CycleStatus(StrEnum):
    COMPLETED = "completed"
    SKIPPED_LOCKED = "skipped_locked"


LOGGED_OUTCOMES = frozenset({
    CandidateOutcome.POSTED,
    CandidateOutcome.DRY_LOGGED,
    CandidateOutcome.FAILED_LOGGED,
})


# ── Log & report ──────────────────────────────────────────────────────


class TweetLogEntry(BaseModel):
    """One durable notification-log row."""

    area_id: str
    scope: Scope
    bucket: IntensityBucket
    window_label: str = ""
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    hash: str
    external_post_id: Optional[str] = None
    status: PostStatus
    text: str = ""
    created_at: datetime

    @field_validator("window_start", "window_end", "created_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class BilingualText(BaseModel):
    text_en: str = Field(min_length=1)
    text_te: str = Field(min_length=1)
    hashtags: list[str] = Field(default_factory=list)


class CandidateDecision(BaseModel):
    area_id: str
    scope: Scope
    bucket: IntensityBucket
    window_label: str = ""
    score: float
    outcome: CandidateOutcome
    reason: str = ""
    post_id: Optional[str] = None
    escalated: bool = False


class CycleReport(BaseModel):
    cycle_id: str
    status: CycleStatus = CycleStatus.COMPLETED
    started_at: datetime
    finished_at: Optional[datetime] = None
    degraded: bool = False
    publishing_enabled: bool = False
    retry_after_seconds: Optional[int] = None
    areas_evaluated: int = 0
    skipped_areas: dict[str, str] = Field(default_factory=dict)
    alerts_created: int = 0
    decisions: list[CandidateDecision] = Field(default_factory=list)

    @property
    def accepted(self) -> list[CandidateDecision]:
        return [d for d in self.decisions if d.outcome in LOGGED_OUTCOMES]

    @property
    def held(self) -> list[CandidateDecision]:
        return [d for d in self.decisions if d.outcome == CandidateOutcome.HELD]

    @property
    def rejected(self) -> list[CandidateDecision]:
        return [
            d for d in self.decisions
            if d.outcome not in LOGGED_OUTCOMES and d.outcome != CandidateOutcome.HELD
        ]

    def count(self, outcome: CandidateOutcome) -> int:
        return sum(1 for d in self.decisions if d.outcome == outcome)
