"""
Cooldown & Escalation.

After an area is posted about it stays quiet for the cooldown period, unless
the situation genuinely escalates:
- the intensity bucket rank strictly increases, or
- for NOW posts, the ETA window moved by more than the allowed shift.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from rainwatch.alerting.schemas import TweetLogEntry
from rainwatch.alerting.scoring import TweetCandidate
from rainwatch.engine.intensity import bucket_rank
from rainwatch.schemas.weather import Scope, TimeWindow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CooldownVerdict:
    allowed: bool
    escalated: bool = False
    reason: str = ""


class CooldownPolicy:
    def __init__(self, cooldown_minutes: int = 180, eta_shift_minutes: int = 20):
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.eta_shift = timedelta(minutes=eta_shift_minutes)

    def evaluate(
        self,
        candidate: TweetCandidate,
        previous: Optional[TweetLogEntry],
        now: datetime,
    ) -> CooldownVerdict:
        if previous is None:
            return CooldownVerdict(allowed=True)

        elapsed = now - previous.created_at
        if elapsed >= self.cooldown:
            return CooldownVerdict(allowed=True)

        if bucket_rank(candidate.bucket) > bucket_rank(previous.bucket):
            return CooldownVerdict(
                allowed=True,
                escalated=True,
                reason=f"Intensity escalated {previous.bucket} → {candidate.bucket}",
            )

        if candidate.scope == Scope.NOW and self._eta_shifted(candidate, previous):
            return CooldownVerdict(
                allowed=True,
                escalated=True,
                reason="ETA window shifted",
            )

        remaining = (self.cooldown - elapsed).total_seconds() / 60.0
        logger.debug(
            "tweet_suppressed_cooldown",
            area_id=candidate.area_id,
            elapsed_minutes=round(elapsed.total_seconds() / 60.0, 1),
        )
        return CooldownVerdict(
            allowed=False,
            reason=(
                f"Cooldown active: {remaining:.0f}m remaining "
                f"(last {previous.scope} post {elapsed.total_seconds() / 60.0:.0f}m ago)"
            ),
        )

    def _eta_shifted(self, candidate: TweetCandidate, previous: TweetLogEntry) -> bool:
        # Both windows are needed to measure a shift
        if previous.scope != Scope.NOW or candidate.window is None:
            return False
        if previous.window_start is None or previous.window_end is None:
            return False
        before = TimeWindow(start=previous.window_start, end=previous.window_end)
        return candidate.window.shifted_from(before) > self.eta_shift
