"""
Notification Governor — decides which candidates become public posts.

Pipeline per cycle (each candidate ends in exactly one outcome):
1. Dedup: content hash claimed with set-if-absent + TTL → REJECTED_DEDUP
2. Budget: daily counter over budget → REJECTED_BUDGET. Candidates that
   end without a log entry give their claim and budget increment back.
3. Rank by score (ties: evaluation order), then per-cycle cap and group
   diversity cap → REJECTED_CAP
4. Cooldown unless escalation → REJECTED_COOLDOWN
5. Hourly cap reached → HELD (approved, not posted)
6. Publish (or dry-run) and append to the durable log
   → POSTED | DRY_LOGGED | FAILED_LOGGED

Candidates are processed one at a time and each approved one is logged
before the next is evaluated, so cooldown and hourly checks always see
this cycle's earlier decisions.

If the key/value store fails the governor enters degraded mode: nothing is
published this cycle and every candidate is SUPPRESSED_DEGRADED.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

import structlog

from rainwatch.alerting.channels import Poster, PostSubmissionError
from rainwatch.alerting.cooldown import CooldownPolicy, CooldownVerdict
from rainwatch.alerting.dedup import DedupGate
from rainwatch.alerting.formatter import FormatRequest, FormattingService, source_tag_for
from rainwatch.alerting.schemas import (
    CandidateDecision,
    CandidateOutcome,
    PostStatus,
    TweetLogEntry,
)
from rainwatch.alerting.scoring import TweetCandidate
from rainwatch.services.clock import Clock
from rainwatch.services.store import StoreUnavailableError

logger = structlog.get_logger(__name__)


class TweetLogStore(Protocol):
    async def create(self, entry: TweetLogEntry) -> TweetLogEntry:
        ...

    async def find_most_recent_by_area(self, area_id: str) -> Optional[TweetLogEntry]:
        ...

    async def count_since(self, since: datetime) -> int:
        ...


@dataclass(frozen=True)
class GovernorConfig:
    publishing_enabled: bool = False
    cycle_cap: int = 6
    hourly_cap: int = 3
    group_slots: int = 1
    metro_severe_slots: int = 2
    post_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, s) -> "GovernorConfig":
        return cls(
            publishing_enabled=s.tweet_enable,
            cycle_cap=s.tweet_cycle_cap,
            hourly_cap=s.tweet_hourly_cap,
            post_timeout_seconds=s.external_timeout_seconds,
        )


@dataclass
class GovernorResult:
    decisions: list[CandidateDecision] = field(default_factory=list)
    degraded: bool = False


class NotificationGovernor:
    def __init__(
        self,
        dedup: DedupGate,
        log: TweetLogStore,
        cooldown: CooldownPolicy,
        formatter: FormattingService,
        clock: Clock,
        config: GovernorConfig = GovernorConfig(),
        poster: Optional[Poster] = None,
        metro_group_key: str = "metro:hyderabad",
    ):
        self.dedup = dedup
        self.log = log
        self.cooldown = cooldown
        self.formatter = formatter
        self.clock = clock
        self.config = config
        self.poster = poster
        self.metro_group_key = metro_group_key

    @property
    def publishing_enabled(self) -> bool:
        return self.config.publishing_enabled and self.poster is not None

    async def govern(
        self,
        candidates: Sequence[TweetCandidate],
        degraded: bool = False,
    ) -> GovernorResult:
        result = GovernorResult(degraded=degraded)
        if degraded:
            return self._suppress_all(result, candidates, "key/value store unavailable")

        # ── 1-2. Dedup and budget gates ───────────────────────────────
        survivors: list[TweetCandidate] = []
        for candidate in candidates:
            try:
                if not await self.dedup.register(candidate.hash):
                    result.decisions.append(self._decide(
                        candidate, CandidateOutcome.REJECTED_DEDUP,
                        f"Duplicate content within {self.dedup.min_gap_minutes}m",
                    ))
                    continue
                within, count = await self.dedup.consume_budget()
                if not within:
                    await self.dedup.release(candidate.hash)
                    await self.dedup.refund_budget()
                    result.decisions.append(self._decide(
                        candidate, CandidateOutcome.REJECTED_BUDGET,
                        f"Daily budget exhausted: {count}/{self.dedup.daily_budget}",
                    ))
                    continue
            except StoreUnavailableError as e:
                logger.warning("governor_degraded", error=str(e))
                result.degraded = True
                result.decisions.clear()
                return self._suppress_all(result, candidates, "key/value store unavailable")
            survivors.append(candidate)

        # ── 3-6. Rank, caps, cooldown, hourly cap, publish ────────────
        survivors.sort(key=lambda c: (-c.score, c.order))
        approved = 0
        per_group: dict[str, int] = defaultdict(int)

        for candidate in survivors:
            slots = self._group_slots(candidate)
            if approved >= self.config.cycle_cap:
                await self._unclaim(candidate)
                result.decisions.append(self._decide(
                    candidate, CandidateOutcome.REJECTED_CAP,
                    f"Cycle cap reached ({self.config.cycle_cap})",
                ))
                continue
            if per_group[candidate.group_key] >= slots:
                await self._unclaim(candidate)
                result.decisions.append(self._decide(
                    candidate, CandidateOutcome.REJECTED_CAP,
                    f"Group '{candidate.group_key}' already has {slots} slot(s) this cycle",
                ))
                continue

            now = self.clock.now()
            previous = await self.log.find_most_recent_by_area(candidate.area_id)
            verdict = self.cooldown.evaluate(candidate, previous, now)
            if not verdict.allowed:
                await self._unclaim(candidate)
                result.decisions.append(self._decide(
                    candidate, CandidateOutcome.REJECTED_COOLDOWN, verdict.reason,
                ))
                continue

            # APPROVED: consumes cycle and group slots from here on
            approved += 1
            per_group[candidate.group_key] += 1

            recent = await self.log.count_since(now - timedelta(minutes=60))
            if recent >= self.config.hourly_cap:
                await self._unclaim(candidate)
                logger.info(
                    "tweet_held_hourly_cap",
                    area_id=candidate.area_id,
                    scope=str(candidate.scope),
                    recent=recent,
                )
                result.decisions.append(self._decide(
                    candidate, CandidateOutcome.HELD,
                    f"Hourly cap reached ({recent}/{self.config.hourly_cap})",
                    escalated=verdict.escalated,
                ))
                continue

            result.decisions.append(await self._publish(candidate, verdict, previous))

        return result

    # ── Helpers ───────────────────────────────────────────────────────

    def _group_slots(self, candidate: TweetCandidate) -> int:
        if candidate.group_key == self.metro_group_key and candidate.severe:
            return self.config.metro_severe_slots
        return self.config.group_slots

    async def _publish(
        self,
        candidate: TweetCandidate,
        verdict: CooldownVerdict,
        previous: Optional[TweetLogEntry],
    ) -> CandidateDecision:
        source_tag = source_tag_for(candidate.block)
        parts, used = await self.formatter.format(FormatRequest(
            area_name=candidate.area_name,
            scope=candidate.scope,
            block=candidate.block,
            source_tag=source_tag,
            metro=candidate.metro,
        ))
        text = self.formatter.compose(parts, source_tag)

        post_id = None
        reason = verdict.reason
        if not self.publishing_enabled:
            status, outcome = PostStatus.DRY_RUN, CandidateOutcome.DRY_LOGGED
        else:
            reply_to = previous.external_post_id if verdict.escalated and previous else None
            try:
                post_id = await asyncio.wait_for(
                    self.poster.submit(text, reply_to_id=reply_to),
                    timeout=self.config.post_timeout_seconds,
                )
                status, outcome = PostStatus.POSTED, CandidateOutcome.POSTED
            except (PostSubmissionError, asyncio.TimeoutError) as e:
                logger.warning(
                    "post_submission_failed",
                    area_id=candidate.area_id,
                    scope=str(candidate.scope),
                    error=str(e) or type(e).__name__,
                )
                status, outcome = PostStatus.FAILED, CandidateOutcome.FAILED_LOGGED
                reason = f"Submission failed: {str(e) or type(e).__name__}"

        await self.log.create(TweetLogEntry(
            area_id=candidate.area_id,
            scope=candidate.scope,
            bucket=candidate.bucket,
            window_label=candidate.window_label,
            window_start=candidate.window.start if candidate.window else None,
            window_end=candidate.window.end if candidate.window else None,
            hash=candidate.hash,
            external_post_id=post_id,
            status=status,
            text=text,
            created_at=self.clock.now(),
        ))
        logger.info(
            "tweet_decision_logged",
            area_id=candidate.area_id,
            scope=str(candidate.scope),
            bucket=str(candidate.bucket),
            status=str(status),
            formatter=used,
            escalated=verdict.escalated,
            score=candidate.score,
        )
        return self._decide(
            candidate, outcome, reason, post_id=post_id, escalated=verdict.escalated,
        )

    async def _unclaim(self, candidate: TweetCandidate) -> None:
        """Release the dedup claim and budget increment of a candidate that will not be logged."""
        try:
            await self.dedup.release(candidate.hash)
            await self.dedup.refund_budget()
        except StoreUnavailableError as e:
            logger.warning("dedup_release_failed", area_id=candidate.area_id, error=str(e))

    def _suppress_all(
        self,
        result: GovernorResult,
        candidates: Sequence[TweetCandidate],
        reason: str,
    ) -> GovernorResult:
        for candidate in candidates:
            result.decisions.append(
                self._decide(candidate, CandidateOutcome.SUPPRESSED_DEGRADED, reason)
            )
        if candidates:
            logger.warning("cycle_suppressed_degraded", candidates=len(candidates))
        return result

    @staticmethod
    def _decide(
        candidate: TweetCandidate,
        outcome: CandidateOutcome,
        reason: str = "",
        post_id: Optional[str] = None,
        escalated: bool = False,
    ) -> CandidateDecision:
        return CandidateDecision(
            area_id=candidate.area_id,
            scope=candidate.scope,
            bucket=candidate.bucket,
            window_label=candidate.window_label,
            score=candidate.score,
            outcome=outcome,
            reason=reason,
            post_id=post_id,
            escalated=escalated,
        )
