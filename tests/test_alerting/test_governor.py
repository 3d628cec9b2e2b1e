"""
Notification Governor Tests.

Covers:
- Dry-run, posting, submission failure and timeout (tri-state log)
- Dedup and daily budget gates, budget refunds for unlogged candidates
- Ranking, per-cycle cap and group diversity cap
- Cooldown, escalation and reply threading
- Hourly cap holds
- Degraded mode when the key/value store is down
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest
import requests
from sqlalchemy import select

from rainwatch.alerting.channels import PostSubmissionError, XPoster
from rainwatch.alerting.cooldown import CooldownPolicy
from rainwatch.alerting.dedup import DedupGate, content_hash
from rainwatch.alerting.formatter import FallbackFormatter, FormattingService, LLMFormatter
from rainwatch.alerting.governor import GovernorConfig, NotificationGovernor
from rainwatch.alerting.schemas import CandidateOutcome, PostStatus, TweetLogEntry
from rainwatch.alerting.scoring import MetroPolicy, TweetCandidate
from rainwatch.db.models import TweetLog
from rainwatch.engine.blocks import NowBlock, TodayBlock
from rainwatch.schemas.weather import IntensityBucket, Scope, TimeWindow
from rainwatch.services.llm_gateway import LLMGateway
from rainwatch.services.store import StoreUnavailableError

T0 = datetime(2025, 7, 14, 9, 0, tzinfo=timezone.utc)


class FakePoster:
    def __init__(self, fail_for: tuple = ()):
        self.calls: list[tuple[str, Optional[str]]] = []
        self.fail_for = fail_for
        self._next_id = 1000

    async def submit(self, text: str, reply_to_id: Optional[str] = None) -> str:
        self.calls.append((text, reply_to_id))
        if any(name in text for name in self.fail_for):
            raise PostSubmissionError("429 Too Many Requests")
        self._next_id += 1
        return str(self._next_id)


class SlowPoster:
    async def submit(self, text: str, reply_to_id: Optional[str] = None) -> str:
        await asyncio.sleep(1)
        return "never"


class BrokenStore:
    async def set_if_absent(self, key, value, ttl_seconds):
        raise StoreUnavailableError("connection refused")

    async def get(self, key):
        raise StoreUnavailableError("connection refused")

    async def incr_with_expiry(self, key, ttl_seconds):
        raise StoreUnavailableError("connection refused")

    async def ttl(self, key):
        raise StoreUnavailableError("connection refused")

    async def delete(self, key):
        raise StoreUnavailableError("connection refused")

    async def delete_if_equals(self, key, value):
        raise StoreUnavailableError("connection refused")

    async def decrement(self, key):
        raise StoreUnavailableError("connection refused")


class DroppingClient:
    """tweepy client whose HTTP session loses the connection."""

    def create_tweet(self, text=None, in_reply_to_tweet_id=None):
        raise requests.exceptions.ConnectionError("connection reset by peer")


def _candidate(
    area_id: str = "dist-nalgonda",
    score: float = 100.0,
    bucket: IntensityBucket = IntensityBucket.MODERATE,
    scope: Scope = Scope.NOW,
    severe: bool = False,
    order: int = 0,
    eta: int = 20,
) -> TweetCandidate:
    policy = MetroPolicy()
    window = TimeWindow(start=T0 + timedelta(minutes=eta), end=T0 + timedelta(minutes=eta + 20))
    if scope == Scope.NOW:
        block = NowBlock(
            intensity=bucket, mmh_low=1.4, mmh_high=2.6,
            eta_from=eta, eta_to=eta + 20, thunder=severe, window=window,
        )
    else:
        block = TodayBlock(
            intensity=bucket, three_low=8.4, three_high=15.6, max_prob_12h=80, window=window,
        )
    return TweetCandidate(
        area_id=area_id,
        area_name=f"Area {area_id}",
        scope=scope,
        bucket=bucket,
        score=score,
        group_key=policy.group_for(area_id),
        severe=severe,
        metro=policy.is_metro(area_id),
        hash=content_hash(area_id, scope, bucket, window.label()),
        window=window,
        window_label=window.label(),
        order=order,
        block=block,
        observed_at=T0,
    )


def _logged(area_id: str, minutes_ago: int, bucket=IntensityBucket.MODERATE, post_id="555"):
    window = TimeWindow(start=T0, end=T0 + timedelta(minutes=20))
    return TweetLogEntry(
        area_id=area_id,
        scope=Scope.NOW,
        bucket=bucket,
        window_label=window.label(),
        window_start=window.start,
        window_end=window.end,
        hash=f"old-{area_id}-{minutes_ago}",
        external_post_id=post_id,
        status=PostStatus.POSTED,
        created_at=T0 - timedelta(minutes=minutes_ago),
    )


async def _rows(session_factory) -> list[TweetLog]:
    async with session_factory() as db:
        result = await db.execute(select(TweetLog).order_by(TweetLog.created_at))
        return list(result.scalars().all())


@pytest.fixture
def make_governor(store, clock, tweet_log):
    def _make(
        poster=None,
        publishing: bool = False,
        daily_budget: int = 100,
        kv=None,
        formatter=None,
        **config,
    ) -> NotificationGovernor:
        return NotificationGovernor(
            dedup=DedupGate(kv or store, clock, min_gap_minutes=60, daily_budget=daily_budget),
            log=tweet_log,
            cooldown=CooldownPolicy(cooldown_minutes=180, eta_shift_minutes=20),
            formatter=formatter or FormattingService(FallbackFormatter()),
            clock=clock,
            config=GovernorConfig(publishing_enabled=publishing, **config),
            poster=poster,
        )
    return _make


def _outcomes(result) -> dict[str, CandidateOutcome]:
    return {d.area_id: d.outcome for d in result.decisions}


# ── Publishing ────────────────────────────────────────────────────────


class TestPublish:
    @pytest.mark.asyncio
    async def test_dry_run_is_logged_without_post_id(self, make_governor, session_factory):
        governor = make_governor()
        result = await governor.govern([_candidate()])

        assert not governor.publishing_enabled
        decision = result.decisions[0]
        assert decision.outcome == CandidateOutcome.DRY_LOGGED
        assert decision.post_id is None

        rows = await _rows(session_factory)
        assert len(rows) == 1
        assert rows[0].status == PostStatus.DRY_RUN
        assert rows[0].external_post_id is None
        assert "#TelanganaWeather" in rows[0].text

    @pytest.mark.asyncio
    async def test_enabled_without_poster_is_dry_run(self, make_governor):
        governor = make_governor(publishing=True)
        result = await governor.govern([_candidate()])
        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED

    @pytest.mark.asyncio
    async def test_posted_with_external_id(self, make_governor, session_factory):
        poster = FakePoster()
        governor = make_governor(poster=poster, publishing=True)
        result = await governor.govern([_candidate()])

        decision = result.decisions[0]
        assert decision.outcome == CandidateOutcome.POSTED
        assert decision.post_id == "1001"
        assert poster.calls[0][1] is None

        rows = await _rows(session_factory)
        assert rows[0].status == PostStatus.POSTED
        assert rows[0].external_post_id == "1001"
        assert rows[0].window_start == T0 + timedelta(minutes=20)

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_not_fatal(self, make_governor, session_factory):
        poster = FakePoster(fail_for=("dist-khammam",))
        governor = make_governor(poster=poster, publishing=True)
        result = await governor.govern([
            _candidate("dist-khammam", score=120),
            _candidate("dist-nalgonda", score=110, order=1),
        ])

        assert _outcomes(result) == {
            "dist-khammam": CandidateOutcome.FAILED_LOGGED,
            "dist-nalgonda": CandidateOutcome.POSTED,
        }
        assert "429" in result.decisions[0].reason
        statuses = {r.area_id: r.status for r in await _rows(session_factory)}
        assert statuses == {"dist-khammam": "failed", "dist-nalgonda": "posted"}

    @pytest.mark.asyncio
    async def test_submission_timeout_counts_as_failure(self, make_governor):
        governor = make_governor(poster=SlowPoster(), publishing=True, post_timeout_seconds=0.01)
        result = await governor.govern([_candidate()])
        assert result.decisions[0].outcome == CandidateOutcome.FAILED_LOGGED

    @pytest.mark.asyncio
    async def test_dropped_connection_is_logged_as_failure(self, make_governor, session_factory):
        governor = make_governor(poster=XPoster(client=DroppingClient()), publishing=True)
        result = await governor.govern([
            _candidate("dist-khammam", score=120),
            _candidate("dist-nalgonda", score=110, order=1),
        ])

        assert _outcomes(result) == {
            "dist-khammam": CandidateOutcome.FAILED_LOGGED,
            "dist-nalgonda": CandidateOutcome.FAILED_LOGGED,
        }
        assert "connection reset" in result.decisions[0].reason
        rows = await _rows(session_factory)
        assert [r.status for r in rows] == ["failed", "failed"]
        assert all(r.external_post_id is None for r in rows)

    @pytest.mark.asyncio
    async def test_html_from_llm_proxy_still_logs(self, make_governor, session_factory):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>captive portal</html>")
        )
        formatter = FormattingService(
            FallbackFormatter(),
            primary=LLMFormatter(LLMGateway(api_key="sk-test", transport=transport), "test-model"),
        )
        governor = make_governor(formatter=formatter)
        result = await governor.govern([_candidate()])

        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED
        rows = await _rows(session_factory)
        assert rows[0].text.startswith("Area dist-nalgonda: Moderate rain")


# ── Dedup & budget ────────────────────────────────────────────────────


class TestGates:
    @pytest.mark.asyncio
    async def test_duplicate_within_cycle(self, make_governor):
        governor = make_governor()
        result = await governor.govern([_candidate(), _candidate(order=1)])
        assert [d.outcome for d in result.decisions] == [
            CandidateOutcome.REJECTED_DEDUP,
            CandidateOutcome.DRY_LOGGED,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_next_cycle(self, make_governor, clock):
        governor = make_governor()
        await governor.govern([_candidate()])
        clock.advance(minutes=10)
        result = await governor.govern([_candidate()])
        assert result.decisions[0].outcome == CandidateOutcome.REJECTED_DEDUP

    @pytest.mark.asyncio
    async def test_budget_rejects_even_the_best(self, make_governor, store):
        governor = make_governor(daily_budget=2)
        late = _candidate("dist-mulugu", score=500, order=2)
        result = await governor.govern([
            _candidate("dist-khammam", score=100),
            _candidate("dist-nalgonda", score=90, order=1),
            late,
        ])
        outcomes = _outcomes(result)
        assert outcomes["dist-mulugu"] == CandidateOutcome.REJECTED_BUDGET
        assert outcomes["dist-khammam"] == CandidateOutcome.DRY_LOGGED
        assert outcomes["dist-nalgonda"] == CandidateOutcome.DRY_LOGGED
        # The rejected claim and its increment are given back
        assert await store.get(governor.dedup.hash_key(late.hash)) is None
        assert await store.get(governor.dedup.budget_key(T0)) == "2"

    @pytest.mark.asyncio
    async def test_budget_persists_across_cycles(self, make_governor, clock):
        governor = make_governor(daily_budget=1)
        await governor.govern([_candidate("dist-khammam")])
        clock.advance(hours=4)
        result = await governor.govern([_candidate("dist-nalgonda", score=999)])
        assert result.decisions[0].outcome == CandidateOutcome.REJECTED_BUDGET

    @pytest.mark.asyncio
    async def test_area_in_cooldown_does_not_drain_budget(self, make_governor, tweet_log, store, clock):
        await tweet_log.create(_logged("dist-khammam", minutes_ago=30))
        governor = make_governor(daily_budget=3)
        for _ in range(3):
            result = await governor.govern([_candidate("dist-khammam")])
            assert result.decisions[0].outcome == CandidateOutcome.REJECTED_COOLDOWN
            clock.advance(minutes=10)

        assert await store.get(governor.dedup.budget_key(clock.now())) == "0"
        result = await governor.govern([_candidate("dist-nalgonda")])
        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED
        assert await store.get(governor.dedup.budget_key(clock.now())) == "1"

    @pytest.mark.asyncio
    async def test_capped_and_held_candidates_are_refunded(self, make_governor, store):
        governor = make_governor(daily_budget=2, cycle_cap=1)
        result = await governor.govern([
            _candidate("dist-khammam", score=200),
            _candidate("dist-mulugu", score=100, order=1),
        ])
        assert _outcomes(result)["dist-mulugu"] == CandidateOutcome.REJECTED_CAP
        assert await store.get(governor.dedup.budget_key(T0)) == "1"


# ── Ranking & caps ────────────────────────────────────────────────────


class TestCaps:
    @pytest.mark.asyncio
    async def test_cycle_cap_keeps_highest_scores(self, make_governor, store):
        governor = make_governor(cycle_cap=2, hourly_cap=10)
        candidates = [
            _candidate("dist-khammam", score=50),
            _candidate("dist-nalgonda", score=150, order=1),
            _candidate("dist-mulugu", score=120, order=2),
            _candidate("dist-gadwal", score=80, order=3),
        ]
        result = await governor.govern(candidates)

        outcomes = _outcomes(result)
        assert outcomes["dist-nalgonda"] == CandidateOutcome.DRY_LOGGED
        assert outcomes["dist-mulugu"] == CandidateOutcome.DRY_LOGGED
        assert outcomes["dist-gadwal"] == CandidateOutcome.REJECTED_CAP
        assert outcomes["dist-khammam"] == CandidateOutcome.REJECTED_CAP
        # Decisions are reported in rank order
        assert [d.area_id for d in result.decisions] == [
            "dist-nalgonda", "dist-mulugu", "dist-gadwal", "dist-khammam",
        ]
        assert await store.get(governor.dedup.hash_key(candidates[0].hash)) is None

    @pytest.mark.asyncio
    async def test_non_severe_metro_gets_one_slot(self, make_governor):
        governor = make_governor(hourly_cap=10)
        areas = ["dist-hyd", "nbhd-lb-nagar", "nbhd-kapra", "nbhd-uppal", "nbhd-kukatpally"]
        candidates = [
            _candidate(area, score=100 + i, order=i) for i, area in enumerate(areas)
        ]
        result = await governor.govern(candidates)

        accepted = [d.area_id for d in result.decisions if d.outcome == CandidateOutcome.DRY_LOGGED]
        assert accepted == ["nbhd-kukatpally"]
        assert sum(d.outcome == CandidateOutcome.REJECTED_CAP for d in result.decisions) == 4

    @pytest.mark.asyncio
    async def test_severe_metro_gets_two_slots(self, make_governor):
        governor = make_governor(hourly_cap=10)
        result = await governor.govern([
            _candidate("nbhd-kapra", score=150, severe=True),
            _candidate("nbhd-uppal", score=140, severe=True, order=1),
            _candidate("dist-hyd", score=130, severe=True, order=2),
        ])
        outcomes = _outcomes(result)
        assert outcomes["nbhd-kapra"] == CandidateOutcome.DRY_LOGGED
        assert outcomes["nbhd-uppal"] == CandidateOutcome.DRY_LOGGED
        assert outcomes["dist-hyd"] == CandidateOutcome.REJECTED_CAP

    @pytest.mark.asyncio
    async def test_non_metro_area_gets_one_slot(self, make_governor):
        governor = make_governor()
        result = await governor.govern([
            _candidate("dist-khammam", scope=Scope.NOW, score=100),
            _candidate("dist-khammam", scope=Scope.TODAY, score=90, order=1),
        ])
        assert [d.outcome for d in result.decisions] == [
            CandidateOutcome.DRY_LOGGED,
            CandidateOutcome.REJECTED_CAP,
        ]

    @pytest.mark.asyncio
    async def test_ties_broken_by_evaluation_order(self, make_governor):
        governor = make_governor()
        result = await governor.govern([
            _candidate("nbhd-kapra", score=100, order=0),
            _candidate("nbhd-uppal", score=100, order=1),
        ])
        assert _outcomes(result)["nbhd-kapra"] == CandidateOutcome.DRY_LOGGED
        assert _outcomes(result)["nbhd-uppal"] == CandidateOutcome.REJECTED_CAP


# ── Cooldown & escalation ─────────────────────────────────────────────


class TestCooldown:
    @pytest.mark.asyncio
    async def test_recent_post_blocks_area(self, make_governor, tweet_log, store):
        await tweet_log.create(_logged("dist-khammam", minutes_ago=30))
        governor = make_governor()
        candidate = _candidate("dist-khammam")
        result = await governor.govern([candidate])

        assert result.decisions[0].outcome == CandidateOutcome.REJECTED_COOLDOWN
        assert await store.get(governor.dedup.hash_key(candidate.hash)) is None

    @pytest.mark.asyncio
    async def test_cooldown_rejection_frees_cycle_slot(self, make_governor, tweet_log):
        await tweet_log.create(_logged("dist-khammam", minutes_ago=30))
        governor = make_governor(cycle_cap=1)
        result = await governor.govern([
            _candidate("dist-khammam", score=200),
            _candidate("dist-nalgonda", score=100, order=1),
        ])
        assert _outcomes(result) == {
            "dist-khammam": CandidateOutcome.REJECTED_COOLDOWN,
            "dist-nalgonda": CandidateOutcome.DRY_LOGGED,
        }

    @pytest.mark.asyncio
    async def test_escalation_replies_to_previous_post(self, make_governor, tweet_log):
        await tweet_log.create(_logged("dist-khammam", minutes_ago=30, post_id="555"))
        poster = FakePoster()
        governor = make_governor(poster=poster, publishing=True)
        result = await governor.govern([
            _candidate("dist-khammam", bucket=IntensityBucket.HEAVY),
        ])

        decision = result.decisions[0]
        assert decision.outcome == CandidateOutcome.POSTED
        assert decision.escalated
        assert poster.calls[0][1] == "555"

    @pytest.mark.asyncio
    async def test_eta_shift_escalates(self, make_governor, tweet_log):
        await tweet_log.create(_logged("dist-khammam", minutes_ago=30))
        governor = make_governor()
        result = await governor.govern([_candidate("dist-khammam", eta=45)])
        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED
        assert result.decisions[0].escalated

    @pytest.mark.asyncio
    async def test_decisions_visible_within_cycle(self, make_governor):
        """A severe metro area's second scope sees the first one's log entry."""
        governor = make_governor()
        result = await governor.govern([
            _candidate("nbhd-uppal", scope=Scope.NOW, severe=True, score=200),
            _candidate("nbhd-uppal", scope=Scope.TODAY, severe=True, score=100, order=1),
        ])
        assert [d.outcome for d in result.decisions] == [
            CandidateOutcome.DRY_LOGGED,
            CandidateOutcome.REJECTED_COOLDOWN,
        ]


# ── Hourly cap ────────────────────────────────────────────────────────


class TestHourlyCap:
    @pytest.mark.asyncio
    async def test_held_when_hour_is_full(self, make_governor, tweet_log, store, session_factory):
        for i, area in enumerate(["dist-gadwal", "dist-mulugu", "dist-yadadri"]):
            await tweet_log.create(_logged(area, minutes_ago=10 + i))
        governor = make_governor()
        candidate = _candidate("dist-khammam")
        result = await governor.govern([candidate])

        assert result.decisions[0].outcome == CandidateOutcome.HELD
        assert len(await _rows(session_factory)) == 3
        assert await store.get(governor.dedup.hash_key(candidate.hash)) is None

    @pytest.mark.asyncio
    async def test_older_posts_do_not_count(self, make_governor, tweet_log):
        for i, area in enumerate(["dist-gadwal", "dist-mulugu", "dist-yadadri"]):
            await tweet_log.create(_logged(area, minutes_ago=61 + i))
        governor = make_governor()
        result = await governor.govern([_candidate("dist-khammam")])
        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED

    @pytest.mark.asyncio
    async def test_cap_fills_within_cycle(self, make_governor):
        governor = make_governor(cycle_cap=6, hourly_cap=3)
        areas = ["dist-gadwal", "dist-khammam", "dist-mulugu", "dist-nalgonda", "dist-yadadri"]
        result = await governor.govern([
            _candidate(area, score=200 - i, order=i) for i, area in enumerate(areas)
        ])
        assert [d.outcome for d in result.decisions] == [
            CandidateOutcome.DRY_LOGGED,
            CandidateOutcome.DRY_LOGGED,
            CandidateOutcome.DRY_LOGGED,
            CandidateOutcome.HELD,
            CandidateOutcome.HELD,
        ]

    @pytest.mark.asyncio
    async def test_held_candidate_is_fresh_next_cycle(self, make_governor, tweet_log, clock):
        for i, area in enumerate(["dist-gadwal", "dist-mulugu", "dist-yadadri"]):
            await tweet_log.create(_logged(area, minutes_ago=50 + i))
        governor = make_governor()
        await governor.govern([_candidate("dist-khammam")])

        clock.advance(minutes=15)
        result = await governor.govern([_candidate("dist-khammam")])
        assert result.decisions[0].outcome == CandidateOutcome.DRY_LOGGED


# ── Degraded mode ─────────────────────────────────────────────────────


class TestDegraded:
    @pytest.mark.asyncio
    async def test_flagged_degraded_suppresses_everything(self, make_governor, session_factory):
        governor = make_governor()
        result = await governor.govern([_candidate(), _candidate("dist-khammam")], degraded=True)
        assert result.degraded
        assert {d.outcome for d in result.decisions} == {CandidateOutcome.SUPPRESSED_DEGRADED}
        assert await _rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_store_failure_switches_to_degraded(self, make_governor, session_factory):
        poster = FakePoster()
        governor = make_governor(poster=poster, publishing=True, kv=BrokenStore())
        result = await governor.govern([_candidate(), _candidate("dist-khammam", order=1)])

        assert result.degraded
        assert len(result.decisions) == 2
        assert all(d.outcome == CandidateOutcome.SUPPRESSED_DEGRADED for d in result.decisions)
        assert poster.calls == []
        assert await _rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_empty_cycle(self, make_governor):
        result = await make_governor().govern([])
        assert result.decisions == []
        assert not result.degraded
