"""
Cooldown & Escalation Tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from rainwatch.alerting.cooldown import CooldownPolicy
from rainwatch.alerting.schemas import PostStatus, TweetLogEntry
from rainwatch.alerting.scoring import TweetCandidate
from rainwatch.schemas.weather import IntensityBucket, Scope, TimeWindow

T0 = datetime(2025, 7, 14, 9, 0, tzinfo=timezone.utc)


def _window(start_min: int, end_min: int) -> TimeWindow:
    return TimeWindow(start=T0 + timedelta(minutes=start_min), end=T0 + timedelta(minutes=end_min))


def _candidate(
    scope: Scope = Scope.NOW,
    bucket: IntensityBucket = IntensityBucket.MODERATE,
    window: Optional[TimeWindow] = None,
) -> TweetCandidate:
    return TweetCandidate(
        area_id="dist-hyd",
        area_name="Hyderabad District",
        scope=scope,
        bucket=bucket,
        score=100.0,
        group_key="metro:hyderabad",
        severe=False,
        metro=True,
        hash="h",
        window=window,
        window_label=window.label() if window else "",
    )


def _previous(
    minutes_ago: int,
    scope: Scope = Scope.NOW,
    bucket: IntensityBucket = IntensityBucket.MODERATE,
    window: Optional[TimeWindow] = None,
) -> TweetLogEntry:
    return TweetLogEntry(
        area_id="dist-hyd",
        scope=scope,
        bucket=bucket,
        window_label=window.label() if window else "",
        window_start=window.start if window else None,
        window_end=window.end if window else None,
        hash="p",
        status=PostStatus.POSTED,
        external_post_id="111",
        created_at=T0 - timedelta(minutes=minutes_ago),
    )


class TestCooldownPolicy:
    def setup_method(self):
        self.policy = CooldownPolicy(cooldown_minutes=180, eta_shift_minutes=20)

    def test_no_history_allowed(self):
        verdict = self.policy.evaluate(_candidate(), None, T0)
        assert verdict.allowed and not verdict.escalated

    def test_within_cooldown_rejected(self):
        verdict = self.policy.evaluate(_candidate(), _previous(30), T0)
        assert not verdict.allowed
        assert "Cooldown active" in verdict.reason

    def test_cooldown_elapsed(self):
        verdict = self.policy.evaluate(_candidate(), _previous(180), T0)
        assert verdict.allowed and not verdict.escalated

    def test_higher_bucket_escalates(self):
        verdict = self.policy.evaluate(
            _candidate(bucket=IntensityBucket.HEAVY), _previous(30), T0,
        )
        assert verdict.allowed and verdict.escalated

    def test_same_rank_does_not_escalate(self):
        """none and drizzle share rank 0."""
        verdict = self.policy.evaluate(
            _candidate(scope=Scope.TODAY, bucket=IntensityBucket.DRIZZLE),
            _previous(30, scope=Scope.TODAY, bucket=IntensityBucket.NONE),
            T0,
        )
        assert not verdict.allowed

    def test_eta_shift_over_limit_escalates(self):
        verdict = self.policy.evaluate(
            _candidate(window=_window(41, 61)),
            _previous(30, window=_window(20, 40)),
            T0,
        )
        assert verdict.allowed and verdict.escalated
        assert "ETA" in verdict.reason

    def test_eta_shift_at_limit_rejected(self):
        verdict = self.policy.evaluate(
            _candidate(window=_window(40, 60)),
            _previous(30, window=_window(20, 40)),
            T0,
        )
        assert not verdict.allowed

    def test_end_edge_shift_counts(self):
        verdict = self.policy.evaluate(
            _candidate(window=_window(20, 70)),
            _previous(30, window=_window(20, 40)),
            T0,
        )
        assert verdict.escalated

    def test_eta_shift_needs_both_windows(self):
        verdict = self.policy.evaluate(
            _candidate(window=_window(90, 110)), _previous(30), T0,
        )
        assert not verdict.allowed

    @pytest.mark.parametrize("candidate_scope,previous_scope", [
        (Scope.TODAY, Scope.TODAY),
        (Scope.NOW, Scope.TODAY),
    ])
    def test_eta_shift_only_between_now_posts(self, candidate_scope, previous_scope):
        verdict = self.policy.evaluate(
            _candidate(scope=candidate_scope, window=_window(120, 180)),
            _previous(30, scope=previous_scope, window=_window(0, 60)),
            T0,
        )
        assert not verdict.allowed
