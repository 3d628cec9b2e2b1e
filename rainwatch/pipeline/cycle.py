"""
Decision Cycle — one pass over all areas under a lease.

For each area (sorted by id, one at a time):
    fetch snapshot → persist observation and daily outlook → rule engine → persist alerts
    → display blocks → trigger predicates → scored candidates
then every candidate of the cycle goes through the notification governor.

A second cycle that finds the lease taken is skipped, not queued.
"""

import asyncio
import uuid
from datetime import timedelta
from typing import Optional, Sequence

import structlog

from rainwatch.alerting.formatter import FormatRequest, FormattingService, source_tag_for
from rainwatch.alerting.governor import NotificationGovernor
from rainwatch.alerting.schemas import CycleReport, CycleStatus
from rainwatch.alerting.scoring import CandidateScorer, TweetCandidate
from rainwatch.alerting.triggers import should_trigger
from rainwatch.db.repositories import ObservationRepository
from rainwatch.engine.blocks import build_now_block, build_today_block, build_week_block
from rainwatch.engine.intensity import (
    classify_rate,
    peak_window,
    summarize_outlook,
    window_total,
)
from rainwatch.engine.profiles import TRIGGER_PROFILES, TriggerProfile
from rainwatch.engine.rules import RuleEngine, assess_day, assess_outlook
from rainwatch.pipeline.features import FeatureSource, MissingFeatureDataError
from rainwatch.schemas.weather import (
    AlertSnapshot,
    AreaFeatures,
    AreaSnapshot,
    DailyForecastSnapshot,
    ObservationSnapshot,
    PreAlert,
    Scope,
    TimeWindow,
)
from rainwatch.services.clock import Clock
from rainwatch.services.lease import LeaseLock
from rainwatch.services.store import KeyValueStore, StoreUnavailableError

logger = structlog.get_logger(__name__)

DEFAULT_ALERT_DURATION_MIN = 30
OUTLOOK_HORIZON_HOURS = 12


class DecisionCycle:
    def __init__(
        self,
        features: FeatureSource,
        records: ObservationRepository,
        governor: NotificationGovernor,
        formatter: FormattingService,
        store: KeyValueStore,
        clock: Clock,
        rule_engine: Optional[RuleEngine] = None,
        trigger_profile: Optional[TriggerProfile] = None,
        scorer: Optional[CandidateScorer] = None,
        lease_key: str = "rainwatch:cycle:lease",
        lease_ttl_seconds: int = 300,
        fetch_timeout_seconds: float = 5.0,
    ):
        self.features = features
        self.records = records
        self.governor = governor
        self.formatter = formatter
        self.store = store
        self.clock = clock
        self.rules = rule_engine or RuleEngine()
        self.trigger_profile = trigger_profile or TRIGGER_PROFILES["standard"]
        self.scorer = scorer or CandidateScorer()
        self.lease_key = lease_key
        self.lease_ttl_seconds = lease_ttl_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds

    async def run(self, area_ids: Sequence[str]) -> CycleReport:
        cycle_id = uuid.uuid4().hex
        report = CycleReport(
            cycle_id=cycle_id,
            started_at=self.clock.now(),
            publishing_enabled=self.governor.publishing_enabled,
        )
        log = logger.bind(cycle_id=cycle_id)

        lease = LeaseLock(self.store, self.lease_key, self.lease_ttl_seconds)
        degraded = False
        try:
            acquired = await lease.acquire()
        except StoreUnavailableError:
            # No lease without the store; run anyway, publishing nothing
            log.warning("cycle_lease_unavailable")
            acquired, degraded = True, True

        if not acquired:
            report.status = CycleStatus.SKIPPED_LOCKED
            report.retry_after_seconds = await self._lease_remaining(lease)
            report.finished_at = self.clock.now()
            log.info("cycle_skipped_locked", retry_after_seconds=report.retry_after_seconds)
            return report

        try:
            candidates: list[TweetCandidate] = []
            for area_id in sorted(set(area_ids)):
                snapshot, reason = await self._fetch(area_id)
                if snapshot is None:
                    report.skipped_areas[area_id] = reason
                    log.info("area_skipped", area_id=area_id, reason=reason)
                    continue
                report.areas_evaluated += 1
                area_candidates, alerts = await self.evaluate_area(
                    cycle_id, snapshot, first_order=len(candidates),
                )
                candidates.extend(area_candidates)
                report.alerts_created += alerts

            result = await self.governor.govern(candidates, degraded=degraded)
            report.decisions = result.decisions
            report.degraded = result.degraded
        finally:
            await self._release(lease)

        report.finished_at = self.clock.now()
        log.info(
            "cycle_completed",
            areas=report.areas_evaluated,
            skipped=len(report.skipped_areas),
            candidates=len(report.decisions),
            accepted=len(report.accepted),
            degraded=report.degraded,
        )
        return report

    async def evaluate_area(
        self,
        cycle_id: str,
        snapshot: AreaSnapshot,
        first_order: int = 0,
    ) -> tuple[list[TweetCandidate], int]:
        """Persist the area's observation and alerts; return its candidates and alert count."""
        f = snapshot.features
        outlook = summarize_outlook(snapshot.hourly, f.observed_at)
        peak = peak_window(outlook.peak_hour) if outlook.peak_hour else None

        observation = ObservationSnapshot(
            area_id=f.area_id,
            cycle_id=cycle_id,
            observed_at=f.observed_at,
            precip_hour=f.meteo.precip_hour,
            probability=f.meteo.probability,
            intensity_class=classify_rate(f.meteo.precip_hour or 0.0),
            radar_eta_min=f.radar.eta_min,
            radar_duration_min=f.radar.duration_min,
            radar_intensity=f.radar.intensity,
            now_prob=outlook.now_prob,
            max_prob_12h=outlook.max_prob_12h,
            sum_precip_12h=outlook.sum_precip_12h,
            three_hour_total_mm=window_total(outlook.samples, peak) if peak else None,
            peak_hour=outlook.peak_hour,
            stale_sources=["meteo"] if f.meteo.stale else [],
        )
        observation_id = await self.records.save_observation(observation)
        await self._save_daily(snapshot)

        pre_alert = self.rules.evaluate(f)
        now_block = build_now_block(observation, pre_alert)
        today_block = build_today_block(observation, peak)
        week_block = build_week_block(snapshot.daily)
        metro = self.scorer.metro.is_metro(f.area_id)

        alerts = 0
        if pre_alert is not None:
            start = f.observed_at + timedelta(minutes=f.radar.eta_min or 0)
            window = TimeWindow(
                start=start,
                end=start + timedelta(minutes=f.radar.duration_min or DEFAULT_ALERT_DURATION_MIN),
            )
            await self._save_alert(observation_id, f, metro, Scope.NOW, now_block, pre_alert, window)
            alerts += 1

        outlook_alert = assess_outlook(observation)
        if outlook_alert is not None:
            window = peak or TimeWindow(
                start=f.observed_at,
                end=f.observed_at + timedelta(hours=OUTLOOK_HORIZON_HOURS),
            )
            await self._save_alert(observation_id, f, metro, Scope.TODAY, today_block, outlook_alert, window)
            alerts += 1

        candidates = []
        for block in (now_block, today_block, week_block):
            if should_trigger(block, self.trigger_profile):
                candidates.append(self.scorer.build(
                    f.area_id,
                    f.area_name,
                    block,
                    order=first_order + len(candidates),
                    observed_at=f.observed_at,
                ))
        logger.debug(
            "area_evaluated",
            area_id=f.area_id,
            pre_alert=pre_alert is not None,
            candidates=[str(c.scope) for c in candidates],
        )
        return candidates, alerts

    # ── Helpers ───────────────────────────────────────────────────────

    async def _fetch(self, area_id: str) -> tuple[Optional[AreaSnapshot], str]:
        try:
            snapshot = await asyncio.wait_for(
                self.features.fetch(area_id), timeout=self.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return None, f"feature fetch timed out after {self.fetch_timeout_seconds}s"
        except MissingFeatureDataError as e:
            return None, str(e) or "missing feature data"
        except Exception as e:
            logger.warning("feature_fetch_failed", area_id=area_id, error=str(e), error_type=type(e).__name__)
            return None, f"feature fetch failed: {type(e).__name__}: {e}"
        if snapshot is None:
            return None, "missing feature data: no snapshot"
        return snapshot, ""

    async def _save_daily(self, snapshot: AreaSnapshot) -> None:
        rows = []
        for day in snapshot.daily:
            assessment = assess_day(day)
            text = self.formatter.fallback.daily(day, assessment.notable)
            rows.append(DailyForecastSnapshot(
                area_id=snapshot.features.area_id,
                day=day.day,
                precipitation_sum=day.precipitation_sum,
                probability_max=day.probability_max,
                temperature_max=day.temperature_max,
                temperature_min=day.temperature_min,
                severity=assessment.severity,
                confidence=assessment.confidence,
                text_en=text.text_en,
                text_te=text.text_te,
                updated_at=self.clock.now(),
            ))
        await self.records.upsert_daily_forecasts(rows)

    async def _save_alert(
        self,
        observation_id: uuid.UUID,
        features: AreaFeatures,
        metro: bool,
        scope: Scope,
        block,
        pre_alert: PreAlert,
        window: TimeWindow,
    ) -> None:
        parts, _ = await self.formatter.format(FormatRequest(
            area_name=features.area_name,
            scope=scope,
            block=block,
            source_tag=source_tag_for(block),
            metro=metro,
        ))
        await self.records.save_alert(observation_id, AlertSnapshot(
            area_id=features.area_id,
            scope=scope,
            issued_at=self.clock.now(),
            window=window,
            severity=pre_alert.severity,
            confidence=pre_alert.confidence,
            labels=list(pre_alert.labels),
            sources=list(pre_alert.sources),
            text_en=parts.text_en,
            text_te=parts.text_te,
        ))
        logger.info(
            "alert_recorded",
            area_id=features.area_id,
            scope=str(scope),
            severity=str(pre_alert.severity),
            confidence=pre_alert.confidence,
        )

    async def _lease_remaining(self, lease: LeaseLock) -> Optional[int]:
        try:
            return await lease.remaining()
        except StoreUnavailableError:
            return None

    async def _release(self, lease: LeaseLock) -> None:
        if lease.token is None:
            return
        try:
            await lease.release()
        except StoreUnavailableError as e:
            # The TTL frees it
            logger.warning("lease_release_failed", key=self.lease_key, error=str(e))
