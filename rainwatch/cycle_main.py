"""
Cycle Entry Point — runs one decision cycle and exits.

Usage:
    python -m rainwatch.cycle_main snapshots.json

An external scheduler (cron, k8s CronJob) invokes this every few minutes.
The cycle lease makes overlapping invocations harmless: the late one is
skipped and reports how long until the lease frees up.
"""

import asyncio
import sys

import structlog

from rainwatch.alerting.channels import XPoster
from rainwatch.alerting.cooldown import CooldownPolicy
from rainwatch.alerting.dedup import DedupGate
from rainwatch.alerting.formatter import FallbackFormatter, FormattingService, LLMFormatter
from rainwatch.alerting.governor import GovernorConfig, NotificationGovernor
from rainwatch.alerting.schemas import CycleReport
from rainwatch.alerting.scoring import CandidateScorer, MetroPolicy
from rainwatch.areas import PUBLIC_AREAS
from rainwatch.config import Settings, settings
from rainwatch.db.engine import close_db, get_session_factory, init_db
from rainwatch.db.repositories import ObservationRepository, TweetLogRepository
from rainwatch.engine.profiles import get_rule_profile, get_trigger_profile
from rainwatch.engine.rules import RuleEngine
from rainwatch.logging_config import configure_logging
from rainwatch.pipeline.cycle import DecisionCycle
from rainwatch.pipeline.features import StaticFeatureSource
from rainwatch.services.clock import SystemClock
from rainwatch.services.llm_gateway import LLMGateway
from rainwatch.services.store import KeyValueStore, RedisStore

logger = structlog.get_logger(__name__)


def build_formatter(s: Settings) -> FormattingService:
    gateway = LLMGateway(api_key=s.anthropic_api_key, timeout=s.external_timeout_seconds)
    primary = LLMFormatter(gateway, model=s.formatter_model) if gateway.available else None
    return FormattingService(
        fallback=FallbackFormatter(s.display_timezone),
        primary=primary,
        timeout=s.external_timeout_seconds,
        base_hashtag=s.base_hashtag,
        metro_hashtag=s.metro_hashtag,
        max_chars=s.tweet_max_chars,
    )


def build_cycle(
    s: Settings,
    features: StaticFeatureSource,
    store: KeyValueStore,
    session_factory,
) -> DecisionCycle:
    """Wire a DecisionCycle from settings."""
    clock = SystemClock()
    formatter = build_formatter(s)
    metro = MetroPolicy.from_settings(s)
    governor = NotificationGovernor(
        dedup=DedupGate(
            store,
            clock,
            min_gap_minutes=s.tweet_min_gap_minutes,
            daily_budget=s.tweet_daily_budget,
            prefix=s.key_prefix,
        ),
        log=TweetLogRepository(session_factory),
        cooldown=CooldownPolicy(
            cooldown_minutes=s.tweet_cooldown_minutes,
            eta_shift_minutes=s.escalation_eta_shift_minutes,
        ),
        formatter=formatter,
        clock=clock,
        config=GovernorConfig.from_settings(s),
        poster=XPoster.from_settings(s),
        metro_group_key=metro.group_key,
    )
    return DecisionCycle(
        features=features,
        records=ObservationRepository(session_factory),
        governor=governor,
        formatter=formatter,
        store=store,
        clock=clock,
        rule_engine=RuleEngine(get_rule_profile(s.rule_profile)),
        trigger_profile=get_trigger_profile(s.trigger_profile),
        scorer=CandidateScorer(metro=metro),
        lease_key=f"{s.key_prefix}:cycle:lease",
        lease_ttl_seconds=s.cycle_lease_ttl_seconds,
        fetch_timeout_seconds=s.external_timeout_seconds,
    )


def cycle_area_ids(features: StaticFeatureSource) -> list[str]:
    """Every registered public area, plus any extra area the snapshot drop carries."""
    return sorted({a.id for a in PUBLIC_AREAS} | set(features.area_ids))


async def main(argv: list[str]) -> CycleReport:
    """Run a single cycle over the snapshots file given on the command line."""
    configure_logging(settings.log_level, settings.log_format)
    if len(argv) != 1:
        raise SystemExit("usage: python -m rainwatch.cycle_main <snapshots.json>")

    logger.info(
        "cycle_starting",
        version=settings.app_version,
        rule_profile=settings.rule_profile,
        trigger_profile=settings.trigger_profile,
        publishing=settings.tweet_enable,
    )

    features = StaticFeatureSource.from_json_file(argv[0])
    area_ids = cycle_area_ids(features)

    await init_db()
    store = RedisStore.from_url(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    try:
        cycle = build_cycle(settings, features, store, get_session_factory())
        report = await cycle.run(area_ids)
    finally:
        await store.close()
        await close_db()

    print(report.model_dump_json(indent=2))
    return report


def run() -> None:
    try:
        asyncio.run(main(sys.argv[1:]))
    except KeyboardInterrupt:
        logger.info("cycle_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
