"""
Notification Deduplication & Daily Budget — Prevent post storms.

Strategies:
1. Content dedup: the same (area, scope, bucket, window) is not posted twice
   within the minimum gap. Registration is set-if-absent with a TTL, so two
   racing cycles cannot both win the same hash.
2. Daily budget: one shared counter per UTC day, 24h TTL from the first
   increment; anything past the budget is rejected. A candidate that ends
   without a log entry refunds its increment, so the counter tracks logged
   entries only.

State lives in the injected key/value store so it survives restarts and is
shared between workers.
"""

import hashlib
from datetime import datetime

import structlog

from rainwatch.services.clock import Clock
from rainwatch.services.store import KeyValueStore

logger = structlog.get_logger(__name__)

BUDGET_TTL_SECONDS = 24 * 60 * 60


def content_hash(area_id: str, scope: str, bucket: str, window_label: str = "") -> str:
    """Compute the dedup hash — same area/scope/bucket/window → same hash."""
    content = f"{area_id}|{scope}|{bucket}|{window_label or ''}"
    return hashlib.sha1(content.encode()).hexdigest()


class DedupGate:
    """Content-hash registration and daily budget over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        min_gap_minutes: int = 60,
        daily_budget: int = 100,
        prefix: str = "rainwatch",
    ):
        self.store = store
        self.clock = clock
        self.min_gap_minutes = min_gap_minutes
        self.daily_budget = daily_budget
        self.prefix = prefix

    # ── Key builders ──────────────────────────────────────────────────

    def hash_key(self, digest: str) -> str:
        return f"{self.prefix}:tweet:hash:{digest}"

    def budget_key(self, now: datetime) -> str:
        return f"{self.prefix}:tweet:budget:{now.strftime('%Y-%m-%d')}"

    # ── Gates ─────────────────────────────────────────────────────────

    async def register(self, digest: str) -> bool:
        """
        Claim a content hash for the minimum gap.

        Returns False if the same content was already claimed (duplicate).
        Raises StoreUnavailableError if the store is down.
        """
        fresh = await self.store.set_if_absent(
            self.hash_key(digest), "1", self.min_gap_minutes * 60
        )
        if not fresh:
            logger.debug("tweet_suppressed_dedup", hash=digest[:12])
        return fresh

    async def release(self, digest: str) -> None:
        """Forget a claimed hash so the content is evaluated fresh next cycle."""
        await self.store.delete(self.hash_key(digest))

    async def consume_budget(self) -> tuple[bool, int]:
        """
        Count one post against today's budget.

        Returns:
            (within_budget: bool, count_today: int)
        """
        count = await self.store.incr_with_expiry(
            self.budget_key(self.clock.now()), BUDGET_TTL_SECONDS
        )
        within = count <= self.daily_budget
        if not within:
            logger.info(
                "tweet_suppressed_daily_budget",
                count=count,
                daily_budget=self.daily_budget,
            )
        return within, count

    async def refund_budget(self) -> int:
        """Give back one increment taken by ``consume_budget``."""
        return await self.store.decrement(self.budget_key(self.clock.now()))
