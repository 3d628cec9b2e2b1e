"""
Cycle Lease — at most one decision cycle runs at a time.

Set-if-absent with a TTL; a crashed holder's lease simply expires. Only the
holder (matching token) releases it.
"""

import uuid
from typing import Optional

import structlog

from rainwatch.services.store import KeyValueStore

logger = structlog.get_logger(__name__)


class LeaseLock:
    def __init__(self, store: KeyValueStore, key: str, ttl_seconds: int = 300):
        self.store = store
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if await self.store.set_if_absent(self.key, token, self.ttl_seconds):
            self.token = token
            logger.debug("lease_acquired", key=self.key, ttl=self.ttl_seconds)
            return True
        return False

    async def remaining(self) -> Optional[int]:
        return await self.store.ttl(self.key)

    async def release(self) -> bool:
        """Delete the lease if we still hold it. Returns False if it expired or was taken over."""
        if self.token is None:
            return False
        token, self.token = self.token, None
        if not await self.store.delete_if_equals(self.key, token):
            logger.warning("lease_lost", key=self.key)
            return False
        logger.debug("lease_released", key=self.key)
        return True
