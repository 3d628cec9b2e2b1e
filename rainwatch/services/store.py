"""
Key/Value Store — dedup hashes, daily budget counters and the cycle lease.

The decision logic only sees the ``KeyValueStore`` protocol. Two backends:
- RedisStore: production, ``redis.asyncio``
- InMemoryStore: single-process runs and tests, expiry driven by an injected clock

Every backend failure surfaces as ``StoreUnavailableError`` so callers can
switch to degraded mode instead of crashing.
"""

from datetime import datetime, timedelta
from typing import Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from rainwatch.services.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the key/value backend cannot be reached or errors out."""
    pass


class KeyValueStore(Protocol):
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set ``key`` only if it does not exist. Returns True when this call set it."""
        ...

    async def get(self, key: str) -> Optional[str]:
        ...

    async def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter; the TTL starts at the first increment."""
        ...

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining seconds, or None when the key is missing or has no expiry."""
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete ``key`` only while it still holds ``value``."""
        ...

    async def decrement(self, key: str) -> int:
        """Decrement an existing counter, never below zero, keeping its TTL. Missing → 0."""
        ...


_DELETE_IF_EQUALS = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# DECR keeps the TTL; a missing key must not be created at -1
_DECREMENT_FLOOR = """
local current = tonumber(redis.call("get", KEYS[1]) or "0")
if current > 0 then
    return redis.call("decr", KEYS[1])
end
return 0
"""


class RedisStore:
    """``KeyValueStore`` over a redis.asyncio client."""

    def __init__(self, client: aioredis.Redis):
        self._r = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=socket_timeout,
        )
        return cls(client)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            return bool(await self._r.set(key, value, ex=ttl_seconds, nx=True))
        except RedisError as e:
            raise self._unavailable("set_if_absent", key, e) from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._r.get(key)
        except RedisError as e:
            raise self._unavailable("get", key, e) from e

    async def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        try:
            async with self._r.pipeline(transaction=True) as pipe:
                # Seeding with NX keeps the expiry anchored at the first increment
                pipe.set(key, 0, ex=ttl_seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
            return int(count)
        except RedisError as e:
            raise self._unavailable("incr_with_expiry", key, e) from e

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self._r.ttl(key)
        except RedisError as e:
            raise self._unavailable("ttl", key, e) from e
        return remaining if remaining is not None and remaining >= 0 else None

    async def delete(self, key: str) -> None:
        try:
            await self._r.delete(key)
        except RedisError as e:
            raise self._unavailable("delete", key, e) from e

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            return bool(await self._r.eval(_DELETE_IF_EQUALS, 1, key, value))
        except RedisError as e:
            raise self._unavailable("delete_if_equals", key, e) from e

    async def decrement(self, key: str) -> int:
        try:
            return int(await self._r.eval(_DECREMENT_FLOOR, 1, key))
        except RedisError as e:
            raise self._unavailable("decrement", key, e) from e

    async def close(self) -> None:
        await self._r.aclose()

    @staticmethod
    def _unavailable(op: str, key: str, exc: Exception) -> StoreUnavailableError:
        logger.warning("kv_store_unavailable", op=op, key=key, error=str(exc))
        return StoreUnavailableError(f"{op}({key}) failed: {exc}")


class InMemoryStore:
    """Process-local ``KeyValueStore``; expiry follows the injected clock."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._data: dict[str, tuple[str, Optional[datetime]]] = {}

    def _live(self, key: str) -> Optional[tuple[str, Optional[datetime]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock.now() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int) -> datetime:
        return self._clock.now() + timedelta(seconds=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._data[key] = ("1", self._expiry(ttl_seconds))
            return 1
        value, expires_at = entry
        count = int(value) + 1
        self._data[key] = (str(count), expires_at)
        return count

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return max(0, int((entry[1] - self._clock.now()).total_seconds()))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        entry = self._live(key)
        if entry is None or entry[0] != value:
            return False
        del self._data[key]
        return True

    async def decrement(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return 0
        value, expires_at = entry
        count = max(0, int(value) - 1)
        self._data[key] = (str(count), expires_at)
        return count
