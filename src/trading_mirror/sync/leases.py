"""Per-account sync leases.

A lease keyed by (user_id, provider) keeps two syncs of the same account
from reconciling concurrently. Leases expire after a TTL so a crashed
holder cannot block the account forever.
"""

import logging
import time
import uuid
from collections.abc import Callable
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_KEY_PREFIX = "trading_mirror:sync_lease:"

# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def lease_key(user_id: str, provider: str) -> str:
    return f"{user_id}:{provider}"


class SyncLeaseStore(Protocol):
    """Mutual exclusion for syncs of one account."""

    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        """Take the lease; returns an ownership token, or None if held elsewhere."""
        ...

    async def release(self, key: str, token: str) -> bool:
        """Release the lease if ``token`` still owns it."""
        ...


class RedisSyncLeaseStore:
    """Lease store on Redis ``SET NX EX`` with a compare-and-delete release."""

    def __init__(self, redis: Redis, *, key_prefix: str = DEFAULT_REDIS_KEY_PREFIX) -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        token = uuid.uuid4().hex
        acquired = await self._redis.set(f"{self._key_prefix}{key}", token, nx=True, ex=ttl_seconds)
        if not acquired:
            logger.debug("Sync lease %s is held elsewhere", key)
            return None
        return token

    async def release(self, key: str, token: str) -> bool:
        result = await self._redis.eval(_RELEASE_SCRIPT, 1, f"{self._key_prefix}{key}", token)
        return bool(result)


class InMemorySyncLeaseStore:
    """Process-local lease store for tests and single-process use."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._leases: dict[str, tuple[str, float]] = {}

    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        now = self._clock()
        held = self._leases.get(key)
        if held is not None and held[1] > now:
            return None
        token = uuid.uuid4().hex
        self._leases[key] = (token, now + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> bool:
        held = self._leases.get(key)
        if held is None or held[0] != token:
            return False
        del self._leases[key]
        return True
