"""
Derivation Cache

Compute-if-absent memoization for AI-derived artifacts.

    cache = DerivationCache(store)
    overview = await cache.cached_call(
        "ai:overview:001A", CacheTTL.ACCOUNT_OVERVIEW, lambda: summarize(...)
    )

The store being down never reaches the caller: reads become misses and
writes are dropped, so every call computes fresh until it recovers.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

from account_intel.cache.base import CacheStore
from account_intel.cache.compression import ValueCodec
from account_intel.errors import CacheStoreUnavailable


logger = logging.getLogger(__name__)

T = TypeVar('T')


class Outcome(Enum):
    """How a lookup was satisfied."""
    CACHED = "cached"
    GENERATED = "generated"
    EMPTY = "empty"          # producer had nothing to return, nothing stored


class DerivationCache:
    """
    JSON-valued cache over a byte-level CacheStore.

    Concurrent misses on the same key are not deduplicated; under a burst
    on a cold key the producer can run more than once.
    """

    def __init__(
        self,
        store: CacheStore,
        codec: Optional[ValueCodec] = None,
    ):
        self.store = store
        self.codec = codec or ValueCodec()
        self.degraded_reads = 0
        self.degraded_writes = 0

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on miss, store outage or undecodable entry."""
        try:
            data = await self.store.get(key)
        except CacheStoreUnavailable as e:
            self.degraded_reads += 1
            logger.warning(f"Cache unavailable on read of {key}, treating as miss: {e}")
            return None

        if data is None:
            return None

        try:
            return self.codec.decode(data)
        except ValueError as e:
            logger.error(f"Discarding undecodable cache entry {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store a value. Returns False when the store is unavailable."""
        payload = self.codec.encode(value)
        try:
            await self.store.set(key, payload, ttl_seconds)
            return True
        except CacheStoreUnavailable as e:
            self.degraded_writes += 1
            logger.warning(f"Cache unavailable on write of {key}, result not cached: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if an entry was removed."""
        try:
            return await self.store.delete(key)
        except CacheStoreUnavailable as e:
            logger.warning(f"Cache unavailable on delete of {key}: {e}")
            return False

    async def delete_many(self, keys: Iterable[str]) -> int:
        """Delete several keys, returning how many existed."""
        deleted = 0
        for key in keys:
            if await self.delete(key):
                deleted += 1
        return deleted

    async def exists(self, key: str) -> bool:
        """Probe for a key without decoding it."""
        try:
            return await self.store.get(key) is not None
        except CacheStoreUnavailable:
            return False

    async def list_keys(self, pattern: str) -> List[str]:
        try:
            return await self.store.list_keys(pattern)
        except CacheStoreUnavailable as e:
            logger.warning(f"Cache unavailable listing {pattern}: {e}")
            return []

    async def lookup(
        self,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], Awaitable[T]],
    ) -> Tuple[Outcome, Optional[T]]:
        """
        Return the cached value for `key`, computing it on a miss.

        Args:
            key: Cache key
            ttl_seconds: Expiry for a freshly computed value (0 = never)
            producer: Zero-arg coroutine function computing the value

        Returns:
            (outcome, value). GENERATED only when the producer ran and
            returned something.

        Producer exceptions propagate and nothing is stored. A None result
        is returned without being stored, since a cached null reads as a miss.
        """
        cached = await self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return Outcome.CACHED, cached

        logger.debug(f"Cache miss: {key}")
        result = await producer()

        if result is None:
            return Outcome.EMPTY, None

        await self.set(key, result, ttl_seconds)
        return Outcome.GENERATED, result

    async def cached_call(
        self,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], Awaitable[T]],
    ) -> T:
        """lookup() without the outcome."""
        _, value = await self.lookup(key, ttl_seconds, producer)
        return value
