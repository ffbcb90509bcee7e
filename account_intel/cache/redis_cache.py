"""
Redis Cache Store

CacheStore over redis.asyncio. Values are opaque bytes; encoding and
compression live in the derivation layer.

Every key is prefixed with the configured namespace so several
deployments can share one Redis. A circuit breaker stops hammering a
Redis that is down: after a few consecutive failures calls fail fast
until the cool-down has passed, then one call tests for recovery.

Failures surface as CacheStoreUnavailable; the derivation layer turns
that into a cache miss.
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from account_intel.cache.config import CacheConfig, get_cache_config
from account_intel.errors import CacheStoreUnavailable


logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    """Counters since process start."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    deletes: int = 0
    errors: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    latencies: Deque[float] = field(default_factory=lambda: deque(maxlen=200))

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latencies:
            return 0.0
        return 1000 * sum(self.latencies) / len(self.latencies)


@dataclass
class BreakerState:
    failures: int = 0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Consecutive-failure breaker.

    After `threshold` consecutive failures every call fails fast for
    `timeout` seconds. The first call after that is let through; if it
    fails too the breaker opens again immediately.
    """

    def __init__(self, threshold: int = 3, timeout: int = 30):
        self.threshold = threshold
        self.timeout = timeout
        self.state = BreakerState()
        self._lock = asyncio.Lock()

    async def is_available(self) -> bool:
        if not self.state.is_open:
            return True
        if time.monotonic() - self.state.opened_at < self.timeout:
            return False

        async with self._lock:
            self.state.is_open = False
            self.state.failures = self.threshold - 1
        logger.info("Redis circuit half-open, letting one request through")
        return True

    async def record_success(self):
        async with self._lock:
            self.state = BreakerState()

    async def record_failure(self):
        async with self._lock:
            self.state.failures += 1
            if self.state.is_open or self.state.failures < self.threshold:
                return
            self.state.is_open = True
            self.state.opened_at = time.monotonic()
        logger.warning(
            f"Redis circuit opened after {self.state.failures} consecutive failures, "
            f"cooling down for {self.timeout}s"
        )


class RedisCache:
    """
    CacheStore on Redis.

    Usage:
        store = RedisCache(get_cache_config())
        await store.initialize()
        await store.set("ai:health:001A", payload, 3600)

    A ttl of 0 stores without expiry. With caching disabled in config
    every read misses and every write is dropped.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._redis: Optional[Redis] = redis
        self._pool: Optional[ConnectionPool] = None
        self._ready = redis is not None
        self._init_lock = asyncio.Lock()
        self._stats = StoreStats()
        self._breaker: Optional[CircuitBreaker] = None
        if self.config.circuit_breaker_enabled:
            self._breaker = CircuitBreaker(
                threshold=self.config.circuit_breaker_threshold,
                timeout=self.config.circuit_breaker_timeout,
            )

    async def initialize(self):
        """Connect and ping. Raises CacheStoreUnavailable if Redis is unreachable."""
        if self._ready:
            return

        async with self._init_lock:
            if self._ready:
                return
            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                )
                self._redis = Redis(connection_pool=self._pool)
                await self._redis.ping()
            except (RedisError, OSError) as e:
                logger.error(f"Could not connect to Redis at {self.config.redis_url}: {e}")
                await self._release()
                raise CacheStoreUnavailable(f"Redis unavailable: {e}") from e

            self._ready = True
            logger.info(f"Connected to Redis (namespace '{self.config.namespace}')")

    async def _release(self):
        if self._redis is not None:
            await self._redis.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._redis = None
        self._pool = None

    async def close(self):
        await self._release()
        self._ready = False

    @asynccontextmanager
    async def _command(self):
        """Wrap one Redis command (and a lazy connect) in the breaker and map errors."""
        if self._breaker and not await self._breaker.is_available():
            raise CacheStoreUnavailable("Circuit breaker is open")
        if not self._ready:
            try:
                await self.initialize()
            except CacheStoreUnavailable:
                self._stats.errors += 1
                if self._breaker:
                    await self._breaker.record_failure()
                raise

        started = time.monotonic()
        try:
            yield
        except RedisError as e:
            self._stats.errors += 1
            if self._breaker:
                await self._breaker.record_failure()
            raise CacheStoreUnavailable(f"Redis error: {e}") from e

        self._stats.latencies.append(time.monotonic() - started)
        if self._breaker:
            await self._breaker.record_success()

    def _full_key(self, key: str) -> str:
        return f"{self.config.namespace}:{key}"

    def _logical_key(self, raw_key) -> str:
        if isinstance(raw_key, bytes):
            raw_key = raw_key.decode("utf-8")
        prefix = f"{self.config.namespace}:"
        return raw_key[len(prefix):] if raw_key.startswith(prefix) else raw_key

    # =========================================================================
    # CacheStore
    # =========================================================================

    async def get(self, key: str) -> Optional[bytes]:
        if not self.config.enabled:
            return None

        async with self._command():
            data = await self._redis.get(self._full_key(key))

        if data is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
            self._stats.bytes_read += len(data)
        return data

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if not self.config.enabled:
            return

        async with self._command():
            if ttl_seconds > 0:
                await self._redis.set(self._full_key(key), value, ex=ttl_seconds)
            else:
                await self._redis.set(self._full_key(key), value)

        self._stats.writes += 1
        self._stats.bytes_written += len(value)

    async def delete(self, key: str) -> bool:
        if not self.config.enabled:
            return False

        async with self._command():
            removed = await self._redis.delete(self._full_key(key))
        self._stats.deletes += 1
        return removed > 0

    async def list_keys(self, pattern: str) -> List[str]:
        """Keys matching a glob, without the namespace. Uses SCAN, never KEYS."""
        if not self.config.enabled:
            return []

        found = []
        async with self._command():
            async for raw_key in self._redis.scan_iter(match=self._full_key(pattern), count=100):
                found.append(self._logical_key(raw_key))
        return found

    # =========================================================================
    # Status
    # =========================================================================

    def get_stats(self) -> Dict:
        stats = self._stats
        return {
            "enabled": self.config.enabled,
            "connected": self._ready,
            "hits": stats.hits,
            "misses": stats.misses,
            "writes": stats.writes,
            "deletes": stats.deletes,
            "errors": stats.errors,
            "hit_rate_percent": round(stats.hit_rate * 100, 2),
            "avg_latency_ms": round(stats.avg_latency_ms, 2),
            "bytes_read": stats.bytes_read,
            "bytes_written": stats.bytes_written,
            "circuit_breaker_open": bool(self._breaker and self._breaker.state.is_open),
        }

    async def health_check(self) -> Dict:
        """Ping Redis through the breaker."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        started = time.monotonic()
        try:
            async with self._command():
                await self._redis.ping()
        except CacheStoreUnavailable as e:
            return {"healthy": False, "status": "error", "error": str(e)}

        return {
            "healthy": True,
            "status": "connected",
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
        }
