"""
Account Intelligence Caching Layer

Derivation cache for AI-produced artifacts:
- CacheStore / RedisCache: byte-level store with TTL, namespace and circuit breaker
- ValueCodec: JSON + LZ4/ZSTD value encoding
- DerivationCache: compute-if-absent wrapper that degrades to always-miss
- Key builder: `<domain>:<derivation>:<entityId|hash>`
- CacheInvalidator + DependencyGraph: cascade on new source data

Warmup (account_intel.cache.warming) and status (account_intel.cache.monitoring)
sit on top of the producers and are imported from their modules directly.

Usage:
    store = RedisCache()
    await store.initialize()
    cache = DerivationCache(store)
    overview = await cache.cached_call(key, CacheTTL.ACCOUNT_OVERVIEW, producer)
"""

from account_intel.cache.base import CacheStore
from account_intel.cache.compression import CacheCompressor, ValueCodec
from account_intel.cache.config import CacheConfig, CacheTTL, get_cache_config
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.invalidation import (
    ACCOUNT,
    USER,
    CacheEvent,
    CacheInvalidator,
    DependencyGraph,
    InvalidationResult,
)
from account_intel.cache.keys import filtered_key, hash_ids, hash_params, make_key
from account_intel.cache.redis_cache import CircuitBreaker, RedisCache

__all__ = [
    # Store
    "CacheStore",
    "RedisCache",
    "CircuitBreaker",
    # Codec
    "CacheCompressor",
    "ValueCodec",
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Derivation
    "DerivationCache",
    "Outcome",
    # Invalidation
    "ACCOUNT",
    "USER",
    "CacheEvent",
    "CacheInvalidator",
    "DependencyGraph",
    "InvalidationResult",
    # Keys
    "filtered_key",
    "hash_ids",
    "hash_params",
    "make_key",
]
