"""
Cache Configuration

Centralized configuration for the derivation cache.
TTLs are expressed in seconds; 0 means the entry persists until
an explicit invalidation removes it.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by derivation.

    Key insight: LLM output is the expensive part. Artifacts derived from
    immutable source records (a finished call) never need recomputing, so
    they persist until invalidated. Artifacts derived from a moving picture
    of the account expire on a clock AND get cascaded when new records land.
    """

    # Immutable per-record artifacts
    CALL_BRIEF: int = 0

    # Incremental extractions (lifetime governed by invalidation)
    ACTION_ITEMS: int = 0
    CONTACT_INSIGHTS: int = 0

    # Account-level synthesis
    ACCOUNT_OVERVIEW: int = 3600
    DETAIL_SUMMARY: int = 3600
    HEALTH_SUMMARY: int = 3600

    # Email thread summaries keyed by content hash
    THREAD_SUMMARY: int = 86400

    # Cross-account analytics, re-warmed daily
    ANALYTICS: int = 86400

    # Per-user home views
    MY_ACTION_ITEMS: int = 300

    # Completion state is user data, never expires
    COMPLETIONS: int = 0


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - REDIS_URL: Redis connection string
    - CACHE_NAMESPACE: Prefix applied to every stored key
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "intel"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "50"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "5.0"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "2.0"
    )))

    # Compression
    compression_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_COMPRESSION_ENABLED",
        "true"
    ).lower() == "true")
    compression_threshold: int = 1024

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = 3
    circuit_breaker_timeout: int = 30


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
