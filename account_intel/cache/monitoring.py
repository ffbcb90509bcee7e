"""
Cache Status

Read-only view over warmup progress, store statistics and store health
for operators and the status endpoints.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from account_intel.cache.derivation import DerivationCache
from account_intel.cache.warming import WarmupOrchestrator


logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Overall status reported to operators."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class StatusSink:
    """
    Aggregates what operators need to see in one document.

    `store` is optional: anything with get_stats() and an async
    health_check() (RedisCache does) contributes store details.
    """

    def __init__(
        self,
        orchestrator: WarmupOrchestrator,
        cache: DerivationCache,
        store: Optional[Any] = None,
    ):
        self.orchestrator = orchestrator
        self.cache = cache
        self.store = store

    def warmup(self) -> Dict:
        return self.orchestrator.snapshot().to_dict()

    async def get_status(self) -> Dict:
        """Warmup snapshot, cache statistics and store health."""
        stats: Dict[str, Any] = {
            "degraded_reads": self.cache.degraded_reads,
            "degraded_writes": self.cache.degraded_writes,
            "compression_bytes_saved": self.cache.codec.bytes_saved,
        }
        health: Dict[str, Any] = {"healthy": True, "status": "unknown"}

        if self.store is not None:
            if hasattr(self.store, "get_stats"):
                stats.update(self.store.get_stats())
            if hasattr(self.store, "health_check"):
                health = await self.store.health_check()

        if not health.get("healthy", False):
            status = HealthStatus.UNHEALTHY
        elif stats.get("circuit_breaker_open") or self.cache.degraded_reads:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return {
            "status": status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "warmup": self.warmup(),
            "cache": stats,
            "store": health,
        }
