"""
Account Intelligence Runtime

Wires the store, upstream clients, producers, invalidation, warmup and
schedulers into one object owned by the host process.

Usage:
    intel = await create_intelligence()
    asyncio.create_task(intel.orchestrator.run())
    ...
    await intel.close()
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from account_intel.analyzer.client import ClaudeSynthesisEngine, SynthesisEngine
from account_intel.cache.base import CacheStore
from account_intel.cache.compression import CacheCompressor, ValueCodec
from account_intel.cache.config import get_cache_config
from account_intel.cache.derivation import DerivationCache
from account_intel.cache.invalidation import (
    CacheEvent,
    CacheInvalidator,
    DependencyGraph,
    InvalidationResult,
)
from account_intel.cache.monitoring import StatusSink
from account_intel.cache.redis_cache import RedisCache
from account_intel.cache.warming import WarmupOrchestrator, WarmupSnapshot
from account_intel.collector.client import GatewayClient, SourceDataProvider
from account_intel.errors import CacheStoreUnavailable
from account_intel.scheduler.daily import DailyScheduler
from account_intel.scheduler.periodic import PeriodicRefreshScheduler
from account_intel.synthesis.action_items import ActionItemService
from account_intel.synthesis.analytics import AnalyticsService
from account_intel.synthesis.briefs import CallBriefService
from account_intel.synthesis.contact_insights import ContactInsightService
from account_intel.synthesis.extractor import KeyedLocks
from account_intel.synthesis.health import HealthService
from account_intel.synthesis.summaries import SummaryService
from account_intel.utils.config import Settings, get_settings


logger = logging.getLogger(__name__)


class AccountIntelligence:
    """All derived-artifact services sharing one cache and one set of upstreams."""

    def __init__(
        self,
        provider: SourceDataProvider,
        engine: Optional[SynthesisEngine],
        store: CacheStore,
        settings: Optional[Settings] = None,
        codec: Optional[ValueCodec] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.provider = provider
        self.engine = engine
        self.store = store
        self.cache = DerivationCache(store, codec)

        if engine is None:
            logger.warning("No ANTHROPIC_API_KEY configured, AI artifacts will be empty")

        locks = KeyedLocks()
        self.briefs = CallBriefService(self.cache, provider, engine, locks)
        self.summaries = SummaryService(self.cache, provider, engine)
        self.health = HealthService(self.cache, provider, engine)
        self.action_items = ActionItemService(self.cache, provider, engine, locks)
        self.contact_insights = ContactInsightService(self.cache, provider, engine, locks)
        self.analytics = AnalyticsService(self.cache, self.briefs, engine)

        self.graph = DependencyGraph()
        for producer in self.producers:
            self.graph.register_producer(producer)
        self.invalidator = CacheInvalidator(self.cache, self.graph)

        batch_size = self.settings.WARMUP_BATCH_SIZE
        pass_lock = asyncio.Lock()
        self.orchestrator = WarmupOrchestrator(
            provider,
            self.briefs,
            self.summaries,
            self.health,
            self.action_items,
            self.contact_insights,
            self.analytics,
            batch_size=batch_size,
            pass_lock=pass_lock,
        )
        self.periodic = PeriodicRefreshScheduler(
            provider,
            self.briefs,
            self.invalidator,
            interval_seconds=self.settings.REFRESH_INTERVAL_SECONDS,
            batch_size=batch_size,
            pass_lock=pass_lock,
        )
        self.daily = DailyScheduler(
            self.daily_warm,
            hour=self.settings.DAILY_WARM_HOUR,
            minute=self.settings.DAILY_WARM_MINUTE,
            clock=clock,
        )
        self.orchestrator.attach_scheduler(self.periodic)
        self.orchestrator.attach_scheduler(self.daily)

        self.status = StatusSink(self.orchestrator, self.cache, store)

    @property
    def producers(self) -> List:
        """Producers whose artifacts depend on an entity's source data."""
        return [
            self.summaries,
            self.health,
            self.action_items,
            self.contact_insights,
            self.analytics,
        ]

    async def daily_warm(self) -> WarmupSnapshot:
        """
        Warm recently active accounts and rebuild every user's analytics.

        A warmup still running (startup or manual) is waited out first, so
        the day's analytics rebuild is never dropped.
        """
        if self.orchestrator.is_warming:
            logger.info("Daily warm waiting for the running warmup to finish")
            await self.orchestrator.wait_until_idle()

        active_since = datetime.now(timezone.utc) - timedelta(days=self.settings.DAILY_RECENCY_DAYS)
        logger.info(f"Daily warm for accounts active since {active_since:%Y-%m-%d}")
        return await self.orchestrator.run(active_since=active_since, refresh_analytics=True)

    async def complete_action_item(self, user_id: str, item_id: str) -> None:
        await self.action_items.complete(user_id, item_id)
        await self.invalidator.handle_event(CacheEvent.ACTION_ITEM_STATUS_CHANGED, user_id=user_id)

    async def uncomplete_action_item(self, user_id: str, item_id: str) -> None:
        await self.action_items.uncomplete(user_id, item_id)
        await self.invalidator.handle_event(CacheEvent.ACTION_ITEM_STATUS_CHANGED, user_id=user_id)

    async def invalidate_entity(self, entity_id: str) -> InvalidationResult:
        """Operator-triggered cascade for one account."""
        return await self.invalidator.handle_event(
            CacheEvent.MANUAL_INVALIDATE_ENTITY, entity_id=entity_id
        )

    async def close(self):
        """Stop schedulers and release connections."""
        await self.periodic.stop()
        await self.daily.stop()
        for resource in (self.provider, self.engine, self.store):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


async def create_intelligence(settings: Optional[Settings] = None) -> AccountIntelligence:
    """Build the runtime from settings, tolerating an unreachable Redis."""
    settings = settings or get_settings()

    store = RedisCache(get_cache_config())
    try:
        await store.initialize()
    except CacheStoreUnavailable as e:
        logger.warning(f"Starting without cache, every request computes fresh: {e}")

    provider = GatewayClient(
        base_url=settings.SOURCE_API_URL,
        api_key=settings.SOURCE_API_KEY,
        timeout=settings.SOURCE_TIMEOUT_SECONDS,
    )

    engine = None
    if settings.ANTHROPIC_API_KEY:
        engine = ClaudeSynthesisEngine(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.CLAUDE_MODEL,
            timeout=settings.SYNTHESIS_TIMEOUT_SECONDS,
        )

    cache_config = get_cache_config()
    codec = ValueCodec(CacheCompressor(
        enabled=cache_config.compression_enabled,
        threshold=cache_config.compression_threshold,
    ))

    return AccountIntelligence(provider, engine, store, settings, codec=codec)
