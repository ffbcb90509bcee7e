"""
Cache Warmup Orchestrator

Proactively fills the derivation cache so the first interactive request
for an account is a hit.

Phases (strictly in order):
1. listing:   list the entities to warm (a failure here ends the run in error)
2. accounts:  per entity, call briefs, overview, detail summaries,
              health, action items, contact insights
3. analytics: per user, the cross-account reports

Entities are processed in small batches. An entity or user whose
artifacts could not all be produced (upstream down, unexpected error) is
logged and counted as skipped; it never aborts the phase. Only artifacts
produced by this run count as generated, cache hits do not.

A pass holds the lock it shares with the periodic refresh, so the two
never interleave on the same calls.

After the first successful run the attached schedulers (periodic refresh,
daily warm) are started, once.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from account_intel.cache.derivation import Outcome
from account_intel.collector.client import SourceDataProvider, UserProfile
from account_intel.synthesis.action_items import ActionItemService
from account_intel.synthesis.analytics import AnalyticsService
from account_intel.synthesis.briefs import CallBriefService
from account_intel.synthesis.contact_insights import ContactInsightService
from account_intel.synthesis.health import HealthService
from account_intel.synthesis.summaries import DETAIL_KINDS, SummaryService


logger = logging.getLogger(__name__)


class WarmupStatus(Enum):
    IDLE = "idle"
    WARMING = "warming"
    COMPLETE = "complete"
    ERROR = "error"


class WarmupPhase(Enum):
    LISTING = "listing"
    ACCOUNTS = "accounts"
    ANALYTICS = "analytics"


@dataclass(frozen=True)
class WarmupSnapshot:
    """Point-in-time copy of warmup progress."""
    status: WarmupStatus = WarmupStatus.IDLE
    phase: Optional[WarmupPhase] = None
    processed_accounts: int = 0
    total_accounts: int = 0
    records_seen: int = 0
    generated: int = 0
    skipped: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["phase"] = self.phase.value if self.phase else None
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


class WarmupOrchestrator:
    """
    Owns the warmup state; everyone else reads it through snapshot().

    Usage:
        orchestrator = WarmupOrchestrator(provider, briefs, summaries, ...)
        orchestrator.attach_scheduler(periodic)
        await orchestrator.run()
    """

    def __init__(
        self,
        provider: SourceDataProvider,
        briefs: CallBriefService,
        summaries: SummaryService,
        health: HealthService,
        action_items: ActionItemService,
        contact_insights: ContactInsightService,
        analytics: AnalyticsService,
        batch_size: int = 3,
        pass_lock: Optional[asyncio.Lock] = None,
    ):
        self.provider = provider
        self.briefs = briefs
        self.summaries = summaries
        self.health = health
        self.action_items = action_items
        self.contact_insights = contact_insights
        self.analytics = analytics
        self.batch_size = max(1, batch_size)
        self.pass_lock = pass_lock or asyncio.Lock()

        self._state = WarmupSnapshot()
        self._idle = asyncio.Event()
        self._idle.set()
        self._started_monotonic = 0.0
        self._schedulers: List = []
        self._schedulers_started = False

    def snapshot(self) -> WarmupSnapshot:
        """Immutable copy of the current state."""
        return replace(self._state)

    @property
    def is_warming(self) -> bool:
        return self._state.status == WarmupStatus.WARMING

    async def wait_until_idle(self) -> None:
        """Return once no pass is running."""
        await self._idle.wait()

    def attach_scheduler(self, scheduler) -> None:
        """Register something with a start() method to launch after the first completion."""
        self._schedulers.append(scheduler)

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)

    def _bump(self, **deltas: int) -> None:
        self._update(**{
            name: getattr(self._state, name) + delta
            for name, delta in deltas.items()
        })

    # =========================================================================
    # Phases
    # =========================================================================

    def _count(self, outcome: Outcome) -> None:
        if outcome == Outcome.GENERATED:
            self._bump(generated=1)

    async def warm_entity(self, entity_id: str) -> None:
        """
        Every per-account artifact for one entity.

        Raises on the first artifact that could not be produced
        (UpstreamUnavailable or anything unexpected).
        """
        calls = await self.briefs.list_calls(entity_id)
        self._bump(records_seen=len(calls))
        for record in calls:
            self._count(await self.briefs.warm_brief(entity_id, record))

        self._count(await self.summaries.warm_overview(entity_id))
        for kind in DETAIL_KINDS:
            self._count(await self.summaries.warm_detail(entity_id, kind))
        self._count(await self.health.warm_health(entity_id))

        self._count(await self.action_items.warm(entity_id))
        self._count(await self.contact_insights.warm(entity_id))

    async def _warm_entity_isolated(self, entity_id: str) -> None:
        try:
            await self.warm_entity(entity_id)
        except Exception as e:
            logger.error(f"Warmup failed for entity {entity_id}: {e}")
            self._bump(skipped=1)
        finally:
            self._bump(processed_accounts=1)

    async def _warm_user_isolated(self, user: UserProfile, refresh: bool) -> None:
        try:
            self._bump(generated=await self.analytics.warm_user(user, refresh=refresh))
        except Exception as e:
            logger.error(f"Analytics warmup failed for user {user.id}: {e}")
            self._bump(skipped=1)

    async def _run_batches(self, worker: Callable[[Any], Awaitable[None]], items: Sequence) -> None:
        for i in range(0, len(items), self.batch_size):
            await asyncio.gather(*(worker(item) for item in items[i:i + self.batch_size]))

    async def _accounts_phase(self, entity_ids: List[str]) -> None:
        self._update(phase=WarmupPhase.ACCOUNTS, total_accounts=len(entity_ids))
        logger.info(f"Warming {len(entity_ids)} accounts (batch size {self.batch_size})")
        await self._run_batches(self._warm_entity_isolated, entity_ids)

    async def _analytics_phase(self, entity_ids: List[str], refresh: bool = False) -> None:
        self._update(phase=WarmupPhase.ANALYTICS)
        try:
            users = await self.provider.list_users()
        except Exception as e:
            logger.error(f"Could not list users for analytics warmup: {e}")
            self._bump(skipped=1)
            return

        in_scope = set(entity_ids)
        users = [u for u in users if in_scope.intersection(u.account_ids)]
        logger.info(f"Warming analytics for {len(users)} users")
        await self._run_batches(lambda u: self._warm_user_isolated(u, refresh), users)

    # =========================================================================
    # Run
    # =========================================================================

    async def run(
        self,
        entity_ids: Optional[List[str]] = None,
        active_since: Optional[datetime] = None,
        include_analytics: bool = True,
        refresh_analytics: bool = False,
    ) -> WarmupSnapshot:
        """
        Run one warmup pass.

        Args:
            entity_ids: Warm exactly these entities instead of listing them
            active_since: When listing, only entities active since then
            include_analytics: Run the analytics phase
            refresh_analytics: Regenerate analytics reports even if cached

        Returns:
            Snapshot at the end of the run. A pass requested while another
            is warming is refused and the current snapshot is returned.
        """
        if self.is_warming:
            logger.warning("Warmup already in progress, ignoring request")
            return self.snapshot()

        self._started_monotonic = time.monotonic()
        self._state = WarmupSnapshot(
            status=WarmupStatus.WARMING,
            phase=WarmupPhase.LISTING,
            started_at=datetime.now(timezone.utc),
        )
        self._idle.clear()
        logger.info("Cache warmup started")

        try:
            async with self.pass_lock:
                await self._run_pass(entity_ids, active_since, include_analytics, refresh_analytics)
        finally:
            self._idle.set()

        if self._state.status == WarmupStatus.COMPLETE:
            self._start_schedulers()
        return self.snapshot()

    async def _run_pass(
        self,
        entity_ids: Optional[List[str]],
        active_since: Optional[datetime],
        include_analytics: bool,
        refresh_analytics: bool,
    ) -> None:
        try:
            if entity_ids is None:
                entity_ids = await self.provider.list_entities(active_since=active_since)
        except Exception as e:
            logger.error(f"Warmup aborted, could not list entities: {e}")
            self._finish(WarmupStatus.ERROR, error=str(e))
            return

        try:
            await self._accounts_phase(list(entity_ids))
            if include_analytics:
                await self._analytics_phase(list(entity_ids), refresh_analytics)
        except Exception as e:
            logger.error(f"Warmup failed: {e}")
            self._finish(WarmupStatus.ERROR, error=str(e))
            return

        self._finish(WarmupStatus.COMPLETE)
        state = self._state
        logger.info(
            f"Cache warmup complete: {state.processed_accounts}/{state.total_accounts} accounts, "
            f"{state.generated} artifacts, {state.skipped} skipped, "
            f"{state.duration_seconds:.1f}s"
        )

    def _finish(self, status: WarmupStatus, error: Optional[str] = None) -> None:
        self._update(
            status=status,
            completed_at=datetime.now(timezone.utc),
            duration_seconds=round(time.monotonic() - self._started_monotonic, 3),
            error=error,
        )

    def _start_schedulers(self) -> None:
        if self._schedulers_started:
            return
        self._schedulers_started = True
        for scheduler in self._schedulers:
            logger.info(f"Starting {type(scheduler).__name__}")
            scheduler.start()
