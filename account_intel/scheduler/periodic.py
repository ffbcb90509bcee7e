"""
Periodic Refresh Scheduler

Every interval, looks for calls that have no brief yet. New calls mean
the account picture moved, so besides briefing them the account's
derived artifacts are cascaded and regenerate lazily on next access.

The pass lock is shared with the warmup orchestrator: a refresh that
would overlap a warmup (or another refresh) is skipped, and a warmup
waits for a running refresh to finish.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from account_intel.cache.invalidation import CacheInvalidator
from account_intel.collector.client import SourceDataProvider
from account_intel.synthesis.briefs import CallBriefService


logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of one refresh pass."""
    entities_scanned: int = 0
    new_records: int = 0
    briefs_generated: int = 0
    cascades: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    skipped: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


class PeriodicRefreshScheduler:
    """
    Runs refresh_once() on a fixed interval in a background task.

    Passes never overlap each other or a warmup; a pass requested while
    the lock is held is skipped and reported as such.
    """

    def __init__(
        self,
        provider: SourceDataProvider,
        briefs: CallBriefService,
        invalidator: CacheInvalidator,
        interval_seconds: int = 1800,
        batch_size: int = 3,
        pass_lock: Optional[asyncio.Lock] = None,
    ):
        self.provider = provider
        self.briefs = briefs
        self.invalidator = invalidator
        self.interval_seconds = interval_seconds
        self.batch_size = max(1, batch_size)

        self.last_result: Optional[RefreshResult] = None
        self._pass_lock = pass_lock or asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def _refresh_entity(self, entity_id: str, result: RefreshResult) -> None:
        try:
            new_calls = await self.briefs.missing_calls(entity_id)
            if not new_calls:
                return

            result.new_records += len(new_calls)
            generated = await self.briefs.brief_calls(entity_id, new_calls)
            result.briefs_generated += generated

            # Calls that could not be briefed yet are retried next pass
            if generated:
                await self.invalidator.cascade(entity_id)
                result.cascades += 1
                logger.info(f"{entity_id}: {generated} new call briefs, cascaded")

        except Exception as e:
            logger.error(f"Refresh failed for {entity_id}: {e}")
            result.errors += 1

    async def refresh_once(self) -> RefreshResult:
        """One pass over every known entity."""
        if self._pass_lock.locked():
            logger.warning("Refresh or warmup pass already running, skipping")
            return RefreshResult(skipped=True)

        async with self._pass_lock:
            start = time.monotonic()
            result = RefreshResult()

            try:
                entity_ids: List[str] = await self.provider.list_entities()
            except Exception as e:
                logger.error(f"Refresh could not list entities: {e}")
                result.errors += 1
                entity_ids = []

            for i in range(0, len(entity_ids), self.batch_size):
                batch = entity_ids[i:i + self.batch_size]
                await asyncio.gather(*(self._refresh_entity(e, result) for e in batch))
                result.entities_scanned += len(batch)

            result.duration_seconds = round(time.monotonic() - start, 3)
            self.last_result = result

            logger.info(
                f"Refresh pass: {result.entities_scanned} entities, "
                f"{result.new_records} new calls, {result.briefs_generated} briefs, "
                f"{result.cascades} cascades, {result.errors} errors"
            )
            return result

    def start(self):
        """Start the background loop. Requires a running event loop."""
        if self._running:
            logger.warning("Periodic refresh already running")
            return

        self._running = True

        async def refresh_loop():
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await self.refresh_once()
                except Exception as e:
                    logger.error(f"Periodic refresh error: {e}")

        self._task = asyncio.create_task(refresh_loop())
        logger.info(f"Periodic refresh started (interval: {self.interval_seconds}s)")

    async def stop(self):
        """Stop the background loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Periodic refresh stopped")
