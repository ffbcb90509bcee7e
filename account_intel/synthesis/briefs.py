"""
Call Briefs

One brief per recorded call. A finished call never changes, so briefs
are stored without expiry and are not part of the account cascade; the
periodic refresh only ever adds briefs for calls it has not seen.

Warmup, the periodic refresh and interactive reads can all reach a new
call at once; generation is serialized per brief key so each call is
briefed once.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from account_intel.analyzer.client import SynthesisEngine
from account_intel.analyzer.parser import expect_object
from account_intel.cache.config import CacheTTL
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.keys import make_key
from account_intel.collector.client import CALL, InteractionRecord, SourceDataProvider
from account_intel.errors import MalformedSynthesisOutput, UpstreamUnavailable
from account_intel.synthesis.context import format_interactions
from account_intel.synthesis.extractor import KeyedLocks
from account_intel.synthesis.models import CallBrief
from account_intel.synthesis.prompts import CALL_BRIEF_SYSTEM


logger = logging.getLogger(__name__)


class CallBriefService:
    """Generates and serves per-call briefs."""

    MAX_TRANSCRIPT_CHARS = 12000
    CALL_LIMIT = 30

    def __init__(
        self,
        cache: DerivationCache,
        provider: SourceDataProvider,
        engine: Optional[SynthesisEngine],
        locks: Optional[KeyedLocks] = None,
    ):
        self.cache = cache
        self.provider = provider
        self.engine = engine
        self._locks = locks or KeyedLocks()

    def key(self, entity_id: str, record_id: str) -> str:
        return make_key("ai", "call-brief", entity_id, record_id)

    async def has_brief(self, entity_id: str, record_id: str) -> bool:
        return await self.cache.exists(self.key(entity_id, record_id))

    async def _generate(self, entity_id: str, record: InteractionRecord) -> Optional[dict]:
        if self.engine is None:
            logger.warning("Synthesis not configured, skipping call brief")
            return None
        if not record.content:
            logger.debug(f"Call {record.id} has no transcript yet")
            return None

        try:
            parsed = expect_object(await self.engine.complete_json(
                format_interactions([record], self.MAX_TRANSCRIPT_CHARS, with_ids=False),
                system=CALL_BRIEF_SYSTEM,
                max_tokens=600,
            ))
        except MalformedSynthesisOutput as e:
            logger.error(f"Discarding call brief for {entity_id}/{record.id}: {e}")
            return None

        return CallBrief(
            entity_id=entity_id,
            record_id=record.id,
            title=record.title,
            date=record.date,
            summary=str(parsed.get("summary") or ""),
            key_points=[str(p) for p in parsed.get("key_points") or []],
            next_steps=[str(s) for s in parsed.get("next_steps") or []],
            sentiment=str(parsed.get("sentiment") or "neutral"),
        ).to_dict()

    async def _lookup(
        self,
        entity_id: str,
        record: InteractionRecord,
    ) -> Tuple[Outcome, Optional[dict]]:
        key = self.key(entity_id, record.id)
        async with self._locks.lock(key):
            return await self.cache.lookup(
                key,
                CacheTTL.CALL_BRIEF,
                lambda: self._generate(entity_id, record),
            )

    async def get_brief(self, entity_id: str, record: InteractionRecord) -> Optional[CallBrief]:
        """Cached brief for a call, generated on first request."""
        try:
            _, data = await self._lookup(entity_id, record)
        except UpstreamUnavailable as e:
            logger.error(f"Call brief failed for {entity_id}/{record.id}: {e}")
            return None
        return CallBrief.from_dict(data) if data else None

    async def warm_brief(self, entity_id: str, record: InteractionRecord) -> Outcome:
        """
        Make sure the call has a brief.

        Raises:
            UpstreamUnavailable: synthesis or source data is down
        """
        outcome, _ = await self._lookup(entity_id, record)
        return outcome

    async def list_calls(self, entity_id: str) -> List[InteractionRecord]:
        return await self.provider.get_interactions(entity_id, [CALL], self.CALL_LIMIT)

    async def missing_calls(self, entity_id: str) -> List[InteractionRecord]:
        """Calls of the entity that do not have a cached brief yet."""
        missing = []
        for record in await self.list_calls(entity_id):
            if not await self.has_brief(entity_id, record.id):
                missing.append(record)
        return missing

    async def brief_calls(self, entity_id: str, records: Sequence[InteractionRecord]) -> int:
        """
        Brief the given calls. Returns how many briefs were generated here.

        Stops at the first synthesis outage; the remaining calls stay
        unbriefed and are picked up next time.
        """
        generated = 0
        for done, record in enumerate(records):
            try:
                outcome = await self.warm_brief(entity_id, record)
            except UpstreamUnavailable as e:
                logger.warning(
                    f"Briefing {entity_id} interrupted, {len(records) - done} calls left: {e}"
                )
                break
            if outcome == Outcome.GENERATED:
                generated += 1
        return generated

    async def cached_briefs(self, entity_id: str, limit: int = 5) -> List[CallBrief]:
        """Most recent existing briefs only; never triggers synthesis."""
        briefs = []
        for record in await self.list_calls(entity_id):
            data = await self.cache.get(self.key(entity_id, record.id))
            if data:
                briefs.append(CallBrief.from_dict(data))
            if len(briefs) >= limit:
                break
        return briefs
