"""
Account Health

Green / yellow / red rating with a short justification.
"""

import logging
from typing import Optional, Tuple

from account_intel.analyzer.client import SynthesisEngine
from account_intel.analyzer.parser import expect_object
from account_intel.cache.config import CacheTTL
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.invalidation import ACCOUNT
from account_intel.cache.keys import make_key
from account_intel.collector.client import CALL, EMAIL, SourceDataProvider
from account_intel.errors import MalformedSynthesisOutput, UpstreamUnavailable
from account_intel.synthesis.context import format_account, format_interactions
from account_intel.synthesis.models import HealthRating, HealthSummary
from account_intel.synthesis.prompts import HEALTH_SYSTEM


logger = logging.getLogger(__name__)


class HealthService:
    """Synthesized account health."""

    CASCADE_ENTITY = ACCOUNT
    CASCADE_KEYS = ("ai:health:{entity_id}",)

    RECORD_LIMIT = 10
    MAX_CONTENT_CHARS = 3000

    def __init__(
        self,
        cache: DerivationCache,
        provider: SourceDataProvider,
        engine: Optional[SynthesisEngine],
    ):
        self.cache = cache
        self.provider = provider
        self.engine = engine

    def key(self, entity_id: str) -> str:
        return make_key("ai", "health", entity_id)

    async def _assess(self, entity_id: str) -> Optional[dict]:
        if self.engine is None:
            logger.warning("Synthesis not configured, no health rating")
            return None

        account = await self.provider.get_account(entity_id)
        records = await self.provider.get_interactions(
            entity_id, [CALL, EMAIL], self.RECORD_LIMIT
        )
        if not records:
            return None
        prompt = (
            f"{format_account(account)}\n\n"
            f"Recent interactions:\n\n"
            f"{format_interactions(records, self.MAX_CONTENT_CHARS, with_ids=False)}"
        )
        try:
            parsed = expect_object(await self.engine.complete_json(
                prompt, system=HEALTH_SYSTEM, max_tokens=400
            ))
        except MalformedSynthesisOutput as e:
            logger.error(f"Discarding health assessment for {entity_id}: {e}")
            return None

        try:
            rating = HealthRating(str(parsed.get("rating", "")).strip().lower())
        except ValueError:
            logger.error(f"Unknown health rating for {entity_id}: {parsed.get('rating')!r}")
            return None

        return HealthSummary(
            entity_id=entity_id,
            rating=rating,
            reason=str(parsed.get("reason") or ""),
            narrative=str(parsed.get("narrative") or ""),
        ).to_dict()

    async def _lookup(self, entity_id: str) -> Tuple[Outcome, Optional[dict]]:
        return await self.cache.lookup(
            self.key(entity_id),
            CacheTTL.HEALTH_SUMMARY,
            lambda: self._assess(entity_id),
        )

    async def get_health(self, entity_id: str) -> Optional[HealthSummary]:
        try:
            _, data = await self._lookup(entity_id)
        except UpstreamUnavailable as e:
            logger.error(f"Health assessment failed for {entity_id}: {e}")
            return None
        return HealthSummary.from_dict(data) if data else None

    async def warm_health(self, entity_id: str) -> Outcome:
        """Raises UpstreamUnavailable instead of returning nothing."""
        outcome, _ = await self._lookup(entity_id)
        return outcome
