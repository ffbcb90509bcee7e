"""
Account Summaries

Free-text syntheses over an account's recent activity: the overview,
the per-topic detail summaries, and email thread summaries.

The public accessors return None when an upstream is down; the warm_*
variants used by warmup raise instead and report how the artifact was
obtained.
"""

import logging
from typing import List, Optional, Tuple

from account_intel.analyzer.client import SynthesisEngine
from account_intel.cache.config import CacheTTL
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.invalidation import ACCOUNT
from account_intel.cache.keys import hash_ids, make_key
from account_intel.collector.client import CALL, EMAIL, InteractionRecord, SourceDataProvider
from account_intel.errors import UpstreamUnavailable
from account_intel.synthesis.context import format_account, format_interactions
from account_intel.synthesis.prompts import (
    OVERVIEW_SYSTEM,
    POC_STATUS_SYSTEM,
    TECHNICAL_DETAILS_SYSTEM,
    THREAD_SUMMARY_SYSTEM,
)


logger = logging.getLogger(__name__)


DETAIL_KINDS = {
    "technical-details": TECHNICAL_DETAILS_SYSTEM,
    "poc-status": POC_STATUS_SYSTEM,
}


class SummaryService:
    """Overview, detail and thread summaries."""

    CASCADE_ENTITY = ACCOUNT
    CASCADE_KEYS = (
        "ai:overview:{entity_id}",
        "ai:technical-details:{entity_id}",
        "ai:poc-status:{entity_id}",
    )

    RECORD_LIMIT = 15
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

    async def _synthesize(self, system: str, prompt: str, what: str) -> Optional[str]:
        if self.engine is None:
            logger.warning(f"Synthesis not configured, no {what}")
            return None
        text = await self.engine.complete(prompt, system=system, max_tokens=800)
        if not text.strip():
            logger.warning(f"Empty {what} from synthesis")
            return None
        return text.strip()

    async def _account_context(self, entity_id: str) -> Optional[str]:
        account = await self.provider.get_account(entity_id)
        records = await self.provider.get_interactions(
            entity_id, [CALL, EMAIL], self.RECORD_LIMIT
        )

        if not account and not records:
            return None

        return (
            f"{format_account(account)}\n\n"
            f"Recent interactions:\n\n"
            f"{format_interactions(records, self.MAX_CONTENT_CHARS, with_ids=False)}"
        )

    async def _account_summary(self, entity_id: str, system: str, what: str) -> Optional[str]:
        if self.engine is None:
            logger.warning(f"Synthesis not configured, no {what}")
            return None
        context = await self._account_context(entity_id)
        if context is None:
            return None
        return await self._synthesize(system, context, f"{what} for {entity_id}")

    async def _overview(self, entity_id: str) -> Tuple[Outcome, Optional[str]]:
        return await self.cache.lookup(
            make_key("ai", "overview", entity_id),
            CacheTTL.ACCOUNT_OVERVIEW,
            lambda: self._account_summary(entity_id, OVERVIEW_SYSTEM, "overview"),
        )

    async def _detail(self, entity_id: str, kind: str) -> Tuple[Outcome, Optional[str]]:
        if kind not in DETAIL_KINDS:
            raise ValueError(f"Unknown detail summary: {kind}")
        return await self.cache.lookup(
            make_key("ai", kind, entity_id),
            CacheTTL.DETAIL_SUMMARY,
            lambda: self._account_summary(entity_id, DETAIL_KINDS[kind], kind),
        )

    async def overview(self, entity_id: str) -> Optional[str]:
        """Structured account overview."""
        try:
            _, text = await self._overview(entity_id)
        except UpstreamUnavailable as e:
            logger.error(f"Overview for {entity_id} unavailable: {e}")
            return None
        return text

    async def detail_summary(self, entity_id: str, kind: str) -> Optional[str]:
        """One of the topic summaries in DETAIL_KINDS."""
        try:
            _, text = await self._detail(entity_id, kind)
        except UpstreamUnavailable as e:
            logger.error(f"{kind} for {entity_id} unavailable: {e}")
            return None
        return text

    async def warm_overview(self, entity_id: str) -> Outcome:
        outcome, _ = await self._overview(entity_id)
        return outcome

    async def warm_detail(self, entity_id: str, kind: str) -> Outcome:
        outcome, _ = await self._detail(entity_id, kind)
        return outcome

    async def thread_summary(self, emails: List[InteractionRecord]) -> Optional[str]:
        """
        Summary of an email thread.

        Keyed by the thread's email ids, so a new reply produces a new key
        rather than needing an invalidation.
        """
        if not emails:
            return None

        ordered = sorted(emails, key=lambda e: e.date)
        prompt = (
            f"Summarize this email thread ({len(ordered)} emails):\n\n"
            f"{format_interactions(ordered, self.MAX_CONTENT_CHARS, with_ids=False)}"
        )
        try:
            return await self.cache.cached_call(
                make_key("ai", "thread-summary", hash_ids(e.id for e in emails)),
                CacheTTL.THREAD_SUMMARY,
                lambda: self._synthesize(THREAD_SUMMARY_SYSTEM, prompt, "thread summary"),
            )
        except UpstreamUnavailable as e:
            logger.error(f"Thread summary unavailable: {e}")
            return None
