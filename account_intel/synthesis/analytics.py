"""
Cross-Account Analytics

Per-user reports spanning every account the user works on, built from
call briefs that are already cached. Generating briefs is the warmup's
job; analytics never fans out into per-call synthesis.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from account_intel.analyzer.client import SynthesisEngine
from account_intel.cache.config import CacheTTL
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.invalidation import USER
from account_intel.cache.keys import make_key
from account_intel.collector.client import UserProfile
from account_intel.errors import UpstreamUnavailable
from account_intel.synthesis.briefs import CallBriefService
from account_intel.synthesis.models import AnalyticsReport, CallBrief
from account_intel.synthesis.prompts import ANALYTICS_SYSTEM


logger = logging.getLogger(__name__)


ANALYTICS_KINDS = ("insights", "competitive-analysis", "call-coaching", "win-loss")


def _format_brief(brief: CallBrief) -> str:
    lines = [f"[{brief.entity_id}] {brief.title} ({brief.date}), sentiment: {brief.sentiment}"]
    lines.append(brief.summary)
    lines.extend(f"- {p}" for p in brief.key_points)
    if brief.next_steps:
        lines.append("Next steps: " + "; ".join(brief.next_steps))
    return "\n".join(lines)


class AnalyticsService:
    """Generates and caches the per-user analytics reports."""

    CASCADE_ENTITY = USER
    CASCADE_KEYS = tuple(f"analytics:{kind}:{{entity_id}}" for kind in ANALYTICS_KINDS)

    BRIEFS_PER_ACCOUNT = 5
    MAX_BRIEFS = 40

    def __init__(
        self,
        cache: DerivationCache,
        briefs: CallBriefService,
        engine: Optional[SynthesisEngine],
    ):
        self.cache = cache
        self.briefs = briefs
        self.engine = engine

    def key(self, kind: str, user_id: str) -> str:
        return make_key("analytics", kind, user_id)

    async def _collect_briefs(self, user: UserProfile) -> List[CallBrief]:
        collected = []
        for entity_id in user.account_ids:
            try:
                collected.extend(
                    await self.briefs.cached_briefs(entity_id, self.BRIEFS_PER_ACCOUNT)
                )
            except UpstreamUnavailable as e:
                logger.warning(f"Skipping {entity_id} in analytics for {user.id}: {e}")
            if len(collected) >= self.MAX_BRIEFS:
                break
        return collected[:self.MAX_BRIEFS]

    async def _generate(self, kind: str, user: UserProfile) -> Optional[dict]:
        if self.engine is None:
            logger.warning(f"Synthesis not configured, no {kind} report")
            return None

        briefs = await self._collect_briefs(user)
        if not briefs:
            logger.info(f"No call briefs yet for {user.id}, skipping {kind}")
            return None

        prompt = (
            f"Call briefs across {user.name}'s accounts ({len(briefs)} calls):\n\n"
            + "\n\n".join(_format_brief(b) for b in briefs)
        )
        content = await self.engine.complete(
            prompt, system=ANALYTICS_SYSTEM[kind], max_tokens=1500
        )

        return AnalyticsReport(
            kind=kind,
            user_id=user.id,
            content=content.strip(),
            account_ids=sorted({b.entity_id for b in briefs}),
            briefs_used=len(briefs),
            generated_at=datetime.now(timezone.utc).isoformat(),
        ).to_dict()

    async def _lookup(self, kind: str, user: UserProfile) -> Tuple[Outcome, Optional[dict]]:
        if kind not in ANALYTICS_KINDS:
            raise ValueError(f"Unknown analytics kind: {kind}")
        return await self.cache.lookup(
            self.key(kind, user.id),
            CacheTTL.ANALYTICS,
            lambda: self._generate(kind, user),
        )

    async def get_report(self, kind: str, user: UserProfile) -> Optional[AnalyticsReport]:
        try:
            _, data = await self._lookup(kind, user)
        except UpstreamUnavailable as e:
            logger.error(f"{kind} report failed for {user.id}: {e}")
            return None
        return AnalyticsReport.from_dict(data) if data else None

    async def warm_user(self, user: UserProfile, refresh: bool = False) -> int:
        """
        Make sure every report exists for the user. Returns how many were
        generated by this call; raises UpstreamUnavailable if synthesis is down.

        With refresh, the existing reports are dropped first so they are
        rebuilt from the latest briefs.
        """
        if refresh:
            await self.cache.delete_many(self.key(kind, user.id) for kind in ANALYTICS_KINDS)

        generated = 0
        for kind in ANALYTICS_KINDS:
            outcome, _ = await self._lookup(kind, user)
            if outcome == Outcome.GENERATED:
                generated += 1
        return generated
