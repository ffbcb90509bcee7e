"""
Incremental Extractor

Derives a growing list of items (action items, contact insights) from an
expanding pool of interaction records without re-sending records Claude
has already seen and without losing items extracted earlier.

Stored value per entity:

    {"items": [...], "analyzed": ["record-id", ...]}

One round:
1. Load existing items + analyzed set
2. Take the newest records, capped per source type
3. unanalyzed = candidates - analyzed; nothing new -> return as is
4. Send only the unanalyzed records to Claude, tag results with provenance
5. Identity hash per item
6. Merge by identity (new wins)
7. Persist merged items + (analyzed | candidates) with no expiry

Synthesis failure writes nothing: the records stay unanalyzed and are
retried on the next access.
"""

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from account_intel.analyzer.client import SynthesisEngine
from account_intel.analyzer.parser import expect_list
from account_intel.cache.derivation import DerivationCache, Outcome
from account_intel.cache.invalidation import ACCOUNT
from account_intel.cache.keys import make_key
from account_intel.collector.client import CALL, EMAIL, InteractionRecord, SourceDataProvider
from account_intel.errors import MalformedSynthesisOutput, UpstreamUnavailable
from account_intel.synthesis.context import format_interactions


logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")


class KeyedLocks:
    """
    One asyncio.Lock per cache key, created on demand.

    Locks are held weakly, so keys nobody is waiting on do not accumulate.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


@dataclass
class ExtractionState:
    """Items extracted so far plus the records they came from."""
    items: Dict[str, Dict] = field(default_factory=dict)
    analyzed: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict:
        return {
            "items": list(self.items.values()),
            "analyzed": sorted(self.analyzed),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ExtractionState":
        if not isinstance(data, dict):
            return cls()
        items = {
            item["id"]: item
            for item in data.get("items") or []
            if isinstance(item, dict) and item.get("id")
        }
        return cls(items=items, analyzed={str(r) for r in data.get("analyzed") or []})


class IncrementalExtraction(ABC, Generic[ItemT]):
    """
    Base class for per-account extractions that grow with new records.

    Subclasses provide the derivation name, prompt and item construction.
    """

    DERIVATION: str = ""
    CASCADE_ENTITY = ACCOUNT
    CASCADE_KEYS: Sequence[str] = ()
    TTL_SECONDS = 0

    SOURCE_TYPES: Sequence[str] = (CALL, EMAIL)
    CAP_PER_TYPE = 10
    FETCH_LIMIT = 30
    MAX_CONTENT_CHARS = 6000
    MAX_TOKENS = 800

    SYSTEM_PROMPT = ""

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

    def key(self, entity_id: str) -> str:
        return make_key("ai", self.DERIVATION, entity_id)

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    @abstractmethod
    def build_items(
        self,
        entity_id: str,
        raw_items: List[Dict],
        records: List[InteractionRecord],
    ) -> List[ItemT]:
        """Turn parsed model output into items with identity and provenance."""

    @abstractmethod
    def item_from_dict(self, data: Dict) -> ItemT:
        ...

    def sort_items(self, items: List[ItemT]) -> List[ItemT]:
        return items

    # =========================================================================
    # Extraction
    # =========================================================================

    async def load_state(self, entity_id: str) -> ExtractionState:
        return ExtractionState.from_dict(await self.cache.get(self.key(entity_id)))

    def select_candidates(self, records: Iterable[InteractionRecord]) -> List[InteractionRecord]:
        """Newest records first, at most CAP_PER_TYPE of each source type."""
        per_type: Dict[str, int] = {}
        candidates = []
        for record in records:
            if record.type not in self.SOURCE_TYPES:
                continue
            if per_type.get(record.type, 0) >= self.CAP_PER_TYPE:
                continue
            per_type[record.type] = per_type.get(record.type, 0) + 1
            candidates.append(record)
        return candidates

    def build_prompt(self, records: List[InteractionRecord]) -> str:
        """Bounded text payload for the given records only."""
        return "Recent interactions:\n\n" + format_interactions(records, self.MAX_CONTENT_CHARS)

    def match_record(
        self,
        raw: Dict,
        records: List[InteractionRecord],
    ) -> Optional[InteractionRecord]:
        """Find the record an output item came from (echoed id, then title)."""
        record_id = str(raw.get("recordId") or raw.get("record_id") or "")
        for record in records:
            if record.id == record_id:
                return record

        source = str(raw.get("source") or "").strip().lower()
        if source:
            for record in records:
                if record.title.strip().lower() == source:
                    return record

        if len(records) == 1:
            return records[0]
        return None

    def merge(self, existing: Dict[str, Dict], new_items: List[ItemT]) -> Dict[str, Dict]:
        """Union by identity; a re-extracted item replaces the stored one."""
        merged = dict(existing)
        for item in new_items:
            data = item.to_dict()
            merged[data["id"]] = data
        return merged

    def _items(self, state: ExtractionState) -> List[ItemT]:
        return self.sort_items([self.item_from_dict(d) for d in state.items.values()])

    async def _round(self, entity_id: str) -> Tuple[Outcome, ExtractionState]:
        """
        One incremental round under the entity's lock.

        Raises UpstreamUnavailable with nothing written; malformed output
        is logged and leaves the stored state as it was.
        """
        key = self.key(entity_id)

        async with self._locks.lock(key):
            state = await self.load_state(entity_id)

            if self.engine is None:
                logger.warning(f"Synthesis not configured, serving stored {self.DERIVATION}")
                return Outcome.EMPTY, state

            records = await self.provider.get_interactions(
                entity_id, self.SOURCE_TYPES, self.FETCH_LIMIT
            )
            candidates = self.select_candidates(records)
            unanalyzed = [r for r in candidates if r.id not in state.analyzed]

            if not unanalyzed:
                logger.debug(f"No new records for {self.DERIVATION} of {entity_id}")
                return Outcome.CACHED, state

            with_content = [r for r in unanalyzed if r.content]
            new_items: List[ItemT] = []

            if with_content:
                try:
                    parsed = await self.engine.complete_json(
                        self.build_prompt(with_content),
                        system=self.SYSTEM_PROMPT,
                        max_tokens=self.MAX_TOKENS,
                    )
                    new_items = self.build_items(entity_id, expect_list(parsed), with_content)
                except MalformedSynthesisOutput as e:
                    logger.error(
                        f"{self.DERIVATION} output for {entity_id} discarded, "
                        f"keeping {len(state.items)} stored items: {e}"
                    )
                    return Outcome.EMPTY, state

            updated = ExtractionState(
                items=self.merge(state.items, new_items),
                analyzed=state.analyzed | {r.id for r in candidates},
            )
            await self.cache.set(key, updated.to_dict(), self.TTL_SECONDS)

            logger.info(
                f"{self.DERIVATION} for {entity_id}: {len(with_content)} new records, "
                f"{len(new_items)} extracted, {len(updated.items)} total"
            )
            return (Outcome.GENERATED if with_content else Outcome.EMPTY), updated

    async def extract(self, entity_id: str) -> List[ItemT]:
        """
        Run one incremental round for an entity and return all items.

        Serialized per entity, so overlapping callers (warmup, refresh,
        interactive) see each other's analyzed sets instead of racing.
        With an upstream down the stored items are returned unchanged.
        """
        try:
            _, state = await self._round(entity_id)
        except UpstreamUnavailable as e:
            logger.error(f"{self.DERIVATION} for {entity_id} not updated, serving stored items: {e}")
            state = await self.load_state(entity_id)
        return self._items(state)

    async def warm(self, entity_id: str) -> Outcome:
        """One round for warmup. Raises UpstreamUnavailable."""
        outcome, _ = await self._round(entity_id)
        return outcome
