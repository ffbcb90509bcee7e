"""
Action Items

Incrementally extracted per account, with per-user completion state and
a cross-account "my action items" view for the home page.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set

from account_intel.cache.config import CacheTTL
from account_intel.cache.keys import make_key
from account_intel.collector.client import InteractionRecord, UserProfile
from account_intel.synthesis.extractor import IncrementalExtraction
from account_intel.synthesis.models import ActionItem, ItemStatus, action_item_id
from account_intel.synthesis.prompts import ACTION_ITEMS_SYSTEM


logger = logging.getLogger(__name__)


def owner_matches(owner: Optional[str], user_name: str) -> bool:
    """Loose name match: either contains the other, or shares a name part."""
    if not owner or not user_name:
        return False
    owner_lower = owner.lower()
    name_lower = user_name.lower()
    if owner_lower in name_lower or name_lower in owner_lower:
        return True
    return any(len(part) > 1 and part in owner_lower for part in name_lower.split())


class ActionItemService(IncrementalExtraction[ActionItem]):
    """Action items extracted from calls and emails."""

    DERIVATION = "action-items"
    CASCADE_KEYS = ("ai:action-items:{entity_id}",)
    SYSTEM_PROMPT = ACTION_ITEMS_SYSTEM

    # Parallel accounts when building a user's cross-account list
    BATCH_SIZE = 3

    def build_items(
        self,
        entity_id: str,
        raw_items: List[Dict],
        records: List[InteractionRecord],
    ) -> List[ActionItem]:
        items = []
        for raw in raw_items:
            action = str(raw.get("action") or "").strip()
            if not action:
                continue

            record = self.match_record(raw, records)
            if record is None:
                logger.debug(f"Dropping untraceable action item: {action[:80]}")
                continue

            owner = raw.get("owner")
            items.append(ActionItem(
                id=action_item_id(
                    entity_id, action, record.title, record.date, record.type, record.id
                ),
                entity_id=entity_id,
                action=action,
                source=record.title,
                date=record.date,
                source_type=record.type,
                record_id=record.id,
                owner=str(owner).strip() if owner else None,
            ))
        return items

    def item_from_dict(self, data: Dict) -> ActionItem:
        return ActionItem.from_dict(data)

    def sort_items(self, items: List[ActionItem]) -> List[ActionItem]:
        return sorted(items, key=lambda i: i.date, reverse=True)

    # =========================================================================
    # Completion state
    # =========================================================================

    def completions_key(self, user_id: str) -> str:
        return make_key("actions", "completed", user_id)

    async def get_completed(self, user_id: str) -> Set[str]:
        data = await self.cache.get(self.completions_key(user_id))
        return set(data or [])

    async def _update_completed(self, user_id: str, item_id: str, done: bool) -> None:
        key = self.completions_key(user_id)
        async with self._locks.lock(key):
            completed = await self.get_completed(user_id)
            if done:
                completed.add(item_id)
            else:
                completed.discard(item_id)
            await self.cache.set(key, sorted(completed), CacheTTL.COMPLETIONS)

    async def complete(self, user_id: str, item_id: str) -> None:
        """Mark an item done for one user."""
        await self._update_completed(user_id, item_id, True)

    async def uncomplete(self, user_id: str, item_id: str) -> None:
        await self._update_completed(user_id, item_id, False)

    async def get_with_status(self, entity_id: str, user_id: str) -> List[ActionItem]:
        """Account action items with the user's completion state applied."""
        items = await self.extract(entity_id)
        completed = await self.get_completed(user_id)
        for item in items:
            item.status = ItemStatus.DONE if item.id in completed else ItemStatus.OPEN
        return items

    # =========================================================================
    # Cross-account
    # =========================================================================

    def my_items_key(self, user_id: str) -> str:
        return make_key("home", "my-action-items", user_id)

    async def _owned_items(self, entity_id: str, user_name: str) -> List[ActionItem]:
        items = await self.extract(entity_id)
        return [i for i in items if owner_matches(i.owner, user_name)]

    async def _collect_for_user(self, user: UserProfile) -> List[Dict]:
        collected: List[ActionItem] = []
        account_ids = list(user.account_ids)

        for i in range(0, len(account_ids), self.BATCH_SIZE):
            batch = account_ids[i:i + self.BATCH_SIZE]
            results = await asyncio.gather(
                *(self._owned_items(entity_id, user.name) for entity_id in batch),
                return_exceptions=True,
            )
            for entity_id, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"Action items unavailable for {entity_id}: {result}")
                    continue
                collected.extend(result)

        completed = await self.get_completed(user.id)
        for item in collected:
            item.status = ItemStatus.DONE if item.id in completed else ItemStatus.OPEN

        return [item.to_dict() for item in self.sort_items(collected)]

    async def my_action_items(self, user: UserProfile) -> List[ActionItem]:
        """Items across the user's accounts whose owner matches the user's name."""
        data = await self.cache.cached_call(
            self.my_items_key(user.id),
            CacheTTL.MY_ACTION_ITEMS,
            lambda: self._collect_for_user(user),
        )
        return [ActionItem.from_dict(d) for d in data]
