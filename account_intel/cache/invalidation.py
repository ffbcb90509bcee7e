"""
Cache Invalidation Service

Event-driven invalidation of derived artifacts.
Principle: invalidate as narrowly as possible, but never miss a dependent.

Producers declare which per-entity keys they own (CASCADE_KEYS); the
DependencyGraph collects those declarations, so adding a producer cannot
silently leave a stale artifact behind after new source data arrives.

Events:
- SOURCE_RECORDS_DISCOVERED: cascade every dependent key of the entity
- MANUAL_INVALIDATE_ENTITY: same scope, operator-triggered
- ACTION_ITEM_STATUS_CHANGED: only the user's cross-account action list
- MANUAL_INVALIDATE_ALL: every key in the namespace
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from account_intel.cache.derivation import DerivationCache
from account_intel.cache.keys import make_key


logger = logging.getLogger(__name__)


ACCOUNT = "account"
USER = "user"


class CacheEvent(Enum):
    """Events that trigger cache invalidation."""

    SOURCE_RECORDS_DISCOVERED = "source_records_discovered"
    ACTION_ITEM_STATUS_CHANGED = "action_item_status_changed"
    MANUAL_INVALIDATE_ENTITY = "manual_invalidate_entity"
    MANUAL_INVALIDATE_ALL = "manual_invalidate_all"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: Optional[CacheEvent]
    success: bool
    keys_invalidated: int
    duration_ms: float
    keys: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class DependencyGraph:
    """
    Entity type -> key templates of derived artifacts depending on it.

    Templates use `{entity_id}` as the only placeholder, e.g.
    "ai:health:{entity_id}".
    """

    def __init__(self):
        self._templates: Dict[str, Dict[str, Tuple[str, ...]]] = {}

    def register(self, entity_type: str, producer: str, templates: Iterable[str]):
        """Declare the keys `producer` derives from entities of `entity_type`."""
        templates = tuple(templates)
        for template in templates:
            if "{entity_id}" not in template:
                raise ValueError(
                    f"Cascade template for {producer} lacks {{entity_id}}: {template}"
                )
        self._templates.setdefault(entity_type, {})[producer] = templates
        logger.debug(f"Registered cascade keys for {producer}: {templates}")

    def register_producer(self, producer) -> None:
        """Register an object exposing CASCADE_ENTITY and CASCADE_KEYS."""
        self.register(
            producer.CASCADE_ENTITY,
            type(producer).__name__,
            producer.CASCADE_KEYS,
        )

    def producers(self, entity_type: str) -> List[str]:
        return sorted(self._templates.get(entity_type, {}))

    def keys_for(self, entity_type: str, entity_id: str) -> List[str]:
        """Concrete keys to delete for one entity, in registration order."""
        keys = []
        for templates in self._templates.get(entity_type, {}).values():
            for template in templates:
                key = template.format(entity_id=entity_id)
                if key not in keys:
                    keys.append(key)
        return keys


class CacheInvalidator:
    """
    Handles cache invalidation based on events.

    Each event type has a specific invalidation scope.
    """

    def __init__(
        self,
        cache: DerivationCache,
        graph: DependencyGraph,
    ):
        self.cache = cache
        self.graph = graph

    async def cascade(self, entity_id: str, entity_type: str = ACCOUNT) -> InvalidationResult:
        """Delete every derived artifact registered against the entity."""
        return await self.handle_event(
            CacheEvent.SOURCE_RECORDS_DISCOVERED,
            entity_id=entity_id,
            entity_type=entity_type,
        )

    async def handle_event(
        self,
        event: CacheEvent,
        entity_id: Optional[str] = None,
        entity_type: str = ACCOUNT,
        user_id: Optional[str] = None,
    ) -> InvalidationResult:
        """
        Handle cache invalidation for an event.

        Store outages are absorbed by the derivation cache; a key that
        could not be deleted simply does not count as invalidated.
        """
        start_time = time.monotonic()
        errors = []
        keys: List[str] = []

        logger.info(
            f"Cache invalidation event: {event.value}, "
            f"entity={entity_type}:{entity_id}, user={user_id}"
        )

        if event in (CacheEvent.SOURCE_RECORDS_DISCOVERED, CacheEvent.MANUAL_INVALIDATE_ENTITY):
            if entity_id:
                keys = self.graph.keys_for(entity_type, entity_id)
            else:
                errors.append(f"{event.value} requires entity_id")

        elif event == CacheEvent.ACTION_ITEM_STATUS_CHANGED:
            if user_id:
                keys = [make_key("home", "my-action-items", user_id)]
            else:
                errors.append(f"{event.value} requires user_id")

        elif event == CacheEvent.MANUAL_INVALIDATE_ALL:
            # Nuclear option - use sparingly
            keys = await self.cache.list_keys("*")

        deleted = await self.cache.delete_many(keys)
        duration = (time.monotonic() - start_time) * 1000

        result = InvalidationResult(
            event=event,
            success=len(errors) == 0,
            keys_invalidated=deleted,
            duration_ms=duration,
            keys=keys,
            errors=errors,
        )

        logger.info(
            f"Invalidation complete: {deleted}/{len(keys)} keys removed, "
            f"duration: {duration:.2f}ms"
        )

        return result
