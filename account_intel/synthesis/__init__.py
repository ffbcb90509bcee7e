"""
Derived-artifact producers.

Every producer whose output depends on an entity declares CASCADE_ENTITY
and CASCADE_KEYS so the invalidation graph picks it up.
"""

from .action_items import ActionItemService, owner_matches
from .analytics import ANALYTICS_KINDS, AnalyticsService
from .briefs import CallBriefService
from .contact_insights import ContactInsightService
from .extractor import ExtractionState, IncrementalExtraction, KeyedLocks
from .health import HealthService
from .models import (
    ActionItem,
    AnalyticsReport,
    CallBrief,
    ContactInsight,
    HealthRating,
    HealthSummary,
    ItemStatus,
)
from .summaries import DETAIL_KINDS, SummaryService

__all__ = [
    "ActionItemService",
    "owner_matches",
    "ANALYTICS_KINDS",
    "AnalyticsService",
    "CallBriefService",
    "ContactInsightService",
    "ExtractionState",
    "IncrementalExtraction",
    "KeyedLocks",
    "HealthService",
    "ActionItem",
    "AnalyticsReport",
    "CallBrief",
    "ContactInsight",
    "HealthRating",
    "HealthSummary",
    "ItemStatus",
    "DETAIL_KINDS",
    "SummaryService",
]
