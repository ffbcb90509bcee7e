"""
Derived Artifact Models

Everything cached by the synthesis layer is one of these, stored as
JSON via to_dict() and rebuilt with from_dict().
"""

import hashlib
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional


class HealthRating(Enum):
    """Account health traffic light."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class ItemStatus(Enum):
    """Action item completion state (per user)."""
    OPEN = "open"
    DONE = "done"


def action_item_id(
    entity_id: str,
    action: str,
    source: str,
    date: str,
    source_type: str,
    record_id: str,
) -> str:
    """Stable identity of an action item: a pure function of its semantic fields."""
    raw = f"{entity_id}:{action}:{source}:{date}:{source_type}:{record_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def contact_insight_id(entity_id: str, contact: str, attribute: str) -> str:
    """One insight slot per (contact, attribute); newer mentions replace older ones."""
    raw = f"{entity_id}:{contact.strip().lower()}:{attribute.strip().lower()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class CallBrief:
    """Immutable brief of one recorded call."""
    entity_id: str
    record_id: str
    title: str
    date: str
    summary: str
    key_points: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    sentiment: str = "neutral"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "CallBrief":
        return cls(
            entity_id=data["entity_id"],
            record_id=data["record_id"],
            title=data.get("title", ""),
            date=data.get("date", ""),
            summary=data.get("summary", ""),
            key_points=list(data.get("key_points") or []),
            next_steps=list(data.get("next_steps") or []),
            sentiment=data.get("sentiment", "neutral"),
        )


@dataclass
class HealthSummary:
    """Health rating with the reasoning behind it."""
    entity_id: str
    rating: HealthRating
    reason: str
    narrative: str

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["rating"] = self.rating.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "HealthSummary":
        return cls(
            entity_id=data["entity_id"],
            rating=HealthRating(data["rating"]),
            reason=data.get("reason", ""),
            narrative=data.get("narrative", ""),
        )


@dataclass
class ActionItem:
    """A commitment or follow-up extracted from a call or email."""
    id: str
    entity_id: str
    action: str
    source: str
    date: str
    source_type: str
    record_id: str
    owner: Optional[str] = None
    status: ItemStatus = ItemStatus.OPEN

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "ActionItem":
        return cls(
            id=data["id"],
            entity_id=data["entity_id"],
            action=data["action"],
            source=data.get("source", ""),
            date=data.get("date", ""),
            source_type=data.get("source_type", ""),
            record_id=data.get("record_id", ""),
            owner=data.get("owner"),
            status=ItemStatus(data.get("status", ItemStatus.OPEN.value)),
        )


@dataclass
class ContactInsight:
    """What we learned about a contact, and when it was mentioned."""
    id: str
    entity_id: str
    contact: str
    attribute: str
    value: str
    mentioned_at: str
    source_type: str
    record_id: str

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "ContactInsight":
        return cls(
            id=data["id"],
            entity_id=data["entity_id"],
            contact=data["contact"],
            attribute=data["attribute"],
            value=data.get("value", ""),
            mentioned_at=data.get("mentioned_at", ""),
            source_type=data.get("source_type", ""),
            record_id=data.get("record_id", ""),
        )


@dataclass
class AnalyticsReport:
    """Cross-account analysis for one user."""
    kind: str
    user_id: str
    content: str
    account_ids: List[str] = field(default_factory=list)
    briefs_used: int = 0
    generated_at: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "AnalyticsReport":
        return cls(
            kind=data["kind"],
            user_id=data["user_id"],
            content=data.get("content", ""),
            account_ids=list(data.get("account_ids") or []),
            briefs_used=data.get("briefs_used", 0),
            generated_at=data.get("generated_at", ""),
        )
