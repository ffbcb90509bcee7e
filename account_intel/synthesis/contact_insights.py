"""
Contact Insights

What calls and emails reveal about individual customer contacts, kept
as one slot per (contact, attribute) so a newer mention replaces an
older one instead of piling up.
"""

import logging
from typing import Dict, List

from account_intel.collector.client import InteractionRecord
from account_intel.synthesis.extractor import IncrementalExtraction
from account_intel.synthesis.models import ContactInsight, contact_insight_id
from account_intel.synthesis.prompts import CONTACT_INSIGHTS_SYSTEM


logger = logging.getLogger(__name__)


class ContactInsightService(IncrementalExtraction[ContactInsight]):
    """Contact insights extracted from calls and emails."""

    DERIVATION = "contact-insights"
    CASCADE_KEYS = ("ai:contact-insights:{entity_id}",)
    SYSTEM_PROMPT = CONTACT_INSIGHTS_SYSTEM

    def build_items(
        self,
        entity_id: str,
        raw_items: List[Dict],
        records: List[InteractionRecord],
    ) -> List[ContactInsight]:
        items = []
        for raw in raw_items:
            contact = str(raw.get("contact") or "").strip()
            attribute = str(raw.get("attribute") or "").strip().lower()
            value = str(raw.get("value") or "").strip()
            if not (contact and attribute and value):
                continue

            record = self.match_record(raw, records)
            if record is None:
                logger.debug(f"Dropping untraceable insight about {contact}")
                continue

            items.append(ContactInsight(
                id=contact_insight_id(entity_id, contact, attribute),
                entity_id=entity_id,
                contact=contact,
                attribute=attribute,
                value=value,
                mentioned_at=record.date,
                source_type=record.type,
                record_id=record.id,
            ))
        return items

    def merge(self, existing: Dict[str, Dict], new_items: List[ContactInsight]) -> Dict[str, Dict]:
        # Within one batch the most recent mention of a slot wins
        new_items = sorted(new_items, key=lambda i: i.mentioned_at)
        return super().merge(existing, new_items)

    def item_from_dict(self, data: Dict) -> ContactInsight:
        return ContactInsight.from_dict(data)

    def sort_items(self, items: List[ContactInsight]) -> List[ContactInsight]:
        return sorted(items, key=lambda i: (i.contact.lower(), i.attribute))
