"""
Prompt context builders shared by the synthesis producers.
"""

from typing import Any, Dict, List, Optional

from account_intel.collector.client import CALL, InteractionRecord


def format_interactions(
    records: List[InteractionRecord],
    max_chars: int = 6000,
    with_ids: bool = True,
) -> str:
    """Render records as labelled blocks, each truncated to max_chars."""
    blocks = []
    for i, record in enumerate(records, start=1):
        label = "Call" if record.type == CALL else "Email"
        header = f"--- {label} {i}: \"{record.title}\" ({record.date})"
        if with_ids:
            header += f" [recordId: {record.id}]"
        participants = ", ".join(record.participants) or "unknown"
        blocks.append(
            f"{header} ---\n"
            f"Participants: {participants}\n\n"
            f"{record.content[:max_chars]}"
        )
    return "\n\n".join(blocks)


def format_account(account: Optional[Dict[str, Any]]) -> str:
    """One-paragraph account header from the CRM record, if any."""
    if not account:
        return "Account: (no CRM record)"

    lines = [f"Account: {account.get('name') or account.get('id')}"]
    for label, key in (
        ("Industry", "industry"),
        ("Stage", "stage"),
        ("Owner", "owner"),
        ("Health", "health_status"),
        ("Region", "region"),
    ):
        if account.get(key):
            lines.append(f"{label}: {account[key]}")
    return "\n".join(lines)
