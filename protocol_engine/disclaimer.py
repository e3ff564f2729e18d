"""
Protocol Engine - Report Disclaimers
Orders knowledge-base disclaimer texts for display alongside a report.

RULES:
1. Tiers are shown high -> medium -> low, then any other priority.
2. Within a tier, declaration order is kept.
"""

from typing import Dict, List

from protocol_engine.models import DisclaimerTexts

PRIORITY_TIERS = ("high", "medium", "low")


def disclaimer_rank(priority: str) -> int:
    """
    Rank a disclaimer priority; lower ranks are shown first.

    Example:
        >>> disclaimer_rank("high")
        0
        >>> disclaimer_rank("urgent")
        3
    """
    normalized = (priority or "").strip().lower()
    if normalized in PRIORITY_TIERS:
        return PRIORITY_TIERS.index(normalized)
    return len(PRIORITY_TIERS)


def render_disclaimers(disclaimer_texts: DisclaimerTexts) -> List[Dict[str, str]]:
    """Render disclaimers as {key, text, priority} records in display order."""
    entries = [
        {"key": key, "text": d.text, "priority": d.priority}
        for key, d in disclaimer_texts.disclaimers.items()
    ]
    return sorted(entries, key=lambda e: disclaimer_rank(e["priority"]))
