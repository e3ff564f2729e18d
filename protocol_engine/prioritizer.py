"""
Protocol Engine - Severity Prioritizer
======================================
Orders fired rules/alerts by severity (red > orange > yellow > green) and
derives the action items of a report.

Ordering is a stable sort: equal-severity items keep their evaluation order.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from protocol_engine.conditions import build_value_lookup
from protocol_engine.models import Action, CriticalAlert, Rule, Severity
from protocol_engine.rules import FiredItem, evaluate_alerts, evaluate_rules

SEVERITY_RANK: Mapping[Severity, int] = {
    Severity.RED: 4,
    Severity.ORANGE: 3,
    Severity.YELLOW: 2,
    Severity.GREEN: 1,
}


@dataclass
class ActionItem:
    severity: Severity
    headline: str
    bullets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "headline": self.headline,
            "bullets": list(self.bullets),
        }


@dataclass
class Report:
    """Prioritized fired items and their action items, in the same order."""
    priorities: List[FiredItem]
    actions: List[ActionItem]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priorities": [item.to_dict() for item in self.priorities],
            "actions": [a.to_dict() for a in self.actions],
        }


def prioritize(items: Sequence[FiredItem]) -> List[FiredItem]:
    """Sort fired items by descending severity, stable within a tier."""
    # sorted() is guaranteed stable
    return sorted(items, key=lambda item: SEVERITY_RANK[Severity(item.severity)], reverse=True)


def resolve_action(action_ref: str, action_library: Optional[Mapping[str, Action]]) -> str:
    """
    Resolve an action reference ("id" or "id:param") to bullet text.

    Without a library, or for an unknown id, the reference is returned as-is.
    A "{param}" placeholder in the action text is filled from the suffix.
    """
    if not action_library:
        return action_ref
    action_id, _, param = action_ref.partition(":")
    action = action_library.get(action_id)
    if action is None:
        return action_ref
    if "{param}" in action.text:
        return action.text.replace("{param}", param)
    return action.text


def build_report(
    fired: Sequence[FiredItem],
    action_library: Optional[Mapping[str, Action]] = None
) -> Report:
    """Prioritize fired items and derive one action item per item."""
    ordered = prioritize(fired)
    actions = [
        ActionItem(
            severity=Severity(item.severity),
            headline=item.headline,
            bullets=[resolve_action(ref, action_library) for ref in item.actions],
        )
        for item in ordered
    ]
    return Report(priorities=ordered, actions=actions)


def generate_report(
    labs: Mapping[str, Any],
    rules: Sequence[Rule],
    alerts: Sequence[CriticalAlert] = (),
    action_library: Optional[Mapping[str, Action]] = None
) -> Report:
    """
    Evaluate alerts then rules directly against raw lab values and build the report.

    Args:
        labs: biomarker -> value; None, NaN or non-numeric values count as absent
    """
    values = build_value_lookup({"biomarker": k, "value": v} for k, v in labs.items())
    fired: List[FiredItem] = [*evaluate_alerts(alerts, values), *evaluate_rules(rules, values)]
    return build_report(fired, action_library)
