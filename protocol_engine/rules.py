"""
Protocol Engine - Rule / Alert Evaluator
========================================
Combines conditions into a firing decision for one rule or critical alert.

Firing contract:
1. Disabled rules never fire and are not evaluated.
2. ALL (when non-empty): conditions are evaluated in order, stopping at the
   first false one. Any false condition means the rule does not fire.
3. ANY (when non-empty): every condition is evaluated.
   - If ALL passed, ANY is recorded for explanation only; the rule fires
     whatever ANY's outcome.
   - If there is no ALL, the rule fires iff at least one ANY condition holds.
4. With neither clause populated the rule never fires.

Justifications accumulate in evaluation order, ALL first, then ANY.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from protocol_engine.conditions import evaluate_condition, numeric_value
from protocol_engine.models import Condition, CriticalAlert, Rule, Severity, When

logger = logging.getLogger(__name__)


@dataclass
class WhenOutcome:
    """Result of evaluating a trigger clause."""
    fired: bool
    because: List[str] = field(default_factory=list)
    conditions_met: List[Dict[str, Any]] = field(default_factory=list)


def _record(condition: Condition, values: Mapping[str, Any], outcome: WhenOutcome) -> bool:
    result = evaluate_condition(condition, values)
    outcome.because.append(result.reason)
    if result.ok:
        value = numeric_value(values.get(condition.biomarker))
        if value is not None:
            outcome.conditions_met.append({
                "biomarker": condition.biomarker,
                "condition": condition.describe(),
                "value": value,
            })
    return result.ok


def evaluate_when(when: When, values: Mapping[str, Any]) -> WhenOutcome:
    """Evaluate a `when` clause against a biomarker value lookup."""
    outcome = WhenOutcome(fired=False)
    has_all = bool(when.all)
    has_any = bool(when.any)

    if has_all:
        for condition in when.all:
            if not _record(condition, values, outcome):
                return outcome
        outcome.fired = True

    if has_any:
        any_ok = False
        for condition in when.any:
            any_ok = _record(condition, values, outcome) or any_ok
        if not has_all:
            outcome.fired = any_ok

    return outcome


# ============================================================
# FIRED RESULTS
# ============================================================

@dataclass
class FiredRule:
    """A protocol rule that fired, with its justification trail."""
    rule: Rule
    fired_because: List[str]
    conditions_met: List[Dict[str, Any]] = field(default_factory=list)
    kind = "rule"

    @property
    def id(self) -> str:
        return self.rule.id

    @property
    def severity(self) -> Severity:
        return Severity(self.rule.then.severity)

    @property
    def headline(self) -> str:
        return self.rule.then.headline

    @property
    def actions(self) -> List[str]:
        return list(self.rule.then.actions)

    def to_dict(self) -> Dict[str, Any]:
        data = self.rule.model_dump(mode="json", exclude_none=True)
        data["firedBecause"] = list(self.fired_because)
        return data


@dataclass
class FiredAlert:
    """A critical alert that fired, with its trace."""
    alert: CriticalAlert
    fired_because: List[str]
    conditions_met: List[Dict[str, Any]] = field(default_factory=list)
    kind = "alert"

    @property
    def id(self) -> str:
        return self.alert.id

    @property
    def severity(self) -> Severity:
        return Severity.RED

    @property
    def headline(self) -> str:
        return self.alert.then.headline

    @property
    def actions(self) -> List[str]:
        return list(self.alert.then.actions)

    def to_dict(self) -> Dict[str, Any]:
        then = self.alert.then
        return {
            "alert_id": self.alert.id,
            "name": self.alert.name,
            "severity": Severity.RED.value,
            "headline": then.headline,
            "why": then.why,
            "actions": list(then.actions),
            "doctor_questions": then.doctor_questions,
            "tags": then.tags,
            "trace": {
                "fired_because": list(self.fired_because),
                "conditions_met": [dict(c) for c in self.conditions_met],
            },
        }


FiredItem = Union[FiredRule, FiredAlert]


# ============================================================
# EVALUATION
# ============================================================

def evaluate_rule(rule: Rule, values: Mapping[str, Any]) -> Optional[FiredRule]:
    """Evaluate one rule; returns None when it does not fire."""
    if not rule.enabled:
        return None
    outcome = evaluate_when(rule.when, values)
    if not outcome.fired:
        return None
    logger.debug(f"RULE_FIRED: {rule.id} ({rule.then.severity.value})")
    return FiredRule(rule=rule, fired_because=outcome.because, conditions_met=outcome.conditions_met)


def evaluate_alert(alert: CriticalAlert, values: Mapping[str, Any]) -> Optional[FiredAlert]:
    """Evaluate one critical alert; returns None when it does not fire."""
    if not alert.enabled:
        return None
    outcome = evaluate_when(alert.when, values)
    if not outcome.fired:
        return None
    logger.info(f"ALERT_FIRED: {alert.id}")
    return FiredAlert(alert=alert, fired_because=outcome.because, conditions_met=outcome.conditions_met)


def evaluate_rules(rules: Sequence[Rule], values: Mapping[str, Any]) -> List[FiredRule]:
    """Evaluate rules in declared order, keeping the ones that fire."""
    fired = []
    for rule in rules:
        result = evaluate_rule(rule, values)
        if result is not None:
            fired.append(result)
    return fired


def evaluate_alerts(alerts: Sequence[CriticalAlert], values: Mapping[str, Any]) -> List[FiredAlert]:
    """Evaluate critical alerts in declared order, keeping the ones that fire."""
    fired = []
    for alert in alerts:
        result = evaluate_alert(alert, values)
        if result is not None:
            fired.append(result)
    return fired
