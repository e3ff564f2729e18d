"""
Protocol Engine - Knowledge Base Consistency Validator
======================================================
Proves referential integrity across biomarkers, ranges, rules, alerts,
actions and evidence before a knowledge base version is trusted.

Every check appends to a shared violation list; nothing stops at the first
problem. validate_knowledge_base() then raises one aggregate error.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Union

from protocol_engine.errors import KnowledgeBaseConsistencyError
from protocol_engine.models import CriticalAlert, KnowledgeBase, Operator, Rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsistencyViolation:
    """A single referential-integrity problem."""
    message: str
    context: Optional[str] = None

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (context: {self.context})"
        return self.message

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"message": self.message, "context": self.context}


def _duplicates(
    category: str,
    items: Iterable,
    label: str,
    describe,
    violations: List[ConsistencyViolation]
) -> Set[str]:
    seen: Set[str] = set()
    for item in items:
        if item.id in seen:
            violations.append(ConsistencyViolation(
                message=f'Duplicate id in {category}: "{item.id}"',
                context=f"{label}: {describe(item)}",
            ))
        seen.add(item.id)
    return seen


def check_unique_ids(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Ids are unique per category and no rule id collides with an alert id."""
    _duplicates("biomarkers", kb.biomarkers, "Biomarker", lambda b: b.name, violations)
    _duplicates("actions", kb.actions, "Action", lambda a: a.text, violations)
    _duplicates("rules", kb.rules, "Rule", lambda r: r.name, violations)
    alert_ids = _duplicates("critical alerts", kb.red_flags, "Alert", lambda a: a.name, violations)

    for rule in kb.rules:
        if rule.id in alert_ids:
            violations.append(ConsistencyViolation(
                message=f'Id "{rule.id}" is used by both a rule and a critical alert',
                context=f"Rule: {rule.name}",
            ))


def check_reference_ranges(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Each reference range targets a known biomarker, at most once."""
    biomarker_ids = {b.id for b in kb.biomarkers}
    seen: Set[str] = set()
    for reference_range in kb.reference_ranges:
        if reference_range.biomarker not in biomarker_ids:
            violations.append(ConsistencyViolation(
                message=f'Reference range references unknown biomarker: "{reference_range.biomarker}"',
                context=f"Reference range for: {reference_range.biomarker}",
            ))
        if reference_range.biomarker in seen:
            violations.append(ConsistencyViolation(
                message=f'Duplicate reference range for biomarker: "{reference_range.biomarker}"',
                context=f"Reference range for: {reference_range.biomarker}",
            ))
        seen.add(reference_range.biomarker)


def _check_condition_biomarkers(
    kind: str,
    item: Union[Rule, CriticalAlert],
    biomarker_ids: Set[str],
    violations: List[ConsistencyViolation]
) -> None:
    for condition in item.when.conditions():
        if condition.operator != Operator.EXISTS and condition.biomarker not in biomarker_ids:
            violations.append(ConsistencyViolation(
                message=f'{kind} "{item.id}" references unknown biomarker: "{condition.biomarker}"',
                context=f"{kind}: {item.name}",
            ))


def check_condition_biomarkers(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Non-`exists` conditions reference declared biomarkers."""
    biomarker_ids = {b.id for b in kb.biomarkers}
    for rule in kb.rules:
        _check_condition_biomarkers("Rule", rule, biomarker_ids, violations)
    for alert in kb.red_flags:
        _check_condition_biomarkers("Critical alert", alert, biomarker_ids, violations)


def check_action_references(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Action refs ("id" or "id:param") resolve to declared actions."""
    action_ids = {a.id for a in kb.actions}
    items = [("Rule", r) for r in kb.rules] + [("Critical alert", a) for a in kb.red_flags]
    for kind, item in items:
        for action_ref in item.then.actions:
            action_id = action_ref.split(":")[0]
            if action_id not in action_ids:
                violations.append(ConsistencyViolation(
                    message=f'{kind} "{item.id}" references unknown action: "{action_id}"',
                    context=f"{kind}: {item.name}, action ref: {action_ref}",
                ))


def check_evidence_references(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Evidence entries point at a declared rule or alert."""
    known_ids = {r.id for r in kb.rules} | {a.id for a in kb.red_flags}
    for entry in kb.evidence:
        if entry.rule_id not in known_ids:
            violations.append(ConsistencyViolation(
                message=f'Evidence references unknown rule/alert: "{entry.rule_id}"',
                context=f"Evidence for: {entry.rule_id}",
            ))


def check_calculated_biomarkers(kb: KnowledgeBase, violations: List[ConsistencyViolation]) -> None:
    """Calculated biomarkers only depend on declared biomarkers."""
    biomarker_ids = {b.id for b in kb.biomarkers}
    for biomarker in kb.biomarkers:
        if not biomarker.calculated or not biomarker.depends_on:
            continue
        for dependency in biomarker.depends_on:
            if dependency not in biomarker_ids:
                violations.append(ConsistencyViolation(
                    message=f'Calculated biomarker "{biomarker.id}" depends on unknown biomarker: "{dependency}"',
                    context=f"Biomarker: {biomarker.name}, method: {biomarker.calculation_method or 'N/A'}",
                ))


CHECKS = (
    check_unique_ids,
    check_reference_ranges,
    check_condition_biomarkers,
    check_action_references,
    check_evidence_references,
    check_calculated_biomarkers,
)


def collect_violations(kb: KnowledgeBase) -> List[ConsistencyViolation]:
    """Run every check and return all violations found."""
    violations: List[ConsistencyViolation] = []
    for check in CHECKS:
        check(kb, violations)
    return violations


def validate_knowledge_base(kb: KnowledgeBase) -> None:
    """
    Validate knowledge base consistency.

    Raises:
        KnowledgeBaseConsistencyError listing every violation
    """
    violations = collect_violations(kb)
    if violations:
        for violation in violations:
            logger.error(f"VALIDATION_ERROR: {violation}")
        raise KnowledgeBaseConsistencyError(violations, version=kb.version)
    logger.info(f"VALIDATED: knowledge base v{kb.version} ({kb.stats()})")
