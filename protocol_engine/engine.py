"""
Protocol Engine - Case Engine
=============================
Runs one patient case through the full pipeline:

    observations -> range matcher -> enriched observations
                 -> alert/rule evaluator -> fired items
                 -> severity prioritizer -> report

This module MUST NOT:
- Convert units
- Infer missing biomarkers
- Persist evaluation history
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from protocol_engine.conditions import build_value_lookup
from protocol_engine.disclaimer import render_disclaimers
from protocol_engine.hashing import canonicalize_and_hash, hash_case_input
from protocol_engine.loader import KnowledgeBaseRegistry, get_registry
from protocol_engine.models import CaseInput, KnowledgeBase
from protocol_engine.prioritizer import Report, build_report
from protocol_engine.range_matcher import (
    EnrichedObservation,
    QAFlag,
    apply_reference_ranges,
    normalize_sex,
)
from protocol_engine.rules import FiredAlert, FiredItem, FiredRule, evaluate_alerts, evaluate_rules

logger = logging.getLogger(__name__)


@dataclass
class CaseResult:
    """Complete result of evaluating one case."""
    kb_version: str
    case_id: str
    patient: Dict[str, Any]
    observations_enriched: List[EnrichedObservation]
    qa_flags: List[QAFlag]
    red_flags: List[FiredAlert]
    report: Report
    disclaimers: List[Dict[str, str]]
    trace: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kb_version": self.kb_version,
            "case_id": self.case_id,
            "patient": dict(self.patient),
            "observations_enriched": [o.to_dict() for o in self.observations_enriched],
            "qa_flags": [f.to_dict() for f in self.qa_flags],
            "red_flags": [a.to_dict() for a in self.red_flags],
            "report": self.report.to_dict(),
            "disclaimers": [dict(d) for d in self.disclaimers],
            "trace": dict(self.trace),
        }


class ProtocolEngine:
    """
    Evaluates cases against one validated knowledge base.

    The knowledge base is never mutated, so one engine may serve many cases
    concurrently.
    """

    def __init__(self, kb: KnowledgeBase):
        self.kb = kb
        self._action_library = kb.action_map()

    @property
    def kb_version(self) -> str:
        return self.kb.version

    def apply_ranges(self, case: CaseInput) -> Tuple[List[EnrichedObservation], List[QAFlag]]:
        """Classify each observation against its reference range."""
        return apply_reference_ranges(self.kb, case)

    def evaluate_alerts(self, observations: List[EnrichedObservation]) -> List[FiredAlert]:
        """Evaluate critical alerts in declared order."""
        return evaluate_alerts(self.kb.red_flags, build_value_lookup(observations))

    def evaluate_rules(self, observations: List[EnrichedObservation]) -> List[FiredRule]:
        """Evaluate protocol rules in declared order."""
        return evaluate_rules(self.kb.rules, build_value_lookup(observations))

    def run_case(self, case: CaseInput) -> CaseResult:
        """Run ranges, alerts, rules and prioritization for one case."""
        input_hash = hash_case_input(self.kb_version, case.model_dump(mode="json"))

        observations, qa_flags = self.apply_ranges(case)
        red_flags = self.evaluate_alerts(observations)
        fired_rules = self.evaluate_rules(observations)

        fired: List[FiredItem] = [*red_flags, *fired_rules]
        report = build_report(fired, self._action_library)

        result = CaseResult(
            kb_version=self.kb_version,
            case_id=case.case_id,
            patient={"age": case.patient.age, "sex": normalize_sex(case.patient.sex)},
            observations_enriched=observations,
            qa_flags=qa_flags,
            red_flags=red_flags,
            report=report,
            disclaimers=render_disclaimers(self.kb.disclaimer_texts),
        )
        result.trace = {
            "observations_processed": len(observations),
            "qa_flags": len(qa_flags),
            "alerts_evaluated": len(self.kb.red_flags),
            "alerts_fired": len(red_flags),
            "rules_evaluated": len(self.kb.rules),
            "rules_fired": len(fired_rules),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "input_hash": input_hash,
        }
        result.trace["output_hash"] = canonicalize_and_hash(result.to_dict())

        logger.info(
            f"CASE_EVALUATED: {case.case_id} kb=v{self.kb_version} "
            f"alerts={len(red_flags)} rules={len(fired_rules)} qa_flags={len(qa_flags)}"
        )
        return result


# ============================================================
# MODULE-LEVEL ACCESSORS
# ============================================================

def get_engine(version: Optional[str] = None, root: Optional[str] = None) -> ProtocolEngine:
    """Get a ProtocolEngine bound to a validated knowledge base version."""
    return ProtocolEngine(get_registry().get(version=version, root=root))


def get_loader() -> KnowledgeBaseRegistry:
    """Get the singleton knowledge base registry."""
    return get_registry()
