"""
Protocol Engine - Consistency Validator Tests
=============================================
Each referential-integrity check, accumulation of violations and the
aggregate error raised for an inconsistent knowledge base.
"""

import pytest

from protocol_engine.errors import KnowledgeBaseConsistencyError
from protocol_engine.models import KnowledgeBase
from protocol_engine.validator import (
    ConsistencyViolation,
    check_action_references,
    check_calculated_biomarkers,
    check_condition_biomarkers,
    check_evidence_references,
    check_reference_ranges,
    check_unique_ids,
    collect_violations,
    validate_knowledge_base,
)


def biomarker(bid, **extra):
    return {"id": bid, "name": bid.upper(), "unit": "mg/dL", "category": "test", **extra}


def rule(rid, conditions, actions=("see_physician",)):
    return {
        "id": rid,
        "name": f"Rule {rid}",
        "enabled": True,
        "when": {"all": conditions},
        "then": {"severity": "yellow", "headline": rid, "actions": list(actions)},
    }


def alert(aid, conditions, actions=("see_physician",)):
    return {
        "id": aid,
        "name": f"Alert {aid}",
        "enabled": True,
        "when": {"any": conditions},
        "then": {"headline": aid, "actions": list(actions)},
    }


def make_kb(**overrides):
    data = {
        "manifest": {"version": "9.9.9", "release_date": "2026-01-01", "status": "draft"},
        "biomarkers": [biomarker("glucose"), biomarker("ldl_c")],
        "reference_ranges": [{"biomarker": "glucose", "normal": "70-99"}],
        "red_flags": [alert("redflag_glucose", [{"biomarker": "glucose", "operator": ">=", "value": 400}])],
        "rules": [rule("ldl_high", [{"biomarker": "ldl_c", "operator": ">=", "value": 160}])],
        "actions": [{"id": "see_physician", "text": "See your physician"}],
        "evidence": [{"rule_id": "ldl_high", "sources": [{"type": "guideline", "citation": "Lipid guideline"}]}],
    }
    data.update(overrides)
    return KnowledgeBase.model_validate(data)


def run(check, kb):
    violations = []
    check(kb, violations)
    return violations


# ============================================================
# CONSISTENT KNOWLEDGE BASE
# ============================================================

class TestConsistent:

    def test_no_violations(self):
        assert collect_violations(make_kb()) == []

    def test_validate_passes(self):
        validate_knowledge_base(make_kb())


# ============================================================
# INDIVIDUAL CHECKS
# ============================================================

class TestUniqueIds:

    def test_duplicate_biomarker(self):
        kb = make_kb(biomarkers=[biomarker("glucose"), biomarker("ldl_c"), biomarker("glucose")])
        violations = run(check_unique_ids, kb)
        assert [v.message for v in violations] == ['Duplicate id in biomarkers: "glucose"']

    def test_duplicate_action(self):
        kb = make_kb(actions=[{"id": "see_physician", "text": "a"}, {"id": "see_physician", "text": "b"}])
        violations = run(check_unique_ids, kb)
        assert violations[0].message == 'Duplicate id in actions: "see_physician"'
        assert violations[0].context == "Action: b"

    def test_duplicate_rule(self):
        condition = [{"biomarker": "ldl_c", "operator": ">=", "value": 160}]
        kb = make_kb(rules=[rule("ldl_high", condition), rule("ldl_high", condition)])
        assert len(run(check_unique_ids, kb)) == 1

    def test_rule_and_alert_share_id(self):
        kb = make_kb(rules=[rule("redflag_glucose", [{"biomarker": "glucose", "operator": ">", "value": 1}])])
        violations = run(check_unique_ids, kb)
        assert 'used by both a rule and a critical alert' in violations[0].message


class TestReferenceRanges:

    def test_unknown_biomarker(self):
        kb = make_kb(reference_ranges=[{"biomarker": "albumin", "normal": "3.5-5"}])
        violations = run(check_reference_ranges, kb)
        assert violations[0].message == 'Reference range references unknown biomarker: "albumin"'

    def test_duplicate_range(self):
        kb = make_kb(reference_ranges=[
            {"biomarker": "glucose", "normal": "70-99"},
            {"biomarker": "glucose", "high": "> 99"},
        ])
        violations = run(check_reference_ranges, kb)
        assert violations[0].message == 'Duplicate reference range for biomarker: "glucose"'


class TestConditionBiomarkers:

    def test_single_unknown_biomarker(self):
        kb = make_kb(
            rules=[rule("r1", [{"biomarker": "xyz", "operator": ">", "value": 1}])],
            evidence=[],
        )
        violations = collect_violations(kb)
        assert len(violations) == 1
        assert violations[0].message == 'Rule "r1" references unknown biomarker: "xyz"'
        assert "r1" in str(violations[0])

    def test_exists_conditions_not_checked(self):
        kb = make_kb(rules=[rule("r1", [{"biomarker": "xyz", "operator": "exists"}])])
        assert run(check_condition_biomarkers, kb) == []

    def test_alert_any_conditions_checked(self):
        kb = make_kb(red_flags=[alert("a1", [
            {"biomarker": "glucose", "operator": ">=", "value": 400},
            {"biomarker": "sodium", "operator": "<", "value": 120},
        ])])
        violations = run(check_condition_biomarkers, kb)
        assert violations[0].message == 'Critical alert "a1" references unknown biomarker: "sodium"'


class TestActionReferences:

    def test_parameterized_ref_resolves_by_prefix(self):
        kb = make_kb(rules=[rule("r1", [{"biomarker": "ldl_c", "operator": ">", "value": 1}],
                                 actions=["see_physician:cardiology"])])
        assert run(check_action_references, kb) == []

    def test_unknown_action(self):
        kb = make_kb(rules=[rule("r1", [{"biomarker": "ldl_c", "operator": ">", "value": 1}],
                                 actions=["call_someone:now"])])
        violations = run(check_action_references, kb)
        assert violations[0].message == 'Rule "r1" references unknown action: "call_someone"'
        assert "call_someone:now" in violations[0].context


class TestEvidenceReferences:

    def test_evidence_may_target_alert(self):
        kb = make_kb(evidence=[{"rule_id": "redflag_glucose", "sources": []}])
        assert run(check_evidence_references, kb) == []

    def test_unknown_target(self):
        kb = make_kb(evidence=[{"rule_id": "gone", "sources": []}])
        violations = run(check_evidence_references, kb)
        assert violations[0].message == 'Evidence references unknown rule/alert: "gone"'


class TestCalculatedBiomarkers:

    def test_known_dependencies(self):
        kb = make_kb(biomarkers=[
            biomarker("glucose"), biomarker("ldl_c"),
            biomarker("ratio", calculated=True, depends_on=["glucose", "ldl_c"]),
        ])
        assert run(check_calculated_biomarkers, kb) == []

    def test_unknown_dependency(self):
        kb = make_kb(biomarkers=[
            biomarker("glucose"), biomarker("ldl_c"),
            biomarker("non_hdl_c", calculated=True, depends_on=["total_cholesterol", "hdl_c"],
                      calculation_method="subtraction"),
        ])
        violations = run(check_calculated_biomarkers, kb)
        assert len(violations) == 2
        assert "subtraction" in violations[0].context


# ============================================================
# AGGREGATION
# ============================================================

class TestAggregation:

    def test_all_violations_collected(self):
        kb = make_kb(
            reference_ranges=[{"biomarker": "albumin", "normal": "3.5-5"}],
            rules=[rule("r1", [{"biomarker": "xyz", "operator": ">", "value": 1}], actions=["nope"])],
            evidence=[{"rule_id": "gone", "sources": []}],
        )
        assert len(collect_violations(kb)) == 4

    def test_validate_raises_with_every_violation(self):
        kb = make_kb(
            reference_ranges=[{"biomarker": "albumin", "normal": "3.5-5"}],
            evidence=[{"rule_id": "gone", "sources": []}],
        )
        with pytest.raises(KnowledgeBaseConsistencyError) as exc_info:
            validate_knowledge_base(kb)
        error = exc_info.value
        assert len(error.violations) == 2
        assert error.version == "9.9.9"
        assert error.message.startswith("2 consistency violation(s) found:")
        assert '  - Evidence references unknown rule/alert: "gone"' in error.message

    def test_error_to_dict(self):
        error = KnowledgeBaseConsistencyError([ConsistencyViolation("bad", "ctx")], version="1")
        data = error.to_dict()
        assert data["error"] == "KnowledgeBaseConsistencyError"
        assert data["violations"] == [{"message": "bad", "context": "ctx"}]

    def test_violation_str(self):
        assert str(ConsistencyViolation("bad")) == "bad"
        assert str(ConsistencyViolation("bad", "ctx")) == "bad (context: ctx)"
