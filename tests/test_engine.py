"""
Protocol Engine - End-to-End Case Tests
=======================================
Runs cases through ranges, alerts, rules and prioritization against the
bundled knowledge base.
"""

import math

import pytest

from protocol_engine.engine import ProtocolEngine, get_engine, get_loader
from protocol_engine.hashing import verify_hash
from protocol_engine.loader import DEFAULT_KB_ROOT, KnowledgeBaseRegistry
from protocol_engine.models import CaseInput


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def reset_singleton():
    KnowledgeBaseRegistry.reset()
    yield
    KnowledgeBaseRegistry.reset()


@pytest.fixture
def engine():
    return get_engine(version="1.0.0", root=str(DEFAULT_KB_ROOT))


def make_case(*observations, sex="M", case_id="case_test"):
    return CaseInput(
        case_id=case_id,
        patient={"age": 58, "sex": sex},
        observations=list(observations),
    )


# ============================================================
# CRITICAL GLUCOSE
# ============================================================

class TestCriticalGlucose:

    @pytest.fixture
    def result(self, engine):
        return engine.run_case(make_case({"biomarker": "glucose", "value": 420, "unit": "mg/dL"}))

    def test_observation_critical(self, result):
        obs = result.observations_enriched[0]
        assert obs.range_label == "critical_high"
        assert obs.status.value == "critical"

    def test_single_red_flag(self, result):
        assert [a.id for a in result.red_flags] == ["redflag_glucose_critical"]

    def test_single_red_priority(self, result):
        priorities = result.report.priorities
        assert len(priorities) == 1
        assert priorities[0].severity.value == "red"

    def test_one_action_item_with_resolved_bullets(self, result):
        actions = result.report.actions
        assert len(actions) == 1
        assert actions[0].bullets == [
            "Seek urgent medical care",
            "Do not drive or do anything that needs full concentration",
            "Stay hydrated with water",
            "Contact your endocrinologist promptly",
        ]

    def test_trace_counts(self, result, engine):
        assert result.trace["alerts_fired"] == 1
        assert result.trace["rules_fired"] == 0
        assert result.trace["rules_evaluated"] == len(engine.kb.rules)
        assert result.trace["input_hash"].startswith("sha256:")


# ============================================================
# MIXED CASES
# ============================================================

class TestMixedCases:

    def test_report_ordered_by_severity(self, engine):
        result = engine.run_case(make_case(
            {"biomarker": "tsh", "value": 6.2},
            {"biomarker": "ldl_c", "value": 205},
            {"biomarker": "potassium", "value": 6.8},
            {"biomarker": "creatinine", "value": 1.0},
        ))
        ids = [item.id for item in result.report.priorities]
        assert ids == [
            "redflag_potassium_critical",
            "ldl_very_high",
            "potassium_high_with_renal",
            "tsh_high",
        ]
        assert [a.severity.value for a in result.report.actions] == ["red", "orange", "orange", "yellow"]

    def test_all_and_any_rule_fires_without_any(self, engine):
        result = engine.run_case(make_case(
            {"biomarker": "triglycerides", "value": 180},
            {"biomarker": "hdl_c", "value": 55},
        ))
        fired = {item.id: item for item in result.report.priorities}
        assert "atherogenic_dyslipidemia" in fired
        assert len(fired["atherogenic_dyslipidemia"].fired_because) == 3

    def test_disabled_rule_never_fires(self, engine):
        result = engine.run_case(make_case({"biomarker": "ldl_c", "value": 80}))
        assert "homocysteine_high" not in [item.id for item in result.report.priorities]

    def test_sex_specific_classification(self, engine):
        female = engine.run_case(make_case({"biomarker": "hemoglobin", "value": 12.5}, sex="F"))
        male = engine.run_case(make_case({"biomarker": "hemoglobin", "value": 12.5}, sex="male"))
        assert female.observations_enriched[0].range_label == "normal_female"
        assert male.observations_enriched[0].range_label == "low_male"
        assert female.patient["sex"] == "female"

    def test_unknown_biomarker_does_not_stop_case(self, engine):
        result = engine.run_case(make_case(
            {"biomarker": "xyz", "value": 1},
            {"biomarker": "glucose", "value": 90},
        ))
        assert [f.type.value for f in result.qa_flags] == ["unknown_biomarker"]
        assert result.observations_enriched[1].status.value == "normal"
        assert result.report.priorities == []

    def test_empty_case(self, engine):
        result = engine.run_case(make_case())
        assert result.report.priorities == []
        assert result.observations_enriched == []

    def test_infinite_value_is_unmatched_and_fires_nothing(self, engine):
        result = engine.run_case(make_case({"biomarker": "glucose", "value": math.inf}))
        obs = result.observations_enriched[0]
        assert obs.range_label == "unknown"
        assert obs.ref_text == "No match found"
        assert result.red_flags == []
        assert result.report.priorities == []

    def test_engine_methods_share_run_case_evaluation(self, engine):
        case = make_case(
            {"biomarker": "glucose", "value": 420},
            {"biomarker": "ldl_c", "value": 205},
        )
        observations, _ = engine.apply_ranges(case)
        assert [a.id for a in engine.evaluate_alerts(observations)] == ["redflag_glucose_critical"]
        assert [r.id for r in engine.evaluate_rules(observations)] == ["ldl_very_high"]
        result = engine.run_case(case)
        assert [i.id for i in result.report.priorities] == ["redflag_glucose_critical", "ldl_very_high"]


# ============================================================
# OUTPUT & DETERMINISM
# ============================================================

class TestOutput:

    def test_to_dict_shape(self, engine):
        data = engine.run_case(make_case({"biomarker": "glucose", "value": 420})).to_dict()
        assert set(data) == {
            "kb_version", "case_id", "patient", "observations_enriched", "qa_flags",
            "red_flags", "report", "disclaimers", "trace",
        }
        assert data["kb_version"] == "1.0.0"
        assert data["red_flags"][0]["alert_id"] == "redflag_glucose_critical"

    def test_disclaimers_high_priority_first(self, engine):
        result = engine.run_case(make_case())
        assert [d["key"] for d in result.disclaimers] == [
            "not_a_diagnosis", "emergency", "consult_physician", "data_quality",
        ]

    def test_hashes_deterministic(self, engine):
        case = make_case({"biomarker": "glucose", "value": 420}, {"biomarker": "ldl_c", "value": 170})
        first = engine.run_case(case)
        second = engine.run_case(case)
        assert first.trace["input_hash"] == second.trace["input_hash"]
        assert first.trace["output_hash"] == second.trace["output_hash"]

    def test_output_hash_verifies(self, engine):
        result = engine.run_case(make_case({"biomarker": "glucose", "value": 110}))
        assert verify_hash(result.to_dict(), result.trace["output_hash"])

    def test_different_input_different_hash(self, engine):
        first = engine.run_case(make_case({"biomarker": "glucose", "value": 110}))
        second = engine.run_case(make_case({"biomarker": "glucose", "value": 111}))
        assert first.trace["input_hash"] != second.trace["input_hash"]

    def test_kb_not_mutated(self, engine):
        before = engine.kb.model_dump()
        engine.run_case(make_case({"biomarker": "glucose", "value": 420}))
        assert engine.kb.model_dump() == before


class TestAccessors:

    def test_engines_share_registry_kb(self):
        first = get_engine(root=str(DEFAULT_KB_ROOT))
        second = get_engine(root=str(DEFAULT_KB_ROOT))
        assert isinstance(first, ProtocolEngine)
        assert first.kb is second.kb
        assert get_loader() is get_loader()
