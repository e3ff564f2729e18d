"""
Protocol Engine - Knowledge Base Models
=======================================
Pydantic models for the clinical knowledge base and case input.

Structural validation lives here: a record that parses into these models is
structurally sound. Referential integrity across records is checked
separately by protocol_engine.validator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================
# ENUMS
# ============================================================

class Severity(str, Enum):
    """Clinical urgency tier, green < yellow < orange < red."""
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"


class Operator(str, Enum):
    """Condition operators."""
    EXISTS = "exists"
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    BETWEEN = "between"


class ObservationStatus(str, Enum):
    """Clinical status assigned to an enriched observation."""
    NORMAL = "normal"
    BORDERLINE = "borderline"
    ABNORMAL = "abnormal"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


COMPARISON_OPERATORS = frozenset([Operator.GT, Operator.GTE, Operator.LT, Operator.LTE])

# Statuses a range band may be explicitly tagged with
BAND_STATUSES = frozenset([
    ObservationStatus.NORMAL.value,
    ObservationStatus.BORDERLINE.value,
    ObservationStatus.ABNORMAL.value,
    ObservationStatus.CRITICAL.value,
])


# ============================================================
# MANIFEST & BIOMARKERS
# ============================================================

class Manifest(BaseModel):
    """Knowledge base version manifest."""
    version: str
    release_date: str
    status: str
    description: Optional[str] = None
    last_updated: Optional[str] = None
    maintainer: Optional[str] = None
    license: Optional[str] = None


class Biomarker(BaseModel):
    """A laboratory measurement declared in the biomarker dictionary."""
    id: str
    name: str
    unit: str
    category: str
    description: str = ""
    calculated: Optional[bool] = None
    depends_on: Optional[List[str]] = None
    calculation_method: Optional[str] = None
    formula: Optional[str] = None


# ============================================================
# REFERENCE RANGES
# ============================================================

@dataclass(frozen=True)
class RangeBand:
    """One labeled band of a reference range, in declaration order."""
    label: str
    text: str
    status: Optional[str] = None


class ReferenceRange(BaseModel):
    """
    Reference range record for one biomarker.

    Every field other than `biomarker` is a labeled band. A band is either
    plain range text:

        "optimal": "< 100"

    or a tagged object carrying an explicit status:

        "optimal": {"range": "< 100", "status": "normal"}
    """
    biomarker: str

    class Config:
        extra = "allow"

    @model_validator(mode="after")
    def check_bands(self):
        for label, raw in (self.model_extra or {}).items():
            if isinstance(raw, str):
                continue
            if isinstance(raw, dict) and isinstance(raw.get("range"), str):
                status = raw.get("status")
                if status is not None and status not in BAND_STATUSES:
                    raise ValueError(
                        f"band '{label}' has unknown status '{status}' "
                        f"(expected one of {sorted(BAND_STATUSES)})"
                    )
                continue
            raise ValueError(f"band '{label}' must be range text or an object with a 'range' string")
        return self

    def bands(self) -> List[RangeBand]:
        """Return the labeled bands in declaration order."""
        result = []
        for label, raw in (self.model_extra or {}).items():
            if isinstance(raw, str):
                result.append(RangeBand(label=label, text=raw))
            else:
                result.append(RangeBand(label=label, text=raw["range"], status=raw.get("status")))
        return result


# ============================================================
# CONDITIONS, RULES & ALERTS
# ============================================================

class Condition(BaseModel):
    """Atomic predicate over one biomarker's value."""
    biomarker: str
    operator: Operator
    value: Optional[float] = None
    value1: Optional[float] = None
    value2: Optional[float] = None

    @model_validator(mode="after")
    def check_operands(self):
        if self.operator in COMPARISON_OPERATORS and self.value is None:
            raise ValueError(f"operator '{self.operator.value}' on '{self.biomarker}' requires 'value'")
        if self.operator == Operator.BETWEEN and (self.value1 is None or self.value2 is None):
            raise ValueError(f"operator 'between' on '{self.biomarker}' requires 'value1' and 'value2'")
        return self

    def describe(self) -> str:
        """Short operator/operand text, e.g. '>= 400' or 'between 160 and 189'."""
        if self.operator == Operator.EXISTS:
            return "exists"
        if self.operator == Operator.BETWEEN:
            low, high = sorted([self.value1, self.value2])
            return f"between {format_number(low)} and {format_number(high)}"
        return f"{self.operator.value} {format_number(self.value)}"


class When(BaseModel):
    """Trigger clause: an optional ALL list and an optional ANY list."""
    all: Optional[List[Condition]] = None
    any: Optional[List[Condition]] = None

    def conditions(self) -> List[Condition]:
        return [*(self.all or []), *(self.any or [])]


class RuleOutcome(BaseModel):
    """The `then` payload of a protocol rule."""
    severity: Severity
    headline: str
    why: Optional[str] = None
    actions: List[str] = Field(default_factory=list)
    doctor_questions: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class AlertOutcome(RuleOutcome):
    """The `then` payload of a critical alert; severity is fixed to red."""
    severity: Literal["red"] = "red"


class Rule(BaseModel):
    """Protocol rule."""
    id: str
    name: str
    enabled: bool
    when: When
    then: RuleOutcome


class CriticalAlert(BaseModel):
    """Critical alert (red flag)."""
    id: str
    name: str
    enabled: bool
    when: When
    then: AlertOutcome


# ============================================================
# ACTIONS, EVIDENCE & DISCLAIMERS
# ============================================================

class Action(BaseModel):
    """Recommendation library entry referenced by rules and alerts."""
    id: str
    text: str
    priority: Optional[str] = None
    category: Optional[str] = None


class EvidenceSource(BaseModel):
    type: str
    citation: str
    year: Optional[int] = None


class EvidenceEntry(BaseModel):
    """Evidence backing one rule or alert."""
    rule_id: str
    sources: List[EvidenceSource]


class Disclaimer(BaseModel):
    text: str
    priority: str


class LanguageGuidelines(BaseModel):
    must_use: Optional[List[str]] = None
    must_not_use: Optional[List[str]] = None
    tone: Optional[List[str]] = None


class DisclaimerTexts(BaseModel):
    disclaimers: Dict[str, Disclaimer] = Field(default_factory=dict)
    language_guidelines: Optional[LanguageGuidelines] = None


# ============================================================
# KNOWLEDGE BASE
# ============================================================

class KnowledgeBase(BaseModel):
    """A complete, structurally valid knowledge base version."""
    manifest: Manifest
    biomarkers: List[Biomarker] = Field(default_factory=list)
    reference_ranges: List[ReferenceRange] = Field(default_factory=list)
    red_flags: List[CriticalAlert] = Field(default_factory=list)
    rules: List[Rule] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    evidence: List[EvidenceEntry] = Field(default_factory=list)
    disclaimer_texts: DisclaimerTexts = Field(default_factory=DisclaimerTexts)

    @property
    def version(self) -> str:
        return self.manifest.version

    def biomarker_map(self) -> Dict[str, Biomarker]:
        """Biomarker id -> Biomarker (first declaration wins)."""
        result: Dict[str, Biomarker] = {}
        for b in self.biomarkers:
            result.setdefault(b.id, b)
        return result

    def range_map(self) -> Dict[str, ReferenceRange]:
        """Biomarker id -> ReferenceRange (first declaration wins)."""
        result: Dict[str, ReferenceRange] = {}
        for r in self.reference_ranges:
            result.setdefault(r.biomarker, r)
        return result

    def action_map(self) -> Dict[str, Action]:
        """Action id -> Action (first declaration wins)."""
        result: Dict[str, Action] = {}
        for a in self.actions:
            result.setdefault(a.id, a)
        return result

    def stats(self) -> Dict[str, int]:
        return {
            "biomarkers": len(self.biomarkers),
            "reference_ranges": len(self.reference_ranges),
            "red_flags": len(self.red_flags),
            "rules": len(self.rules),
            "actions": len(self.actions),
            "evidence": len(self.evidence),
        }


# ============================================================
# CASE INPUT
# ============================================================

class PatientInfo(BaseModel):
    age: float
    sex: Literal["male", "female", "M", "F"]


class ObservationInput(BaseModel):
    """A single laboratory observation as supplied by the caller."""
    biomarker: str
    value: float
    unit: Optional[str] = None


class CaseInput(BaseModel):
    """One patient case to evaluate."""
    case_id: str
    patient: PatientInfo
    observations: List[ObservationInput] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "case_id": "case_001",
                "patient": {"age": 52, "sex": "F"},
                "observations": [
                    {"biomarker": "glucose", "value": 118, "unit": "mg/dL"},
                    {"biomarker": "ldl_c", "value": 172, "unit": "mg/dL"}
                ]
            }
        }


# ============================================================
# HELPERS
# ============================================================

def format_number(value: Any) -> str:
    """Render a number without a trailing '.0' for integral floats."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
