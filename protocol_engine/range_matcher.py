"""
Protocol Engine - Range Matcher / Status Classifier
===================================================
Classifies observed biomarker values into a labeled reference-range band
and assigns a clinical status.

Band selection for one value:
- bands whose text does not parse, or whose predicate the value fails, are skipped
- a band for the patient's sex (label containing "_male"/"_female") has priority 2
- a band for the other sex is excluded
- a sex-agnostic band has priority 1
- highest priority wins; ties go to the earliest declared band
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from protocol_engine.models import (
    CaseInput,
    KnowledgeBase,
    ObservationInput,
    ObservationStatus,
    ReferenceRange,
)
from protocol_engine.range_parser import parse_range

logger = logging.getLogger(__name__)

MALE = "male"
FEMALE = "female"

UNMATCHED_LABEL = "unknown"
UNMATCHED_TEXT = "No match found"

# Keyword table for untagged bands; checked normal -> borderline -> critical
NORMAL_SUBSTRINGS = ("normal", "optimal", "sufficient")
NORMAL_LABELS = frozenset(["desirable", "low_risk"])
BORDERLINE_SUBSTRINGS = ("borderline", "near_optimal")
BORDERLINE_LABELS = frozenset(["moderate_risk", "mildly_reduced", "prediabetes", "insufficient"])
CRITICAL_SUBSTRINGS = ("critical",)
CRITICAL_LABELS = frozenset(["very_high", "kidney_failure", "severely_reduced"])


class QAFlagType(str, Enum):
    UNKNOWN_BIOMARKER = "unknown_biomarker"
    UNIT_MISMATCH = "unit_mismatch"
    MISSING_RANGE = "missing_range"


class QASeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ============================================================
# DATA CLASSES
# ============================================================

@dataclass(frozen=True)
class RangeMatch:
    """Outcome of matching one value against a reference range."""
    label: str
    range_text: str
    status: ObservationStatus
    matched: bool


@dataclass(frozen=True)
class EnrichedObservation:
    """Observation plus resolved status, matched band and trace."""
    biomarker: str
    value: float
    unit: Optional[str]
    status: ObservationStatus
    range_label: Optional[str]
    ref_text: Optional[str]
    range_applied: str
    label_found: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "biomarker": self.biomarker,
            "value": self.value,
            "unit": self.unit,
            "status": self.status.value,
            "range_label": self.range_label,
            "ref_text": self.ref_text,
            "trace": {
                "range_applied": self.range_applied,
                "label_found": self.label_found,
            },
        }


@dataclass
class QAFlag:
    """Non-fatal data-quality issue raised while processing a case."""
    type: QAFlagType
    message: str
    severity: QASeverity
    biomarker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "biomarker": self.biomarker,
            "severity": self.severity.value,
        }


# ============================================================
# SEX NORMALIZATION & STATUS CLASSIFICATION
# ============================================================

def normalize_sex(sex: Optional[str]) -> str:
    """
    Normalize patient sex to "male" or "female".

    Accepts male/female/M/F in any case. Anything else, including a missing
    value, resolves to "male".
    """
    normalized = sex.strip().lower() if isinstance(sex, str) else ""
    if normalized in ("m", MALE):
        return MALE
    if normalized in ("f", FEMALE):
        return FEMALE
    return MALE


def classify_status(label: str) -> ObservationStatus:
    """Derive a clinical status from a band label by keyword (case-sensitive)."""
    if any(word in label for word in NORMAL_SUBSTRINGS) or label in NORMAL_LABELS:
        return ObservationStatus.NORMAL
    if any(word in label for word in BORDERLINE_SUBSTRINGS) or label in BORDERLINE_LABELS:
        return ObservationStatus.BORDERLINE
    if any(word in label for word in CRITICAL_SUBSTRINGS) or label in CRITICAL_LABELS:
        return ObservationStatus.CRITICAL
    return ObservationStatus.ABNORMAL


def band_priority(label: str, sex: str) -> int:
    """2 for the patient's sex, -1 for the other sex, 1 for sex-agnostic bands."""
    if sex == MALE and "_male" in label:
        return 2
    if sex == FEMALE and "_female" in label:
        return 2
    if "_male" in label or "_female" in label:
        return -1
    return 1


# ============================================================
# MATCHING
# ============================================================

def find_matching_range(value: float, reference_range: ReferenceRange, sex: str) -> RangeMatch:
    """
    Find the best band for a value.

    Returns:
        RangeMatch; label "unknown" with status abnormal when nothing matches.
    """
    best = None
    best_priority = 0
    for band in reference_range.bands():
        parsed = parse_range(band.text)
        if parsed is None or not parsed.matches(value):
            continue
        priority = band_priority(band.label, sex)
        if priority < 0:
            continue
        if best is None or priority > best_priority:
            best, best_priority = band, priority

    if best is None:
        return RangeMatch(
            label=UNMATCHED_LABEL,
            range_text=UNMATCHED_TEXT,
            status=ObservationStatus.ABNORMAL,
            matched=False,
        )

    status = ObservationStatus(best.status) if best.status else classify_status(best.label)
    return RangeMatch(label=best.label, range_text=best.text, status=status, matched=True)


def _unknown_observation(observation: ObservationInput) -> EnrichedObservation:
    return EnrichedObservation(
        biomarker=observation.biomarker,
        value=observation.value,
        unit=observation.unit,
        status=ObservationStatus.UNKNOWN,
        range_label=None,
        ref_text=None,
        range_applied="N/A",
        label_found=None,
    )


def apply_reference_ranges(
    kb: KnowledgeBase,
    case: CaseInput
) -> Tuple[List[EnrichedObservation], List[QAFlag]]:
    """
    Apply reference ranges to every observation of a case.

    Data-quality problems become QA flags; processing always continues with
    the remaining observations.

    Returns:
        (observations_enriched, qa_flags), observations in input order
    """
    sex = normalize_sex(case.patient.sex)
    biomarkers = kb.biomarker_map()
    ranges = kb.range_map()

    enriched: List[EnrichedObservation] = []
    qa_flags: List[QAFlag] = []

    for observation in case.observations:
        biomarker_id = observation.biomarker

        biomarker = biomarkers.get(biomarker_id)
        if biomarker is None:
            logger.warning(f"QA_FLAG: unknown biomarker '{biomarker_id}' in case {case.case_id}")
            qa_flags.append(QAFlag(
                type=QAFlagType.UNKNOWN_BIOMARKER,
                message=f"Unknown biomarker: '{biomarker_id}'",
                biomarker=biomarker_id,
                severity=QASeverity.ERROR,
            ))
            enriched.append(_unknown_observation(observation))
            continue

        if observation.unit and observation.unit != biomarker.unit:
            logger.warning(
                f"QA_FLAG: unit mismatch for '{biomarker_id}': expected '{biomarker.unit}', got '{observation.unit}'"
            )
            qa_flags.append(QAFlag(
                type=QAFlagType.UNIT_MISMATCH,
                message=(
                    f"Unit mismatch for '{biomarker_id}': expected '{biomarker.unit}', "
                    f"received '{observation.unit}'"
                ),
                biomarker=biomarker_id,
                severity=QASeverity.WARNING,
            ))

        reference_range = ranges.get(biomarker_id)
        if reference_range is None:
            logger.warning(f"QA_FLAG: no reference range for '{biomarker_id}'")
            qa_flags.append(QAFlag(
                type=QAFlagType.MISSING_RANGE,
                message=f"No reference range found for biomarker: '{biomarker_id}'",
                biomarker=biomarker_id,
                severity=QASeverity.WARNING,
            ))
            enriched.append(_unknown_observation(observation))
            continue

        match = find_matching_range(observation.value, reference_range, sex)
        enriched.append(EnrichedObservation(
            biomarker=biomarker_id,
            value=observation.value,
            unit=observation.unit or biomarker.unit,
            status=match.status,
            range_label=match.label,
            ref_text=match.range_text,
            range_applied=match.range_text,
            label_found=match.label,
        ))

    return enriched, qa_flags
