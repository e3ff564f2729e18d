"""
Protocol Engine - Condition Evaluator
=====================================
Evaluates one atomic predicate against a biomarker value lookup.

A value is absent when it is missing, None, non-numeric, NaN or infinite.
Absence is an ordinary false outcome with an explanation, never an error.
"""

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from protocol_engine.models import Condition, Operator, format_number

_COMPARISONS = {
    Operator.GT: (lambda v, t: v > t, "greater than"),
    Operator.GTE: (lambda v, t: v >= t, "greater than or equal to"),
    Operator.LT: (lambda v, t: v < t, "less than"),
    Operator.LTE: (lambda v, t: v <= t, "less than or equal to"),
}


@dataclass(frozen=True)
class ConditionResult:
    """Boolean outcome plus a human-readable justification."""
    ok: bool
    reason: str


def numeric_value(raw: Any) -> Optional[float]:
    """Return raw as a finite number, or None if it counts as absent."""
    if raw is None or isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if not math.isfinite(raw):
        return None
    return raw


def build_value_lookup(observations: Iterable[Any]) -> Mapping[str, Any]:
    """
    Build a read-only biomarker -> value lookup for one case.

    Accepts objects with `biomarker`/`value` attributes or dicts with those
    keys. The first observation of a biomarker wins.
    """
    values = {}
    for obs in observations:
        if isinstance(obs, Mapping):
            biomarker, value = obs.get("biomarker"), obs.get("value")
        else:
            biomarker, value = obs.biomarker, obs.value
        if biomarker not in values:
            values[biomarker] = value
    return MappingProxyType(values)


def evaluate_condition(condition: Condition, values: Mapping[str, Any]) -> ConditionResult:
    """Evaluate a single condition. Pure; never raises for absent values."""
    biomarker = condition.biomarker
    value = numeric_value(values.get(biomarker))

    if condition.operator == Operator.EXISTS:
        if value is None:
            return ConditionResult(False, f"{biomarker} is not present")
        return ConditionResult(True, f"{biomarker} is present (value: {format_number(value)})")

    if value is None:
        return ConditionResult(False, f"{biomarker} is not present in the observations")

    shown = format_number(value)

    if condition.operator == Operator.BETWEEN:
        if condition.value1 is None or condition.value2 is None:
            return ConditionResult(False, f"'between' on {biomarker} requires value1 and value2")
        low = min(condition.value1, condition.value2)
        high = max(condition.value1, condition.value2)
        ok = low <= value <= high
        return ConditionResult(
            ok,
            f"{biomarker} ({shown}) {'is' if ok else 'is NOT'} between "
            f"{format_number(low)} and {format_number(high)}",
        )

    if condition.value is None:
        return ConditionResult(False, f"operator {condition.operator.value} on {biomarker} requires a threshold")

    compare, wording = _COMPARISONS[condition.operator]
    ok = compare(value, condition.value)
    return ConditionResult(
        ok,
        f"{biomarker} ({shown}) {'is' if ok else 'is NOT'} {wording} {format_number(condition.value)}",
    )
