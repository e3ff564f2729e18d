"""
Protocol Engine - Range Text Parser
===================================
Turns reference-range text into numeric predicates.

Supported shapes (whitespace-tolerant):
    "< 100"     upper bound, exclusive
    "<= 100"    upper bound, inclusive
    "> 1.8"     lower bound, exclusive
    ">= 190"    lower bound, inclusive
    "100-129"   both bounds inclusive; reversed bounds are swapped

Anything else yields None. Callers treat None as "no match", never as an error.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RangeKind(str, Enum):
    LESS_THAN = "less_than"
    LESS_EQUAL = "less_equal"
    GREATER_THAN = "greater_than"
    GREATER_EQUAL = "greater_equal"
    BETWEEN = "between"


_NUMBER = r"(\d+(?:\.\d*)?|\.\d+)"
_BOUND_PATTERN = re.compile(r"^(<=|>=|<|>)\s*" + _NUMBER + r"$")
_BETWEEN_PATTERN = re.compile(r"^" + _NUMBER + r"\s*-\s*" + _NUMBER + r"$")


@dataclass(frozen=True)
class ParsedRange:
    """Numeric predicate parsed from range text."""
    kind: RangeKind
    min: Optional[float] = None
    max: Optional[float] = None
    min_inclusive: bool = False
    max_inclusive: bool = False

    def matches(self, value: float) -> bool:
        """Check whether a value satisfies this predicate."""
        if value is None or isinstance(value, bool) or not math.isfinite(value):
            return False
        if self.min is not None:
            if self.min_inclusive:
                if value < self.min:
                    return False
            elif value <= self.min:
                return False
        if self.max is not None:
            if self.max_inclusive:
                if value > self.max:
                    return False
            elif value >= self.max:
                return False
        return True


def parse_range(range_text: str) -> Optional[ParsedRange]:
    """
    Parse a range expression such as "< 100", "100-129" or ">= 190".

    Returns:
        ParsedRange, or None if the text is not one of the supported shapes.
    """
    if not isinstance(range_text, str):
        return None
    trimmed = range_text.strip()

    match = _BOUND_PATTERN.match(trimmed)
    if match:
        op, number = match.group(1), float(match.group(2))
        if op == "<":
            return ParsedRange(kind=RangeKind.LESS_THAN, max=number, max_inclusive=False)
        if op == "<=":
            return ParsedRange(kind=RangeKind.LESS_EQUAL, max=number, max_inclusive=True)
        if op == ">":
            return ParsedRange(kind=RangeKind.GREATER_THAN, min=number, min_inclusive=False)
        return ParsedRange(kind=RangeKind.GREATER_EQUAL, min=number, min_inclusive=True)

    match = _BETWEEN_PATTERN.match(trimmed)
    if match:
        first, second = float(match.group(1)), float(match.group(2))
        return ParsedRange(
            kind=RangeKind.BETWEEN,
            min=min(first, second),
            max=max(first, second),
            min_inclusive=True,
            max_inclusive=True,
        )

    return None


def value_matches_range(value: float, parsed_range: ParsedRange) -> bool:
    """Check a value against a parsed range."""
    return parsed_range.matches(value)
