"""
Protocol Engine - Canonical Hashing
Deterministic digests of case inputs and case results, so a result can be
reproduced against the same knowledge base version.
"""

import hashlib
import json
from enum import Enum
from typing import Any, Dict

HASH_PREFIX = "sha256:"

# Keys that differ between otherwise identical runs
VOLATILE_FIELDS = frozenset([
    "timestamp",
    "evaluated_at",
    "input_hash",
    "output_hash",
])

FLOAT_DIGITS = 10


def _normalize(value: Any, exclude_volatile: bool) -> Any:
    if isinstance(value, dict):
        return {
            str(key): _normalize(item, exclude_volatile)
            for key, item in value.items()
            if not (exclude_volatile and key in VOLATILE_FIELDS)
        }
    if isinstance(value, (list, tuple)):
        return [_normalize(item, exclude_volatile) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return round(value, FLOAT_DIGITS)
    return value


def canonicalize(obj: Any, exclude_volatile: bool = True) -> str:
    """
    Render obj as compact JSON with sorted keys.

    Floats are rounded to FLOAT_DIGITS so accumulated float noise does not
    change the digest.
    """
    return json.dumps(
        _normalize(obj, exclude_volatile),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def canonicalize_and_hash(obj: Any, exclude_volatile: bool = True) -> str:
    """Returns "sha256:<64-char-hex>"."""
    digest = hashlib.sha256(canonicalize(obj, exclude_volatile).encode("utf-8")).hexdigest()
    return HASH_PREFIX + digest


def hash_case_input(kb_version: str, case: Dict[str, Any]) -> str:
    """Digest of a case payload bound to the knowledge base version evaluating it."""
    return canonicalize_and_hash({"kb_version": kb_version, "case": case})


def verify_hash(obj: Any, expected_hash: str, exclude_volatile: bool = True) -> bool:
    return canonicalize_and_hash(obj, exclude_volatile) == expected_hash
