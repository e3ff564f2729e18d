"""
Protocol Engine - Knowledge Base Loader
=======================================
Loads a versioned knowledge base from JSON files on disk.

Layout:
    <root>/latest.json                      {"active_version": "1.0.0"}
    <root>/versions/<version>/01_kb_manifest.json
                              02_biomarker_dictionary.json
                              03_reference_ranges.json
                              04_critical_alerts.json
                              05_protocol_rules.json
                              06_recommendation_library.json
                              07_evidence_library.json
                              08_disclaimer_texts.json

Every file is parsed into pydantic models (structural validation), then the
assembled knowledge base goes through the consistency validator. Nothing of a
version that fails either step is used.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field, ValidationError

from protocol_engine.errors import KnowledgeBaseLoadError
from protocol_engine.models import (
    Action,
    Biomarker,
    CriticalAlert,
    DisclaimerTexts,
    EvidenceEntry,
    KnowledgeBase,
    Manifest,
    ReferenceRange,
    Rule,
)
from protocol_engine.validator import validate_knowledge_base

logger = logging.getLogger(__name__)

DEFAULT_KB_ROOT = Path(__file__).parent / "data" / "clinical_kb"
KB_ROOT = os.getenv("PROTOCOL_KB_ROOT", str(DEFAULT_KB_ROOT))
KB_VERSION = os.getenv("PROTOCOL_KB_VERSION")  # pins a version instead of latest.json


# ============================================================
# FILE SCHEMAS
# ============================================================

class BiomarkerDictionary(BaseModel):
    biomarkers: List[Biomarker]


class ReferenceRanges(BaseModel):
    reference_ranges: List[ReferenceRange]


class CriticalAlerts(BaseModel):
    red_flags: List[CriticalAlert]


class ProtocolRules(BaseModel):
    rules: List[Rule]


class RecommendationLibrary(BaseModel):
    actions: List[Action]


class EvidenceLibrary(BaseModel):
    evidence: List[EvidenceEntry] = Field(default_factory=list)


class Latest(BaseModel):
    active_version: Optional[str] = None
    version: Optional[str] = None  # legacy format

    def resolved(self) -> Optional[str]:
        return self.active_version or self.version


KB_FILES: Dict[str, Tuple[str, str, Type[BaseModel]]] = {
    "manifest": ("01_kb_manifest.json", "Manifest", Manifest),
    "biomarkers": ("02_biomarker_dictionary.json", "Biomarker Dictionary", BiomarkerDictionary),
    "reference_ranges": ("03_reference_ranges.json", "Reference Ranges", ReferenceRanges),
    "red_flags": ("04_critical_alerts.json", "Critical Alerts", CriticalAlerts),
    "rules": ("05_protocol_rules.json", "Protocol Rules", ProtocolRules),
    "actions": ("06_recommendation_library.json", "Recommendation Library", RecommendationLibrary),
    "evidence": ("07_evidence_library.json", "Evidence Library", EvidenceLibrary),
    "disclaimer_texts": ("08_disclaimer_texts.json", "Disclaimer Texts", DisclaimerTexts),
}


def _load_json_file(path: Path, display_name: str, schema: Type[BaseModel]) -> BaseModel:
    """Read one JSON file and parse it into its schema."""
    if not path.exists():
        raise KnowledgeBaseLoadError(f"{display_name} file not found: {path}", path=str(path))
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise KnowledgeBaseLoadError(f"Could not parse {display_name}: {e}", path=str(path)) from e

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        issues = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            issues.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
        raise KnowledgeBaseLoadError(
            f"Schema validation failed for {display_name}:\n" + "\n".join(f"  - {i}" for i in issues),
            path=str(path),
            issues=issues,
        ) from e


def load_latest(root: Optional[str] = None) -> str:
    """Return the active knowledge base version named by latest.json."""
    path = Path(root or KB_ROOT) / "latest.json"
    latest = _load_json_file(path, "latest.json", Latest)
    version = latest.resolved()
    if not version:
        raise KnowledgeBaseLoadError("latest.json names no active version", path=str(path))
    return version


def load_knowledge_base(version: str, root: Optional[str] = None, lint: bool = True) -> KnowledgeBase:
    """
    Load every file of a knowledge base version.

    Args:
        version: directory name under <root>/versions
        root: knowledge base root (defaults to PROTOCOL_KB_ROOT)
        lint: run the consistency validator

    Raises:
        KnowledgeBaseLoadError: missing file, bad JSON or schema violation
        KnowledgeBaseConsistencyError: referential-integrity violations
    """
    version_dir = Path(root or KB_ROOT) / "versions" / version
    if not version_dir.is_dir():
        raise KnowledgeBaseLoadError(
            f"Knowledge base version '{version}' not found: {version_dir}",
            path=str(version_dir),
            version=version,
        )

    parsed = {
        key: _load_json_file(version_dir / filename, display_name, schema)
        for key, (filename, display_name, schema) in KB_FILES.items()
    }

    kb = KnowledgeBase(
        manifest=parsed["manifest"],
        biomarkers=parsed["biomarkers"].biomarkers,
        reference_ranges=parsed["reference_ranges"].reference_ranges,
        red_flags=parsed["red_flags"].red_flags,
        rules=parsed["rules"].rules,
        actions=parsed["actions"].actions,
        evidence=parsed["evidence"].evidence,
        disclaimer_texts=parsed["disclaimer_texts"],
    )
    logger.info(f"LOADED: knowledge base v{kb.version} from {version_dir} ({kb.stats()})")

    if lint:
        validate_knowledge_base(kb)
    return kb


def load_active_kb(root: Optional[str] = None, lint: bool = True) -> KnowledgeBase:
    """Load the version named by latest.json."""
    return load_knowledge_base(load_latest(root), root=root, lint=lint)


# ============================================================
# REGISTRY (SINGLETON CACHE)
# ============================================================

class KnowledgeBaseRegistry:
    """
    Singleton cache of validated knowledge bases keyed by (root, version).

    A cached knowledge base is read-only and shared by every case evaluation.
    """
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._cache = {}
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton for testing purposes."""
        cls._instance = None

    def get(self, version: Optional[str] = None, root: Optional[str] = None) -> KnowledgeBase:
        """Return a validated knowledge base, loading it on first use."""
        root = root or KB_ROOT
        version = version or KB_VERSION or load_latest(root)
        key = (str(root), version)
        with self._lock:
            kb = self._cache.get(key)
            if kb is None:
                kb = load_knowledge_base(version, root=root, lint=True)
                self._cache[key] = kb
        return kb

    @property
    def loaded_versions(self) -> List[Tuple[str, str]]:
        return sorted(self._cache.keys())


def get_registry() -> KnowledgeBaseRegistry:
    """Get the singleton knowledge base registry."""
    return KnowledgeBaseRegistry()
