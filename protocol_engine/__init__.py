"""
Protocol Engine v1.0
====================
Classifies laboratory biomarker values against a versioned clinical
knowledge base and turns the result into a prioritized action report.

Usage:
    from protocol_engine import get_engine
    from protocol_engine.api import register_protocol_endpoints
"""

from protocol_engine.engine import (
    CaseResult,
    ProtocolEngine,
    get_engine,
    get_loader,
)
from protocol_engine.errors import (
    KnowledgeBaseConsistencyError,
    KnowledgeBaseError,
    KnowledgeBaseLoadError,
)
from protocol_engine.loader import load_active_kb, load_knowledge_base, load_latest
from protocol_engine.models import CaseInput, KnowledgeBase, ObservationStatus, Severity
from protocol_engine.prioritizer import build_report, generate_report
from protocol_engine.validator import collect_violations, validate_knowledge_base

__version__ = "1.0.0"
__all__ = [
    "CaseInput",
    "CaseResult",
    "KnowledgeBase",
    "KnowledgeBaseConsistencyError",
    "KnowledgeBaseError",
    "KnowledgeBaseLoadError",
    "ObservationStatus",
    "ProtocolEngine",
    "Severity",
    "build_report",
    "collect_violations",
    "generate_report",
    "get_engine",
    "get_loader",
    "load_active_kb",
    "load_knowledge_base",
    "load_latest",
    "validate_knowledge_base",
]
