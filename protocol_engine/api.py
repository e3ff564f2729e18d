"""
Protocol Engine - API Endpoints
===============================
FastAPI endpoints for knowledge base inspection, validation and case evaluation.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from protocol_engine.errors import KnowledgeBaseError
from protocol_engine.models import CaseInput, KnowledgeBase

logger = logging.getLogger(__name__)

# Import: from protocol_engine.api import register_protocol_endpoints

# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class ViolationResponse(BaseModel):
    message: str
    context: Optional[str] = None


class ValidateKbResponse(BaseModel):
    """Outcome of a consistency check on a submitted knowledge base."""
    valid: bool
    kb_version: str
    violation_count: int
    violations: List[ViolationResponse] = Field(default_factory=list)


class KbInfoResponse(BaseModel):
    kb_version: str
    release_date: str
    status: str
    stats: Dict[str, int]


class RangesResponse(BaseModel):
    kb_version: str
    case_id: str
    patient: Dict[str, Any]
    observations_enriched: List[Dict[str, Any]]
    qa_flags: List[Dict[str, Any]]


# ============================================================
# ENDPOINT REGISTRATION
# ============================================================

def register_protocol_endpoints(app):
    """
    Register all protocol engine endpoints on a FastAPI app.

    Usage:
        from protocol_engine.api import register_protocol_endpoints
        register_protocol_endpoints(app)
    """
    from protocol_engine.engine import get_engine
    from protocol_engine.range_matcher import normalize_sex
    from protocol_engine.validator import collect_violations

    def _engine():
        try:
            return get_engine()
        except KnowledgeBaseError as e:
            logger.error(f"KB_UNAVAILABLE: {e.message}")
            raise HTTPException(status_code=503, detail=e.to_dict())

    # ---------------------------------------------------------
    # GET /api/v1/protocol/kb
    # ---------------------------------------------------------
    @app.get("/api/v1/protocol/kb", response_model=KbInfoResponse, tags=["Protocol Engine"])
    def kb_info():
        """Active knowledge base version and record counts."""
        kb = _engine().kb
        return KbInfoResponse(
            kb_version=kb.version,
            release_date=kb.manifest.release_date,
            status=kb.manifest.status,
            stats=kb.stats(),
        )

    # ---------------------------------------------------------
    # POST /api/v1/protocol/kb/validate
    # ---------------------------------------------------------
    @app.post("/api/v1/protocol/kb/validate", response_model=ValidateKbResponse, tags=["Protocol Engine"])
    def validate_kb(kb: KnowledgeBase):
        """
        Check a submitted knowledge base for dangling references and duplicate ids.

        Every violation is reported in one response.
        """
        violations = collect_violations(kb)
        return ValidateKbResponse(
            valid=not violations,
            kb_version=kb.version,
            violation_count=len(violations),
            violations=[ViolationResponse(**v.to_dict()) for v in violations],
        )

    # ---------------------------------------------------------
    # POST /api/v1/protocol/ranges
    # ---------------------------------------------------------
    @app.post("/api/v1/protocol/ranges", response_model=RangesResponse, tags=["Protocol Engine"])
    def apply_ranges(case: CaseInput):
        """Classify each observation of a case against its reference range."""
        engine = _engine()
        observations, qa_flags = engine.apply_ranges(case)
        return RangesResponse(
            kb_version=engine.kb_version,
            case_id=case.case_id,
            patient={"age": case.patient.age, "sex": normalize_sex(case.patient.sex)},
            observations_enriched=[o.to_dict() for o in observations],
            qa_flags=[f.to_dict() for f in qa_flags],
        )

    # ---------------------------------------------------------
    # POST /api/v1/protocol/report
    # ---------------------------------------------------------
    @app.post("/api/v1/protocol/report", tags=["Protocol Engine"])
    def evaluate_case(case: CaseInput):
        """
        Evaluate a case end to end.

        Returns enriched observations, QA flags, fired red flags, the
        prioritized report and disclaimers.
        """
        return _engine().run_case(case).to_dict()

    return app
