"""
Protocol Engine - Exceptions
"""

from typing import Any, Dict, List, Optional


class KnowledgeBaseError(Exception):
    """Base exception for knowledge base problems. Results in 503 Service Unavailable."""

    def __init__(self, message: str, version: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.version = version

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "version": self.version}


class KnowledgeBaseLoadError(KnowledgeBaseError):
    """A knowledge base file is missing, unreadable or structurally invalid."""

    def __init__(self, message: str, path: Optional[str] = None, issues: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path
        self.issues = issues or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["path"] = self.path
        data["issues"] = list(self.issues)
        return data


class KnowledgeBaseConsistencyError(KnowledgeBaseError):
    """One or more referential-integrity violations; carries all of them."""

    def __init__(self, violations: List[Any], version: Optional[str] = None):
        self.violations = list(violations)
        lines = [f"  - {v}" for v in self.violations]
        message = f"{len(self.violations)} consistency violation(s) found:\n" + "\n".join(lines)
        super().__init__(message, version=version)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data
