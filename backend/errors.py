# backend/errors.py: Domain error taxonomy
#
# Every error carries a machine-readable code and the HTTP status the API
# layer maps it to. Raised before any write, so callers may correct and retry.

from typing import Any, Dict, List, Optional


class DomainError(Exception):
    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Malformed or out-of-policy input. Lists every violated rule."""

    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        details: Dict[str, Any] = {"errors": self.errors}
        if self.warnings:
            details["warnings"] = self.warnings
        super().__init__(". ".join(self.errors), details)


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class SequenceError(DomainError):
    """Approval attempted out of order, or lost a race on the same level."""

    code = "SEQUENCE_ERROR"
    status_code = 409


class StateError(DomainError):
    """Action on a terminal (approved / rejected) entity. Retrying never helps."""

    code = "INVALID_STATE"
    status_code = 409
