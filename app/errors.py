"""Typed errors raised by the approval engine and their JSON rendering.

Every error carries a machine-readable ``code``, the HTTP status the view
layer should answer with, and a ``details`` mapping of structured data so
callers can react by type rather than by parsing messages.

    ApprovalError (base)
    +-- NotFoundError               404  NOT_FOUND
    +-- ValidationError             400  VALIDATION_ERROR
    +-- UnauthorizedApproverError   403  UNAUTHORIZED_APPROVER
    +-- DuplicateDecisionError      409  DUPLICATE_DECISION
    +-- InvalidStateError           409  INVALID_STATE
    +-- ConfigurationError          409  CONFIGURATION_ERROR
    +-- ConcurrentDecisionError     409  CONCURRENT_DECISION
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Flask


class ApprovalError(Exception):
    code = "APPROVAL_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(ApprovalError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(ApprovalError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedApproverError(ApprovalError):
    code = "UNAUTHORIZED_APPROVER"
    status_code = 403


class DuplicateDecisionError(ApprovalError):
    code = "DUPLICATE_DECISION"
    status_code = 409


class InvalidStateError(ApprovalError):
    code = "INVALID_STATE"
    status_code = 409


class ConfigurationError(ApprovalError):
    """No flow matched and the fallback could not produce a route."""

    code = "CONFIGURATION_ERROR"
    status_code = 409


class ConcurrentDecisionError(ApprovalError):
    code = "CONCURRENT_DECISION"
    status_code = 409


def register_error_handlers(app: Flask) -> None:
    """Render approval errors as JSON responses."""
    from app.utils.helpers import json_response

    @app.errorhandler(ApprovalError)
    def handle_approval_error(exc: ApprovalError):
        app.logger.info("Request rejected with %s: %s", exc.code, exc.message)
        return json_response(exc.to_dict(), status=exc.status_code)

    @app.errorhandler(404)
    def handle_not_found(exc: Optional[Exception]):
        return json_response({"error": "Resource not found.", "code": "NOT_FOUND"}, status=404)
