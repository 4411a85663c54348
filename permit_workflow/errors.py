"""
Error taxonomy for the permit lifecycle core.

Every failure that crosses the service boundary is one of these types.
Collaborator-specific exceptions (SQLAlchemy, filesystem, renderer) are
wrapped before they reach callers.
"""

from typing import Any, Dict, Optional


class PermitError(Exception):
    """
    Base class for lifecycle errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        retryable: Whether the caller may retry the same request
        http_status: Status code used by the HTTP adapter
    """

    code = "PERMIT_ERROR"
    retryable = False
    http_status = 400

    def __init__(self, message: str, *, permit_id: Optional[str] = None):
        self.message = message
        self.permit_id = permit_id
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.permit_id:
            body["permit_id"] = self.permit_id
        return {"error": body}


class ValidationError(PermitError):
    """Malformed or out-of-range input. Fix the input, do not retry."""

    code = "VALIDATION_ERROR"
    http_status = 422


class IllegalTransition(PermitError):
    """Action not defined for the current (status, role) pair."""

    code = "ILLEGAL_TRANSITION"
    http_status = 409


class NotFound(PermitError):
    """Unknown permit identifier."""

    code = "NOT_FOUND"
    http_status = 404


class Forbidden(PermitError):
    """The acting role may not perform this operation at all."""

    code = "FORBIDDEN"
    http_status = 403


class ConflictError(PermitError):
    """Another transition committed first. Reload and retry with fresh state."""

    code = "CONFLICT"
    retryable = True
    http_status = 409


class IdentifierCollision(ConflictError):
    """Two creations ended up with the same permit identifier."""

    code = "PERMIT_ID_COLLISION"


class CollaboratorFailure(PermitError):
    """Store, blob store or renderer unreachable or erroring."""

    code = "COLLABORATOR_FAILURE"
    retryable = True
    http_status = 503

    def __init__(
        self,
        message: str,
        *,
        collaborator: str = "store",
        permit_id: Optional[str] = None,
    ):
        self.collaborator = collaborator
        super().__init__(message, permit_id=permit_id)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["error"]["collaborator"] = self.collaborator
        return body
