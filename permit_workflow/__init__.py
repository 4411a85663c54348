"""
Permit Workflow

Work permit approval, renewal and closure lifecycle service.
"""

import importlib.metadata

__version__ = importlib.metadata.version("permit-workflow")

from .errors import (
    CollaboratorFailure,
    ConflictError,
    Forbidden,
    IdentifierCollision,
    IllegalTransition,
    NotFound,
    PermitError,
    ValidationError,
)
from .schemas import PermitAction, PermitSnapshot, PermitStatus, RenewalAction, Role
from .services import PermitService

__all__ = [
    "CollaboratorFailure",
    "ConflictError",
    "Forbidden",
    "IdentifierCollision",
    "IllegalTransition",
    "NotFound",
    "PermitAction",
    "PermitError",
    "PermitService",
    "PermitSnapshot",
    "PermitStatus",
    "RenewalAction",
    "Role",
]
