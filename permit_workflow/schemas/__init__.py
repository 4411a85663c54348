"""
Permit Workflow schemas.
"""

from .enums import (
    PermitAction,
    PermitStatus,
    RenewalAction,
    RenewalStatus,
    Role,
    SideEffect,
    TERMINAL_STATUSES,
)
from .permit import (
    ActionComment,
    DocumentPatch,
    PermitCreate,
    PermitDocument,
    PermitFields,
    PermitSnapshot,
    RejectionRemark,
    RenewalActionRequest,
    RenewalDecision,
    RenewalRecord,
    RenewalRequest,
    TransitionRequest,
)
from .primitives import Attachment, Signature, as_utc, generate_ulid, utc_now

__all__ = [
    "ActionComment",
    "Attachment",
    "DocumentPatch",
    "PermitAction",
    "PermitCreate",
    "PermitDocument",
    "PermitFields",
    "PermitSnapshot",
    "PermitStatus",
    "RejectionRemark",
    "RenewalAction",
    "RenewalActionRequest",
    "RenewalDecision",
    "RenewalRecord",
    "RenewalRequest",
    "RenewalStatus",
    "Role",
    "SideEffect",
    "Signature",
    "TERMINAL_STATUSES",
    "TransitionRequest",
    "as_utc",
    "generate_ulid",
    "utc_now",
]
