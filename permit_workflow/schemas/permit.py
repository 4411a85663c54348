"""
Permit and renewal schemas.

The permit document is a whitelisted record rather than a free-form bag:
unknown fields are rejected at the boundary instead of being silently kept
or dropped. Fields a client may edit live on ``DocumentPatch``; signatures
and rejection remarks are stamped by the lifecycle and never accepted from
clients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint, constr, model_validator

from .enums import PermitAction, PermitStatus, RenewalAction, RenewalStatus, Role
from .primitives import Identity, Signature, UtcDatetime

ShortText = constr(max_length=256)
LongText = constr(max_length=4000)


class DocumentPatch(BaseModel):
    """Client-editable permit fields. Only the fields that are set get merged."""

    model_config = ConfigDict(extra="forbid")

    work_type: Optional[ShortText] = None
    work_description: Optional[LongText] = None
    location: Optional[ShortText] = None
    equipment: Optional[ShortText] = None
    contractor: Optional[ShortText] = None
    worker_count: Optional[conint(ge=0, le=10000)] = None
    hazards: Optional[List[ShortText]] = None
    precautions: Optional[List[ShortText]] = None
    checklist: Optional[Dict[str, ShortText]] = Field(
        None, description="Safety checklist answers keyed by question id"
    )
    kml_ref: Optional[ShortText] = Field(
        None, description="Blob name of a KML map overlay for the work area"
    )
    requester_remarks: Optional[LongText] = None


class RejectionRemark(BaseModel):
    """Remark appended to the document when a permit is rejected."""

    model_config = ConfigDict(extra="forbid")

    rejected_by: Identity
    role: Role
    rejected_at: UtcDatetime
    stage: PermitStatus = Field(..., description="Status the permit was rejected from")
    reason: LongText


class PermitDocument(DocumentPatch):
    """The full permit document: editable fields plus lifecycle stamps."""

    reviewer_remarks: Optional[LongText] = None
    reviewer_signature: Optional[Signature] = None
    approver_remarks: Optional[LongText] = None
    approver_signature: Optional[Signature] = None

    closure_receiver_remarks: Optional[LongText] = None
    closure_receiver_signature: Optional[Signature] = None
    closure_reviewer_remarks: Optional[LongText] = None
    closure_reviewer_signature: Optional[Signature] = None
    closure_issuer_remarks: Optional[LongText] = None
    closure_issuer_signature: Optional[Signature] = None

    rejections: List[RejectionRemark] = Field(default_factory=list)

    def merged(self, patch: DocumentPatch) -> "PermitDocument":
        """Return a copy with every field set on ``patch`` applied.

        Checklist answers are merged key by key; every other field is
        replaced by the patched value.
        """
        updates = patch.model_dump(exclude_unset=True)
        if "checklist" in updates and updates["checklist"] is not None:
            updates["checklist"] = {**(self.checklist or {}), **updates["checklist"]}
        return self.model_copy(update=updates)


CLOSURE_FIELDS = (
    "closure_receiver_remarks",
    "closure_receiver_signature",
    "closure_reviewer_remarks",
    "closure_reviewer_signature",
    "closure_issuer_remarks",
    "closure_issuer_signature",
)


class PermitFields(DocumentPatch):
    """Fields supplied by the Requester when creating a permit."""

    reviewer_email: Identity
    approver_email: Identity


class PermitCreate(PermitFields):
    """HTTP body for permit creation."""

    valid_from: UtcDatetime
    valid_to: UtcDatetime


class ActionComment(BaseModel):
    """Free-text comment accompanying a status action."""

    model_config = ConfigDict(extra="forbid")

    comment: Optional[LongText] = None


class TransitionRequest(BaseModel):
    """HTTP body for a permit status action."""

    model_config = ConfigDict(extra="forbid")

    action: PermitAction
    comment: Optional[LongText] = None
    fields: DocumentPatch = Field(default_factory=DocumentPatch)
    expected_status: Optional[PermitStatus] = Field(
        None,
        description="Status the caller saw; a mismatch is reported as a conflict",
    )


class RenewalRequest(BaseModel):
    """Renewal window and gas-test readings submitted by the Requester."""

    model_config = ConfigDict(extra="forbid")

    valid_from: UtcDatetime
    valid_to: UtcDatetime
    hydrocarbon_reading: Optional[ShortText] = None
    toxic_reading: Optional[ShortText] = None
    oxygen_reading: Optional[ShortText] = None
    precautions: Optional[LongText] = None
    remarks: Optional[LongText] = None


class RenewalDecision(BaseModel):
    """Reviewer or Approver decision on the in-flight renewal."""

    model_config = ConfigDict(extra="forbid")

    comment: Optional[LongText] = None
    rejection_reason: Optional[LongText] = None


class RenewalActionRequest(BaseModel):
    """HTTP body for a renewal action."""

    model_config = ConfigDict(extra="forbid")

    action: RenewalAction
    fields: Dict[str, Any] = Field(default_factory=dict)


class RenewalRecord(BaseModel):
    """One renewal attempt attached to a permit."""

    model_config = ConfigDict(extra="forbid")

    sequence: conint(ge=1)
    status: RenewalStatus = RenewalStatus.PENDING_REVIEW
    valid_from: UtcDatetime
    valid_to: UtcDatetime

    hydrocarbon_reading: Optional[str] = None
    toxic_reading: Optional[str] = None
    oxygen_reading: Optional[str] = None
    precautions: Optional[str] = None
    remarks: Optional[str] = None

    requested_by: Identity
    requested_at: UtcDatetime
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[UtcDatetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[UtcDatetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[UtcDatetime] = None
    rejection_reason: Optional[str] = None
    review_comment: Optional[str] = None
    approval_comment: Optional[str] = None


class PermitSnapshot(BaseModel):
    """Read-only view of one permit as stored at a given revision."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    permit_id: str
    status: PermitStatus
    requester_email: str
    reviewer_email: str
    approver_email: str
    valid_from: UtcDatetime
    valid_to: UtcDatetime
    document: PermitDocument = Field(default_factory=PermitDocument)
    renewal_history: List[RenewalRecord] = Field(default_factory=list)
    current_renewal: Optional[RenewalRecord] = None
    attachment_ref: Optional[str] = None
    final_artifact_ref: Optional[str] = None
    revision: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _history_holds_completed_renewals(self) -> "PermitSnapshot":
        for record in self.renewal_history:
            if record.status.is_in_flight:
                raise ValueError(
                    f"renewal #{record.sequence} is still in flight and cannot be history"
                )
        if self.current_renewal is not None and not self.current_renewal.status.is_in_flight:
            raise ValueError("current_renewal must be in flight")
        return self

    @property
    def renewals(self) -> List[RenewalRecord]:
        """All renewal entries in request order, the in-flight one last."""
        entries = list(self.renewal_history)
        if self.current_renewal is not None:
            entries.append(self.current_renewal)
        return entries

    def bound_identity(self, role: Role) -> str:
        """Identity bound to ``role`` when the permit was created."""
        return {
            Role.REQUESTER: self.requester_email,
            Role.REVIEWER: self.reviewer_email,
            Role.APPROVER: self.approver_email,
        }[role]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        data = self.model_dump(mode="json")
        data["renewals"] = [r.model_dump(mode="json") for r in self.renewals]
        return data
