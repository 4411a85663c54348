"""
Renewal sub-lifecycle.

A permit holds its completed renewals in ``renewal_history`` and at most one
in-flight entry in ``current_renewal``. A Requester ``request`` fills the
empty slot; Reviewer and Approver actions only ever touch the slot. When an
entry is approved or rejected it moves to history and the slot is emptied,
so a second in-flight renewal cannot exist.

Every entry transition also sets the parent permit status:

    request  -> Renewal Pending Review
    review   -> Renewal Pending Approval
    approve  -> Active
    reject   -> Active
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..errors import IllegalTransition, ValidationError
from ..schemas.enums import PermitStatus, RenewalAction, RenewalStatus, Role
from ..schemas.permit import PermitSnapshot, RenewalDecision, RenewalRecord, RenewalRequest
from .limits import LifecycleConfig, get_default_lifecycle_config

DEFAULT_RENEWAL_REJECTION_REASON = "Rejected without remarks"


@dataclass(frozen=True)
class RenewalTransition:
    """One row of the renewal transition table.

    ``entry_status`` is None for the row that opens a new renewal.
    """

    entry_status: Optional[RenewalStatus]
    role: Role
    action: RenewalAction
    next_entry_status: RenewalStatus
    next_permit_status: PermitStatus

    @property
    def key(self) -> Tuple[Optional[RenewalStatus], Role, RenewalAction]:
        return (self.entry_status, self.role, self.action)


_R = RenewalStatus

RENEWAL_TRANSITIONS: Dict[
    Tuple[Optional[RenewalStatus], Role, RenewalAction], RenewalTransition
] = {
    t.key: t
    for t in (
        RenewalTransition(None, Role.REQUESTER, RenewalAction.REQUEST, _R.PENDING_REVIEW, PermitStatus.RENEWAL_PENDING_REVIEW),
        RenewalTransition(_R.PENDING_REVIEW, Role.REVIEWER, RenewalAction.REVIEW, _R.PENDING_APPROVAL, PermitStatus.RENEWAL_PENDING_APPROVAL),
        RenewalTransition(_R.PENDING_REVIEW, Role.REVIEWER, RenewalAction.REJECT, _R.REJECTED, PermitStatus.ACTIVE),
        RenewalTransition(_R.PENDING_APPROVAL, Role.APPROVER, RenewalAction.APPROVE, _R.APPROVED, PermitStatus.ACTIVE),
        RenewalTransition(_R.PENDING_APPROVAL, Role.APPROVER, RenewalAction.REJECT, _R.REJECTED, PermitStatus.ACTIVE),
    )
}

# Parent status that must accompany each in-flight entry status
PARENT_STATUS_FOR_ENTRY = {
    RenewalStatus.PENDING_REVIEW: PermitStatus.RENEWAL_PENDING_REVIEW,
    RenewalStatus.PENDING_APPROVAL: PermitStatus.RENEWAL_PENDING_APPROVAL,
}


def resolve_renewal_transition(
    snapshot: PermitSnapshot, role: Role, action: RenewalAction
) -> RenewalTransition:
    """Look up the renewal table row for the permit's in-flight entry.

    Raises:
        IllegalTransition: If the permit is terminal, the slot is in the wrong
            state for ``action``, or the row does not exist
    """
    if snapshot.status.is_terminal:
        raise IllegalTransition(
            f"Permit is {snapshot.status.value}; renewals are no longer accepted",
            permit_id=snapshot.permit_id,
        )

    current = snapshot.current_renewal
    if action is RenewalAction.REQUEST:
        if current is not None:
            raise IllegalTransition(
                f"Renewal #{current.sequence} is still {current.status.value}; "
                "it must be approved or rejected first",
                permit_id=snapshot.permit_id,
            )
        if snapshot.status is not PermitStatus.ACTIVE:
            raise IllegalTransition(
                f"Renewals can only be requested on an Active permit "
                f"(status is '{snapshot.status.value}')",
                permit_id=snapshot.permit_id,
            )
    else:
        if current is None:
            raise IllegalTransition(
                "No renewal is awaiting a decision", permit_id=snapshot.permit_id
            )
        if snapshot.status is not PARENT_STATUS_FOR_ENTRY[current.status]:
            raise IllegalTransition(
                f"Permit status '{snapshot.status.value}' does not match renewal "
                f"#{current.sequence} ({current.status.value})",
                permit_id=snapshot.permit_id,
            )

    entry_status = current.status if current is not None else None
    try:
        return RENEWAL_TRANSITIONS[(entry_status, role, action)]
    except KeyError:
        state = entry_status.value if entry_status else "no renewal in flight"
        raise IllegalTransition(
            f"{role.value} cannot '{action.value}' a renewal in state '{state}'",
            permit_id=snapshot.permit_id,
        ) from None


def previous_renewal_end(snapshot: PermitSnapshot) -> Optional[datetime]:
    """End of the latest renewal that was not rejected, if any.

    Rejected windows never took effect, so they do not push back the
    earliest start of the next renewal.
    """
    for record in reversed(snapshot.renewal_history):
        if record.status is not RenewalStatus.REJECTED:
            return record.valid_to
    return None


def validate_renewal_window(
    snapshot: PermitSnapshot,
    request: RenewalRequest,
    config: Optional[LifecycleConfig] = None,
) -> None:
    """Check a requested renewal window against the parent permit.

    Raises:
        ValidationError: If any window rule is broken
    """
    config = config or get_default_lifecycle_config()
    start, end = request.valid_from, request.valid_to

    if start >= end:
        raise ValidationError(
            f"Renewal validFrom ({start.isoformat()}) must be before validTo "
            f"({end.isoformat()})",
            permit_id=snapshot.permit_id,
        )
    if start < snapshot.valid_from or end > snapshot.valid_to:
        raise ValidationError(
            f"Renewal window must lie within the permit window "
            f"{snapshot.valid_from.isoformat()} - {snapshot.valid_to.isoformat()}",
            permit_id=snapshot.permit_id,
        )
    if end - start > config.max_renewal_span:
        raise ValidationError(
            f"Renewal window exceeds the maximum of {config.max_renewal_hours} hours",
            permit_id=snapshot.permit_id,
        )

    previous_end = previous_renewal_end(snapshot)
    if previous_end is not None and start < previous_end:
        raise ValidationError(
            f"Renewal must start at or after the previous renewal ended "
            f"({previous_end.isoformat()})",
            permit_id=snapshot.permit_id,
        )


def open_renewal(
    snapshot: PermitSnapshot,
    transition: RenewalTransition,
    request: RenewalRequest,
    *,
    identity: str,
    now: datetime,
) -> PermitSnapshot:
    """Place a new renewal entry in the empty in-flight slot."""
    record = RenewalRecord(
        sequence=len(snapshot.renewals) + 1,
        status=transition.next_entry_status,
        valid_from=request.valid_from,
        valid_to=request.valid_to,
        hydrocarbon_reading=request.hydrocarbon_reading,
        toxic_reading=request.toxic_reading,
        oxygen_reading=request.oxygen_reading,
        precautions=request.precautions,
        remarks=request.remarks,
        requested_by=identity,
        requested_at=now,
    )
    return snapshot.model_copy(
        update={"current_renewal": record, "status": transition.next_permit_status}
    )


def decide_renewal(
    snapshot: PermitSnapshot,
    transition: RenewalTransition,
    decision: RenewalDecision,
    *,
    identity: str,
    now: datetime,
) -> PermitSnapshot:
    """Apply a Reviewer/Approver decision to the in-flight entry."""
    current = snapshot.current_renewal
    if current is None or current.status is not transition.entry_status:
        raise IllegalTransition(
            "In-flight renewal does not match the requested transition",
            permit_id=snapshot.permit_id,
        )

    updates = {"status": transition.next_entry_status}
    if transition.action is RenewalAction.REVIEW:
        updates.update(reviewed_by=identity, reviewed_at=now, review_comment=decision.comment)
    elif transition.action is RenewalAction.APPROVE:
        updates.update(approved_by=identity, approved_at=now, approval_comment=decision.comment)
    else:
        updates.update(
            rejected_by=identity,
            rejected_at=now,
            rejection_reason=(
                decision.rejection_reason
                or decision.comment
                or DEFAULT_RENEWAL_REJECTION_REASON
            ),
        )
    record = current.model_copy(update=updates)

    if record.status.is_in_flight:
        return snapshot.model_copy(
            update={"current_renewal": record, "status": transition.next_permit_status}
        )
    return snapshot.model_copy(
        update={
            "renewal_history": [*snapshot.renewal_history, record],
            "current_renewal": None,
            "status": transition.next_permit_status,
        }
    )
