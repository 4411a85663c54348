"""
Permit status state machine.

The whole lifecycle is the ``PERMIT_TRANSITIONS`` table keyed by
``(status, role, action)``. A key that is not in the table is an illegal
transition; there is no fallthrough. ``Closed`` and ``Rejected`` have no
outgoing rows.

Applying a transition is pure: it takes a snapshot and returns the next one.
Field patches are merged into the document before the transition's side
effect is applied, so one call can both edit fields and change status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..errors import IllegalTransition, ValidationError
from ..schemas.enums import PermitAction, PermitStatus, Role, SideEffect
from ..schemas.permit import (
    CLOSURE_FIELDS,
    DocumentPatch,
    PermitDocument,
    PermitSnapshot,
    RejectionRemark,
)
from ..schemas.primitives import Signature

DEFAULT_REJECTION_REASON = "No reason provided"


@dataclass(frozen=True)
class Transition:
    """One row of the permit transition table."""

    from_status: PermitStatus
    role: Role
    action: PermitAction
    to_status: PermitStatus
    side_effect: SideEffect

    @property
    def key(self) -> Tuple[PermitStatus, Role, PermitAction]:
        return (self.from_status, self.role, self.action)


_S = PermitStatus
_A = PermitAction

PERMIT_TRANSITIONS: Dict[Tuple[PermitStatus, Role, PermitAction], Transition] = {
    t.key: t
    for t in (
        Transition(_S.PENDING_REVIEW, Role.REVIEWER, _A.REJECT, _S.REJECTED, SideEffect.APPEND_REJECTION),
        Transition(_S.PENDING_REVIEW, Role.REVIEWER, _A.REVIEW, _S.PENDING_APPROVAL, SideEffect.STAMP_REVIEWER),
        Transition(_S.PENDING_APPROVAL, Role.APPROVER, _A.REJECT, _S.REJECTED, SideEffect.APPEND_REJECTION),
        Transition(_S.PENDING_APPROVAL, Role.APPROVER, _A.APPROVE, _S.ACTIVE, SideEffect.STAMP_APPROVER),
        Transition(_S.ACTIVE, Role.REQUESTER, _A.INITIATE_CLOSURE, _S.CLOSURE_PENDING_REVIEW, SideEffect.STAMP_CLOSURE_RECEIVER),
        Transition(_S.CLOSURE_PENDING_REVIEW, Role.REVIEWER, _A.APPROVE_CLOSURE, _S.CLOSURE_PENDING_APPROVAL, SideEffect.STAMP_CLOSURE_REVIEWER),
        Transition(_S.CLOSURE_PENDING_REVIEW, Role.REVIEWER, _A.REJECT_CLOSURE, _S.ACTIVE, SideEffect.DISCARD_CLOSURE),
        Transition(_S.CLOSURE_PENDING_APPROVAL, Role.APPROVER, _A.APPROVE, _S.CLOSED, SideEffect.STAMP_CLOSURE_ISSUER),
        Transition(_S.CLOSURE_PENDING_APPROVAL, Role.APPROVER, _A.REJECT_CLOSURE, _S.ACTIVE, SideEffect.DISCARD_CLOSURE),
    )
}

# Signature and remark fields written by each stamping side effect
_STAMP_FIELDS: Dict[SideEffect, Tuple[str, str]] = {
    SideEffect.STAMP_REVIEWER: ("reviewer_signature", "reviewer_remarks"),
    SideEffect.STAMP_APPROVER: ("approver_signature", "approver_remarks"),
    SideEffect.STAMP_CLOSURE_RECEIVER: ("closure_receiver_signature", "closure_receiver_remarks"),
    SideEffect.STAMP_CLOSURE_REVIEWER: ("closure_reviewer_signature", "closure_reviewer_remarks"),
    SideEffect.STAMP_CLOSURE_ISSUER: ("closure_issuer_signature", "closure_issuer_remarks"),
}


def resolve_transition(
    status: PermitStatus, role: Role, action: PermitAction
) -> Transition:
    """Look up the table row for ``(status, role, action)``.

    Raises:
        IllegalTransition: If the permit is terminal or the row does not exist
    """
    if status.is_terminal:
        raise IllegalTransition(
            f"Permit is {status.value}; no further transitions are allowed"
        )
    try:
        return PERMIT_TRANSITIONS[(status, role, action)]
    except KeyError:
        allowed = allowed_actions(status, role)
        hint = ", ".join(a.value for a in allowed) if allowed else "none"
        raise IllegalTransition(
            f"{role.value} cannot '{action.value}' a permit in status "
            f"'{status.value}' (allowed: {hint})"
        ) from None


def allowed_actions(status: PermitStatus, role: Role) -> List[PermitAction]:
    """Actions ``role`` may take on a permit in ``status``."""
    return [
        t.action
        for t in PERMIT_TRANSITIONS.values()
        if t.from_status == status and t.role == role
    ]


def fold_transitions(
    start: PermitStatus, steps: Iterable[Tuple[Role, PermitAction]]
) -> PermitStatus:
    """Status reached by applying ``steps`` in order from ``start``."""
    status = start
    for role, action in steps:
        status = resolve_transition(status, role, action).to_status
    return status


def ensure_bound_actor(snapshot: PermitSnapshot, role: Role, identity: str) -> None:
    """Only the identity bound to a role at creation may act in that role.

    Raises:
        IllegalTransition: If ``identity`` is not bound to ``role`` on this permit
    """
    bound = snapshot.bound_identity(role)
    if bound.strip().lower() != identity.strip().lower():
        raise IllegalTransition(
            f"{identity} is not the {role.value.lower()} assigned to {snapshot.permit_id}",
            permit_id=snapshot.permit_id,
        )


def apply_transition(
    snapshot: PermitSnapshot,
    transition: Transition,
    *,
    identity: str,
    now: datetime,
    patch: Optional[DocumentPatch] = None,
    comment: Optional[str] = None,
) -> PermitSnapshot:
    """Compute the snapshot that results from ``transition``.

    The patch is merged first; the side effect then sees the merged document.
    """
    if snapshot.status != transition.from_status:
        raise IllegalTransition(
            f"Transition expects status '{transition.from_status.value}' but permit "
            f"is '{snapshot.status.value}'",
            permit_id=snapshot.permit_id,
        )

    try:
        document = snapshot.document
        if patch is not None:
            document = document.merged(patch)
        document = _apply_side_effect(
            document,
            transition,
            identity=identity,
            now=now,
            comment=comment,
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Permit document would be invalid after {transition.action.value}: "
            f"{exc.errors()[0]['msg']}",
            permit_id=snapshot.permit_id,
        ) from exc

    return snapshot.model_copy(
        update={"status": transition.to_status, "document": document}
    )


def _apply_side_effect(
    document: PermitDocument,
    transition: Transition,
    *,
    identity: str,
    now: datetime,
    comment: Optional[str],
) -> PermitDocument:
    effect = transition.side_effect

    if effect is SideEffect.APPEND_REJECTION:
        remark = RejectionRemark(
            rejected_by=identity,
            role=transition.role,
            rejected_at=now,
            stage=transition.from_status,
            reason=comment or DEFAULT_REJECTION_REASON,
        )
        return _rebuilt(document, {"rejections": [*document.rejections, remark]})

    if effect is SideEffect.DISCARD_CLOSURE:
        return _rebuilt(document, {name: None for name in CLOSURE_FIELDS})

    signature_field, remarks_field = _STAMP_FIELDS[effect]
    updates = {
        signature_field: Signature(signed_by=identity, role=transition.role, signed_at=now)
    }
    if comment is not None:
        updates[remarks_field] = comment
    return _rebuilt(document, updates)


def _rebuilt(document: PermitDocument, updates: Dict[str, Any]) -> PermitDocument:
    # Field limits hold for every document the lifecycle produces
    return PermitDocument.model_validate({**document.model_dump(), **updates})
