"""
Dashboard visibility per role.

Requesters see every permit they raised. Reviewers and Approvers see the
permits assigned to them, restricted to the statuses where they have work to
do or something to look back on.
"""

from typing import Dict, FrozenSet, Optional

from ..schemas.enums import PermitStatus, Role

_S = PermitStatus

DASHBOARD_STATUSES: Dict[Role, Optional[FrozenSet[PermitStatus]]] = {
    Role.REQUESTER: None,
    Role.REVIEWER: frozenset(
        {
            _S.PENDING_REVIEW,
            _S.RENEWAL_PENDING_REVIEW,
            _S.RENEWAL_PENDING_APPROVAL,
            _S.CLOSURE_PENDING_REVIEW,
            _S.CLOSURE_PENDING_APPROVAL,
            _S.CLOSED,
        }
    ),
    Role.APPROVER: frozenset(
        {
            _S.PENDING_APPROVAL,
            _S.RENEWAL_PENDING_APPROVAL,
            _S.CLOSURE_PENDING_APPROVAL,
            _S.ACTIVE,
            _S.CLOSED,
        }
    ),
}


def dashboard_statuses(role: Role) -> Optional[FrozenSet[PermitStatus]]:
    """Statuses shown to ``role``; None means no status filter."""
    return DASHBOARD_STATUSES[role]
