"""
Canonical enums for the permit lifecycle.

Stored values are the human-readable labels used on permit dashboards, so a
status column can be shown as-is.
"""

from enum import Enum


class Role(str, Enum):
    """Roles that may act on a permit."""

    REQUESTER = "Requester"
    REVIEWER = "Reviewer"
    APPROVER = "Approver"


class PermitStatus(str, Enum):
    """Top-level status of a work permit."""

    PENDING_REVIEW = "Pending Review"
    PENDING_APPROVAL = "Pending Approval"
    ACTIVE = "Active"
    RENEWAL_PENDING_REVIEW = "Renewal Pending Review"
    RENEWAL_PENDING_APPROVAL = "Renewal Pending Approval"
    CLOSURE_PENDING_REVIEW = "Closure Pending Review"
    CLOSURE_PENDING_APPROVAL = "Closure Pending Approval"
    CLOSED = "Closed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({PermitStatus.CLOSED, PermitStatus.REJECTED})


class PermitAction(str, Enum):
    """Actions accepted by the permit status state machine."""

    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    INITIATE_CLOSURE = "initiate_closure"
    APPROVE_CLOSURE = "approve_closure"
    REJECT_CLOSURE = "reject_closure"


class RenewalStatus(str, Enum):
    """Status of a single renewal entry."""

    PENDING_REVIEW = "pending_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_in_flight(self) -> bool:
        return self not in (RenewalStatus.APPROVED, RenewalStatus.REJECTED)


class RenewalAction(str, Enum):
    """Actions accepted by the renewal sub-lifecycle."""

    REQUEST = "request"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"


class SideEffect(str, Enum):
    """Document mutation attached to a permit transition."""

    APPEND_REJECTION = "append_rejection"
    STAMP_REVIEWER = "stamp_reviewer"
    STAMP_APPROVER = "stamp_approver"
    STAMP_CLOSURE_RECEIVER = "stamp_closure_receiver"
    STAMP_CLOSURE_REVIEWER = "stamp_closure_reviewer"
    STAMP_CLOSURE_ISSUER = "stamp_closure_issuer"
    DISCARD_CLOSURE = "discard_closure"
