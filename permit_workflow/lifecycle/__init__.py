"""
Permit lifecycle rules.

Pure, synchronous state machines over a loaded ``PermitSnapshot``. Nothing
in this package touches the database or the blob store.
"""

from .limits import LifecycleConfig, get_default_lifecycle_config, validate_permit_window
from .renewals import (
    RENEWAL_TRANSITIONS,
    RenewalTransition,
    decide_renewal,
    open_renewal,
    resolve_renewal_transition,
    validate_renewal_window,
)
from .transitions import (
    PERMIT_TRANSITIONS,
    Transition,
    allowed_actions,
    apply_transition,
    ensure_bound_actor,
    fold_transitions,
    resolve_transition,
)
from .visibility import DASHBOARD_STATUSES, dashboard_statuses

__all__ = [
    "DASHBOARD_STATUSES",
    "LifecycleConfig",
    "PERMIT_TRANSITIONS",
    "RENEWAL_TRANSITIONS",
    "RenewalTransition",
    "Transition",
    "allowed_actions",
    "apply_transition",
    "dashboard_statuses",
    "decide_renewal",
    "ensure_bound_actor",
    "fold_transitions",
    "get_default_lifecycle_config",
    "open_renewal",
    "resolve_renewal_transition",
    "resolve_transition",
    "validate_permit_window",
    "validate_renewal_window",
]
