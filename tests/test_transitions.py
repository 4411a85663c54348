"""Unit tests for the permit status state machine."""

import itertools
from datetime import datetime, timezone

import pytest

from permit_workflow.errors import IllegalTransition, ValidationError
from permit_workflow.lifecycle import (
    PERMIT_TRANSITIONS,
    allowed_actions,
    apply_transition,
    ensure_bound_actor,
    fold_transitions,
    resolve_transition,
)
from permit_workflow.lifecycle.transitions import DEFAULT_REJECTION_REASON
from permit_workflow.schemas.enums import PermitAction, PermitStatus, Role
from permit_workflow.schemas.permit import DocumentPatch
from permit_workflow.schemas.primitives import Signature

from conftest import APPROVER, REQUESTER, REVIEWER

NOW = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)

S = PermitStatus
A = PermitAction

EXPECTED_ROWS = {
    (S.PENDING_REVIEW, Role.REVIEWER, A.REJECT): S.REJECTED,
    (S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW): S.PENDING_APPROVAL,
    (S.PENDING_APPROVAL, Role.APPROVER, A.REJECT): S.REJECTED,
    (S.PENDING_APPROVAL, Role.APPROVER, A.APPROVE): S.ACTIVE,
    (S.ACTIVE, Role.REQUESTER, A.INITIATE_CLOSURE): S.CLOSURE_PENDING_REVIEW,
    (S.CLOSURE_PENDING_REVIEW, Role.REVIEWER, A.APPROVE_CLOSURE): S.CLOSURE_PENDING_APPROVAL,
    (S.CLOSURE_PENDING_REVIEW, Role.REVIEWER, A.REJECT_CLOSURE): S.ACTIVE,
    (S.CLOSURE_PENDING_APPROVAL, Role.APPROVER, A.APPROVE): S.CLOSED,
    (S.CLOSURE_PENDING_APPROVAL, Role.APPROVER, A.REJECT_CLOSURE): S.ACTIVE,
}

ALL_TRIPLES = list(itertools.product(PermitStatus, Role, PermitAction))


class TestTransitionTable:
    """The table is exactly the documented nine rows."""

    def test_table_matches_rows(self):
        assert {key: t.to_status for key, t in PERMIT_TRANSITIONS.items()} == EXPECTED_ROWS

    @pytest.mark.parametrize("key,expected", list(EXPECTED_ROWS.items()))
    def test_resolve_each_row(self, key, expected):
        assert resolve_transition(*key).to_status is expected

    @pytest.mark.parametrize(
        "triple", [t for t in ALL_TRIPLES if t not in EXPECTED_ROWS]
    )
    def test_every_other_triple_is_illegal(self, triple):
        with pytest.raises(IllegalTransition):
            resolve_transition(*triple)

    @pytest.mark.parametrize("status", [S.CLOSED, S.REJECTED])
    def test_terminal_statuses_have_no_actions(self, status):
        for role in Role:
            assert allowed_actions(status, role) == []

    def test_illegal_message_lists_allowed_actions(self):
        with pytest.raises(IllegalTransition) as exc_info:
            resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.APPROVE)
        assert "review" in exc_info.value.message
        assert "reject" in exc_info.value.message

    def test_initiate_closure_only_from_active(self):
        with pytest.raises(IllegalTransition):
            resolve_transition(S.PENDING_REVIEW, Role.REQUESTER, A.INITIATE_CLOSURE)


class TestFold:
    """Status after a valid sequence is the fold of the table."""

    def test_happy_path_to_closed(self):
        steps = [
            (Role.REVIEWER, A.REVIEW),
            (Role.APPROVER, A.APPROVE),
            (Role.REQUESTER, A.INITIATE_CLOSURE),
            (Role.REVIEWER, A.APPROVE_CLOSURE),
            (Role.APPROVER, A.APPROVE),
        ]
        assert fold_transitions(S.PENDING_REVIEW, steps) is S.CLOSED

    def test_closure_rejection_loops_back_to_active(self):
        steps = [
            (Role.REVIEWER, A.REVIEW),
            (Role.APPROVER, A.APPROVE),
            (Role.REQUESTER, A.INITIATE_CLOSURE),
            (Role.REVIEWER, A.REJECT_CLOSURE),
            (Role.REQUESTER, A.INITIATE_CLOSURE),
            (Role.REVIEWER, A.APPROVE_CLOSURE),
            (Role.APPROVER, A.REJECT_CLOSURE),
        ]
        assert fold_transitions(S.PENDING_REVIEW, steps) is S.ACTIVE

    def test_all_random_walks_match_table(self):
        """Every walk of up to four legal steps agrees with step-by-step lookup."""

        def walks(status, depth):
            yield status, []
            if depth == 0:
                return
            for (from_status, role, action), to_status in EXPECTED_ROWS.items():
                if from_status is status:
                    for end, rest in walks(to_status, depth - 1):
                        yield end, [(role, action)] + rest

        for end, steps in walks(S.PENDING_REVIEW, 4):
            assert fold_transitions(S.PENDING_REVIEW, steps) is end

    def test_fold_stops_at_first_illegal_step(self):
        with pytest.raises(IllegalTransition):
            fold_transitions(
                S.PENDING_REVIEW,
                [(Role.REVIEWER, A.REJECT), (Role.REVIEWER, A.REVIEW)],
            )


class TestBoundActor:
    """Only the identity bound at creation may act in a role."""

    def test_bound_identity_passes(self, make_snapshot):
        ensure_bound_actor(make_snapshot(), Role.REVIEWER, REVIEWER)

    def test_comparison_ignores_case_and_whitespace(self, make_snapshot):
        ensure_bound_actor(make_snapshot(), Role.APPROVER, f"  {APPROVER.upper()} ")

    def test_other_identity_is_illegal(self, make_snapshot):
        with pytest.raises(IllegalTransition) as exc_info:
            ensure_bound_actor(make_snapshot(), Role.REVIEWER, "intruder@x")
        assert exc_info.value.permit_id == "WP-1001"

    def test_identity_bound_to_other_role_is_illegal(self, make_snapshot):
        with pytest.raises(IllegalTransition):
            ensure_bound_actor(make_snapshot(), Role.APPROVER, REVIEWER)


class TestApplyTransition:
    """Side effects of each kind of row."""

    def test_review_stamps_signature_and_remarks(self, make_snapshot):
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW)
        result = apply_transition(
            make_snapshot(), transition, identity=REVIEWER, now=NOW, comment="Looks safe"
        )

        assert result.status is S.PENDING_APPROVAL
        assert result.document.reviewer_signature == Signature(
            signed_by=REVIEWER, role=Role.REVIEWER, signed_at=NOW
        )
        assert result.document.reviewer_remarks == "Looks safe"

    def test_reject_appends_remark_with_stage(self, make_snapshot):
        snapshot = make_snapshot(S.PENDING_APPROVAL)
        transition = resolve_transition(S.PENDING_APPROVAL, Role.APPROVER, A.REJECT)
        result = apply_transition(
            snapshot, transition, identity=APPROVER, now=NOW, comment="No gas test"
        )

        assert result.status is S.REJECTED
        assert len(result.document.rejections) == 1
        remark = result.document.rejections[0]
        assert remark.rejected_by == APPROVER
        assert remark.stage is S.PENDING_APPROVAL
        assert remark.reason == "No gas test"

    def test_reject_without_comment_uses_placeholder(self, make_snapshot):
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REJECT)
        result = apply_transition(make_snapshot(), transition, identity=REVIEWER, now=NOW)
        assert result.document.rejections[0].reason == DEFAULT_REJECTION_REASON

    def test_patch_is_merged_before_side_effect(self, make_snapshot):
        snapshot = make_snapshot(
            document={"work_type": "Hot work", "checklist": {"q1": "yes", "q2": "no"}}
        )
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW)
        patch = DocumentPatch(checklist={"q2": "yes"}, location="Pump house")

        result = apply_transition(
            snapshot, transition, identity=REVIEWER, now=NOW, patch=patch
        )

        assert result.document.checklist == {"q1": "yes", "q2": "yes"}
        assert result.document.location == "Pump house"
        assert result.document.work_type == "Hot work"
        assert result.document.reviewer_signature is not None

    def test_closure_rejection_discards_closure_fields(self, make_snapshot):
        snapshot = make_snapshot(S.ACTIVE)
        closing = apply_transition(
            snapshot,
            resolve_transition(S.ACTIVE, Role.REQUESTER, A.INITIATE_CLOSURE),
            identity=REQUESTER,
            now=NOW,
            comment="Work complete",
        )
        assert closing.document.closure_receiver_signature is not None

        reopened = apply_transition(
            closing,
            resolve_transition(S.CLOSURE_PENDING_REVIEW, Role.REVIEWER, A.REJECT_CLOSURE),
            identity=REVIEWER,
            now=NOW,
        )

        assert reopened.status is S.ACTIVE
        assert reopened.document.closure_receiver_signature is None
        assert reopened.document.closure_receiver_remarks is None

    def test_input_snapshot_is_not_modified(self, make_snapshot):
        snapshot = make_snapshot()
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW)
        apply_transition(snapshot, transition, identity=REVIEWER, now=NOW)
        assert snapshot.status is S.PENDING_REVIEW
        assert snapshot.document.reviewer_signature is None

    def test_status_mismatch_is_illegal(self, make_snapshot):
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW)
        with pytest.raises(IllegalTransition):
            apply_transition(
                make_snapshot(S.ACTIVE), transition, identity=REVIEWER, now=NOW
            )

    def test_oversized_comment_is_a_validation_error(self, make_snapshot):
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REVIEW)
        with pytest.raises(ValidationError) as exc_info:
            apply_transition(
                make_snapshot(), transition, identity=REVIEWER, now=NOW, comment="x" * 5000
            )
        assert exc_info.value.permit_id == "WP-1001"

    def test_oversized_rejection_reason_is_a_validation_error(self, make_snapshot):
        transition = resolve_transition(S.PENDING_REVIEW, Role.REVIEWER, A.REJECT)
        with pytest.raises(ValidationError):
            apply_transition(
                make_snapshot(), transition, identity=REVIEWER, now=NOW, comment="x" * 5000
            )
