"""Tests for the permit store."""

import pytest
from sqlalchemy.exc import OperationalError

from permit_workflow.db.models import PermitModel
from permit_workflow.db.store import format_permit_id, parse_permit_number
from permit_workflow.errors import CollaboratorFailure, ConflictError, NotFound
from permit_workflow.schemas.enums import PermitStatus, RenewalStatus, Role
from permit_workflow.schemas.permit import RenewalRecord

from conftest import APPROVER, REQUESTER, REVIEWER


def insert(store, snapshot):
    return store.insert_permit(snapshot, actor_role="Requester", actor_id=REQUESTER)


class TestPermitIds:
    """Identifier formatting helpers."""

    def test_format(self):
        assert format_permit_id("WP", 1001) == "WP-1001"

    @pytest.mark.parametrize(
        "permit_id,expected",
        [("WP-1001", 1001), ("WP-9", 9), ("HW-WP-42", 42), ("WP-", -1), ("legacy", -1)],
    )
    def test_parse(self, permit_id, expected):
        assert parse_permit_number(permit_id) == expected


class TestInsertAndLoad:
    """Inserting and loading permit rows."""

    def test_round_trip(self, store, make_snapshot):
        snapshot = make_snapshot(document={"work_type": "Cold work", "hazards": ["noise"]})
        inserted = insert(store, snapshot)

        loaded = store.load_permit("WP-1001")
        assert loaded == inserted
        assert loaded.status is PermitStatus.PENDING_REVIEW
        assert loaded.document.hazards == ["noise"]
        assert loaded.valid_from == snapshot.valid_from
        assert loaded.revision == 0

    def test_denormalized_columns(self, store, db_session, make_snapshot):
        insert(store, make_snapshot(document={"work_type": "Confined space"}))
        row = db_session.query(PermitModel).filter_by(permit_id="WP-1001").one()
        assert row.status == "Pending Review"
        assert row.work_type == "Confined space"
        assert row.reviewer_email == REVIEWER

    def test_unknown_permit(self, store):
        with pytest.raises(NotFound) as exc_info:
            store.load_permit("WP-404")
        assert exc_info.value.permit_id == "WP-404"

    def test_insert_writes_audit_entry(self, store, make_snapshot):
        insert(store, make_snapshot())
        entries = store.audit.query_by_entity("Permit", "WP-1001")
        assert len(entries) == 1
        assert entries[0].action == "created"
        assert entries[0].after == {"status": "Pending Review", "revision": 0}


class TestCompareAndSave:
    """Compare-and-swap writes."""

    def test_bumps_revision(self, store, make_snapshot):
        current = insert(store, make_snapshot())
        updated = current.model_copy(update={"status": PermitStatus.PENDING_APPROVAL})

        saved = store.compare_and_save_permit(
            "WP-1001",
            PermitStatus.PENDING_REVIEW,
            updated,
            actor_role="Reviewer",
            actor_id=REVIEWER,
        )

        assert saved.status is PermitStatus.PENDING_APPROVAL
        assert saved.revision == 1

    def test_returned_snapshot_matches_stored_row(self, store, make_snapshot):
        current = insert(store, make_snapshot())
        updated = current.model_copy(update={"status": PermitStatus.PENDING_APPROVAL})

        saved = store.compare_and_save_permit(
            "WP-1001",
            PermitStatus.PENDING_REVIEW,
            updated,
            actor_role="Reviewer",
            actor_id=REVIEWER,
        )

        stored = store.load_permit("WP-1001")
        assert saved.revision == stored.revision
        assert saved.status is stored.status
        assert saved.document == stored.document
        assert saved.updated_at is not None

    def test_stale_revision(self, store, make_snapshot):
        current = insert(store, make_snapshot())
        first = current.model_copy(update={"status": PermitStatus.PENDING_APPROVAL})
        store.compare_and_save_permit(
            "WP-1001", PermitStatus.PENDING_REVIEW, first,
            actor_role="Reviewer", actor_id=REVIEWER,
        )

        # Same expected status, but a revision that is no longer current
        second = current.model_copy(update={"status": PermitStatus.REJECTED})
        with pytest.raises(ConflictError) as exc_info:
            store.compare_and_save_permit(
                "WP-1001", PermitStatus.PENDING_APPROVAL, second,
                actor_role="Approver", actor_id=APPROVER,
            )
        assert exc_info.value.retryable
        assert store.load_permit("WP-1001").status is PermitStatus.PENDING_APPROVAL

    def test_stale_status(self, store, make_snapshot):
        current = insert(store, make_snapshot())
        with pytest.raises(ConflictError):
            store.compare_and_save_permit(
                "WP-1001",
                PermitStatus.ACTIVE,
                current.model_copy(update={"status": PermitStatus.CLOSURE_PENDING_REVIEW}),
                actor_role="Requester",
                actor_id=REQUESTER,
            )

    def test_conflict_writes_no_audit(self, store, make_snapshot):
        current = insert(store, make_snapshot())
        with pytest.raises(ConflictError):
            store.compare_and_save_permit(
                "WP-1001",
                PermitStatus.ACTIVE,
                current,
                actor_role="Requester",
                actor_id=REQUESTER,
            )
        actions = [e.action for e in store.audit.query_by_entity("Permit", "WP-1001")]
        assert actions == ["created"]

    def test_unknown_permit_is_a_conflict(self, store, make_snapshot):
        with pytest.raises(ConflictError):
            store.compare_and_save_permit(
                "WP-1001",
                PermitStatus.PENDING_REVIEW,
                make_snapshot(),
                actor_role="Reviewer",
                actor_id=REVIEWER,
            )

    def test_renewal_change_is_audited(self, store, make_snapshot):
        current = insert(store, make_snapshot(PermitStatus.ACTIVE))
        renewal = RenewalRecord(
            sequence=1,
            valid_from=current.valid_from,
            valid_to=current.valid_from.replace(hour=4),
            requested_by=REQUESTER,
            requested_at=current.valid_from,
        )
        updated = current.model_copy(
            update={
                "status": PermitStatus.RENEWAL_PENDING_REVIEW,
                "current_renewal": renewal,
            }
        )

        saved = store.compare_and_save_permit(
            "WP-1001",
            PermitStatus.ACTIVE,
            updated,
            actor_role="Requester",
            actor_id=REQUESTER,
            previous=current,
        )

        assert saved.current_renewal.status is RenewalStatus.PENDING_REVIEW
        renewal_entries = store.audit.query_by_entity("Permit", "WP-1001")
        assert "renewal_changed" in [e.action for e in renewal_entries]


class TestListPermits:
    """Dashboard queries."""

    def test_numeric_order(self, store, make_snapshot):
        for permit_id in ("WP-9", "WP-100", "WP-10"):
            insert(store, make_snapshot(permit_id=permit_id))

        listed = [s.permit_id for s in store.list_permits()]
        assert listed == ["WP-100", "WP-10", "WP-9"]

    def test_filters(self, store, make_snapshot):
        insert(store, make_snapshot(permit_id="WP-1001"))
        insert(store, make_snapshot(PermitStatus.ACTIVE, permit_id="WP-1002"))
        insert(store, make_snapshot(permit_id="WP-1003", reviewer_email="rev2@x"))

        by_reviewer = store.list_permits(reviewer_email=REVIEWER.upper())
        assert [s.permit_id for s in by_reviewer] == ["WP-1002", "WP-1001"]

        active = store.list_permits(statuses=[PermitStatus.ACTIVE])
        assert [s.permit_id for s in active] == ["WP-1002"]

        assert store.list_permits(statuses=[]) == []


class TestUsers:
    """User directory."""

    def test_add_and_load(self, store):
        store.add_user("  Rita@Site.Example ", "Rita", Role.REQUESTER)
        user = store.load_user("rita@site.example")
        assert user.name == "Rita"
        assert user.role == "Requester"

    def test_add_updates_existing(self, store):
        store.add_user("rita@x", "Rita", Role.REQUESTER)
        store.add_user("rita@x", "Rita K", Role.REVIEWER)
        users = store.list_users()
        assert len(users) == 1
        assert users[0].name == "Rita K"
        assert users[0].role == "Reviewer"

    def test_unknown_user(self, store):
        assert store.load_user("ghost@x") is None

    def test_list_by_role(self, store, users):
        reviewers = store.list_users(Role.REVIEWER)
        assert [u.name for u in reviewers] == ["Ravi Reviewer", "Second Reviewer"]


class TestStoreFailures:
    """Database errors surface as collaborator failures."""

    def test_query_failure(self, store, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store.db, "query", broken)

        with pytest.raises(CollaboratorFailure) as exc_info:
            store.load_permit("WP-1001")
        assert exc_info.value.collaborator == "store"
        assert exc_info.value.retryable

    def test_unreadable_row(self, store, db_session, make_snapshot):
        insert(store, make_snapshot())
        row = db_session.query(PermitModel).filter_by(permit_id="WP-1001").one()
        row.document = {"reviewer_remarks": "x" * 5000}
        db_session.commit()

        with pytest.raises(CollaboratorFailure) as exc_info:
            store.load_permit("WP-1001")
        assert exc_info.value.permit_id == "WP-1001"

    def test_commit_failure_rolls_back(self, store, make_snapshot, monkeypatch):
        current = insert(store, make_snapshot())

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(store.db, "commit", broken_commit)

        with pytest.raises(CollaboratorFailure):
            store.compare_and_save_permit(
                "WP-1001",
                PermitStatus.PENDING_REVIEW,
                current.model_copy(update={"status": PermitStatus.PENDING_APPROVAL}),
                actor_role="Reviewer",
                actor_id=REVIEWER,
            )

        monkeypatch.undo()
        assert store.load_permit("WP-1001").status is PermitStatus.PENDING_REVIEW
