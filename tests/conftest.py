"""Test configuration and fixtures."""

from datetime import datetime, timezone
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from permit_workflow.db import audit_models, models  # noqa: F401
from permit_workflow.db.base import Base
from permit_workflow.db.store import PermitStore
from permit_workflow.lifecycle import LifecycleConfig
from permit_workflow.rendering import JsonClosureRenderer
from permit_workflow.schemas.enums import PermitStatus, Role
from permit_workflow.schemas.permit import PermitDocument, PermitSnapshot
from permit_workflow.services import PermitLocks, PermitService
from permit_workflow.storage.blob import MemoryBlobStore

REQUESTER = "req@x"
REVIEWER = "rev@x"
APPROVER = "app@x"
OTHER_REVIEWER = "rev2@x"

# Permit window used by the WP-1001 scenario
PERMIT_FROM = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
PERMIT_TO = datetime(2024, 1, 3, 0, 0, tzinfo=timezone.utc)

FIXED_NOW = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)


def make_engine():
    """In-memory SQLite shared across threads and sessions."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create a fresh in-memory database for each test."""
    engine = make_engine()
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def store(db_session) -> PermitStore:
    """Permit store with the default WP prefix and start."""
    return PermitStore(db_session, id_prefix="WP", id_start=1000)


@pytest.fixture
def users(store) -> None:
    """Seed one user per role, plus a second reviewer."""
    store.add_user(REQUESTER, "Rita Requester", Role.REQUESTER)
    store.add_user(REVIEWER, "Ravi Reviewer", Role.REVIEWER)
    store.add_user(APPROVER, "Anu Approver", Role.APPROVER)
    store.add_user(OTHER_REVIEWER, "Second Reviewer", Role.REVIEWER)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def service(db_session, store, users, blob_store) -> PermitService:
    """Permit service over the in-memory database with a fixed clock."""
    return PermitService(
        db_session,
        blob_store,
        JsonClosureRenderer("Asia/Kolkata"),
        lifecycle_config=LifecycleConfig(),
        clock=lambda: FIXED_NOW,
        store=store,
        locks=PermitLocks(),
    )


@pytest.fixture
def permit_fields() -> dict:
    """Minimal valid creation fields."""
    return {
        "reviewer_email": REVIEWER,
        "approver_email": APPROVER,
        "work_type": "Hot work",
        "location": "Tank farm B",
        "hazards": ["flammable vapour"],
    }


@pytest.fixture
def new_permit(service, permit_fields) -> Callable[..., str]:
    """Factory creating a permit in Pending Review; returns its identifier."""

    def _create(**overrides) -> str:
        fields = {**permit_fields, **overrides}
        return service.create_permit(REQUESTER, fields, PERMIT_FROM, PERMIT_TO)

    return _create


@pytest.fixture
def active_permit(service, new_permit) -> str:
    """A permit reviewed and approved, now Active."""
    permit_id = new_permit()
    service.transition_status(permit_id, Role.REVIEWER, REVIEWER, "review")
    service.transition_status(permit_id, Role.APPROVER, APPROVER, "approve")
    return permit_id


@pytest.fixture
def make_snapshot() -> Callable[..., PermitSnapshot]:
    """Factory for in-memory snapshots, for the pure lifecycle tests."""

    def _make(status: PermitStatus = PermitStatus.PENDING_REVIEW, **overrides) -> PermitSnapshot:
        values = dict(
            permit_id="WP-1001",
            status=status,
            requester_email=REQUESTER,
            reviewer_email=REVIEWER,
            approver_email=APPROVER,
            valid_from=PERMIT_FROM,
            valid_to=PERMIT_TO,
            document=PermitDocument(work_type="Hot work"),
        )
        values.update(overrides)
        return PermitSnapshot(**values)

    return _make
