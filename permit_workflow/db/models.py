"""
SQLAlchemy models for Permit Workflow.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
)
from sqlalchemy.sql import func

from ..schemas.enums import PermitStatus, Role
from ..schemas.permit import PermitDocument, PermitSnapshot, RenewalRecord
from ..schemas.primitives import as_utc
from .base import Base

permit_status_enum = Enum(
    *[status.value for status in PermitStatus],
    name="permit_status",
)

user_role_enum = Enum(
    *[role.value for role in Role],
    name="user_role",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


class PermitIdAllocationModel(Base):
    """One row per allocated permit identifier.

    The auto-increment key is the only source of permit numbers, so two
    concurrent allocations can never read the same "last id". Rows are
    committed before the permit row is written and never deleted, which keeps
    identifiers unique even when creation fails afterwards.
    """

    __tablename__ = "permit_id_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    permit_id = Column(String(32), nullable=True, unique=True)
    allocated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    # SQLite AUTOINCREMENT: never reuse a key, even after the max row goes away
    __table_args__ = ({"sqlite_autoincrement": True},)


class PermitModel(Base):
    """SQLAlchemy model for work permits.

    Structured columns hold what dashboards filter on; the document and the
    renewals are stored as JSON and always written together with ``status``
    and ``revision`` in one UPDATE.
    """

    __tablename__ = "permits"

    # Internal row id, never used for lookups
    id = Column(Integer, primary_key=True, autoincrement=True)
    permit_id = Column(String(32), nullable=False, unique=True, index=True)

    status = Column(
        permit_status_enum,
        nullable=False,
        default=PermitStatus.PENDING_REVIEW.value,
        index=True,
    )
    work_type = Column(String(256), nullable=True)

    # Identities bound at creation
    requester_email = Column(String(256), nullable=False, index=True)
    reviewer_email = Column(String(256), nullable=False, index=True)
    approver_email = Column(String(256), nullable=False, index=True)

    # Active window
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_to = Column(DateTime(timezone=True), nullable=False)

    # Document and renewals
    document = Column(JSON, nullable=False, default=dict)
    renewal_history = Column(JSON, nullable=False, default=list)
    current_renewal = Column(JSON, nullable=True)

    # Blob references
    attachment_ref = Column(String(512), nullable=True)
    final_artifact_ref = Column(String(512), nullable=True)

    # Compare-and-swap token, bumped on every committed write
    revision = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_permits_reviewer_status", "reviewer_email", "status"),
        Index("ix_permits_approver_status", "approver_email", "status"),
    )

    @classmethod
    def from_snapshot(cls, snapshot: PermitSnapshot) -> "PermitModel":
        """Build a new row from a snapshot."""
        row = cls(
            permit_id=snapshot.permit_id,
            status=snapshot.status.value,
            work_type=snapshot.document.work_type,
            requester_email=snapshot.requester_email,
            reviewer_email=snapshot.reviewer_email,
            approver_email=snapshot.approver_email,
            valid_from=snapshot.valid_from,
            valid_to=snapshot.valid_to,
            document=snapshot.document.model_dump(mode="json"),
            renewal_history=[r.model_dump(mode="json") for r in snapshot.renewal_history],
            current_renewal=(
                snapshot.current_renewal.model_dump(mode="json")
                if snapshot.current_renewal
                else None
            ),
            attachment_ref=snapshot.attachment_ref,
            final_artifact_ref=snapshot.final_artifact_ref,
            revision=snapshot.revision,
        )
        # Unset timestamps fall back to the column defaults
        if snapshot.created_at is not None:
            row.created_at = snapshot.created_at
        if snapshot.updated_at is not None:
            row.updated_at = snapshot.updated_at
        return row

    def to_snapshot(self) -> PermitSnapshot:
        """Convert the row to a read-only snapshot."""
        return PermitSnapshot(
            permit_id=self.permit_id,
            status=PermitStatus(self.status),
            requester_email=self.requester_email,
            reviewer_email=self.reviewer_email,
            approver_email=self.approver_email,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            document=PermitDocument.model_validate(self.document or {}),
            renewal_history=[
                RenewalRecord.model_validate(r) for r in (self.renewal_history or [])
            ],
            current_renewal=(
                RenewalRecord.model_validate(self.current_renewal)
                if self.current_renewal
                else None
            ),
            attachment_ref=self.attachment_ref,
            final_artifact_ref=self.final_artifact_ref,
            revision=self.revision,
            created_at=as_utc(self.created_at) if self.created_at else None,
            updated_at=as_utc(self.updated_at) if self.updated_at else None,
        )


class UserModel(Base):
    """SQLAlchemy model for the user directory."""

    __tablename__ = "users"

    email = Column(String(256), primary_key=True)
    name = Column(String(256), nullable=False)
    role = Column(user_role_enum, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": _iso(self.created_at),
        }
