"""
Audit Log Database Models.

Every permit creation and transition is recorded with before/after status,
the acting role and identity, and an optional note.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    String,
    Text,
)
from sqlalchemy.sql import func

from .base import Base

# Who acted: one of the permit roles, or the system itself
audit_actor_role_enum = Enum(
    "Requester",
    "Reviewer",
    "Approver",
    "system",
    name="audit_actor_role",
)

audit_action_enum = Enum(
    "created",
    "status_changed",
    "renewal_changed",
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry for a permit.

    Provides:
    - Who did what to which permit, and when
    - Status and renewal state before and after the action
    """

    __tablename__ = "audit_log"

    # Primary key (ULID for sortability and uniqueness)
    id = Column(String(36), primary_key=True)

    ts = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        index=True,
    )

    actor_role = Column(audit_actor_role_enum, nullable=False)
    actor_id = Column(String(256), nullable=False, index=True)

    action = Column(audit_action_enum, nullable=False, index=True)

    entity_kind = Column(String(50), nullable=False, default="Permit")
    entity_id = Column(String(128), nullable=False, index=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)

    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_actor", "actor_role", "actor_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": self.ts.isoformat() if self.ts else None,
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
