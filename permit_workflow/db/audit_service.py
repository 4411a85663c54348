"""
Audit Log Service.

Provides a clean interface for recording audit events on permits. The permit
store writes its entries through this service inside the same transaction as
the permit row, so callers pass ``commit=False`` there.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from ..schemas.primitives import generate_ulid
from .audit_models import AuditLogModel


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_create("Permit", "WP-1001", snapshot.to_dict(), actor_role="Requester", actor_id="r@x")
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(self, entry: AuditLogModel, commit: bool) -> AuditLogModel:
        self.db.add(entry)
        if commit:
            self.db.commit()
            self.db.refresh(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_role: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        commit: bool = True,
    ) -> AuditLogModel:
        """Log the creation of an entity.

        Args:
            entity_kind: Type of entity (e.g., "Permit")
            entity_id: ID of the entity
            after: State of the entity after creation
            actor_role: Role of the actor ("Requester", "Reviewer", "Approver", "system")
            actor_id: Identity of the actor
            note: Optional human-readable note
            commit: Commit immediately; pass False to join the caller's transaction

        Returns:
            The created AuditLogModel
        """
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=datetime.now(timezone.utc),
            actor_role=actor_role,
            actor_id=actor_id,
            action="created",
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=None,
            after=after,
            note=note,
        )
        return self._record(entry, commit)

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_role: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        commit: bool = True,
    ) -> AuditLogModel:
        """Log a status change on an entity.

        Returns:
            The created AuditLogModel
        """
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=datetime.now(timezone.utc),
            actor_role=actor_role,
            actor_id=actor_id,
            action="status_changed",
            entity_kind=entity_kind,
            entity_id=entity_id,
            before={"status": old_status},
            after={"status": new_status},
            note=note or f"Status changed: {old_status} -> {new_status}",
        )
        return self._record(entry, commit)

    def log_renewal_change(
        self,
        entity_id: str,
        sequence: int,
        old_status: Optional[str],
        new_status: str,
        actor_role: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        commit: bool = True,
    ) -> AuditLogModel:
        """Log a renewal entry moving between states on a permit."""
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=datetime.now(timezone.utc),
            actor_role=actor_role,
            actor_id=actor_id,
            action="renewal_changed",
            entity_kind="Permit",
            entity_id=entity_id,
            before={"renewal": sequence, "status": old_status},
            after={"renewal": sequence, "status": new_status},
            note=note or f"Renewal {sequence}: {old_status or 'new'} -> {new_status}",
        )
        return self._record(entry, commit)

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity.

        Args:
            entity_kind: Type of entity
            entity_id: ID of the entity
            limit: Maximum number of entries to return
            offset: Number of entries to skip
            newest_first: Sort order by timestamp

        Returns:
            List of AuditLogModel entries
        """
        order = desc if newest_first else asc
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(order(AuditLogModel.ts), order(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_actor(
        self,
        actor_role: str,
        actor_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get all audit entries by a specific actor, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.actor_role == actor_role,
                AuditLogModel.actor_id == actor_id,
            )
            .order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_recent(
        self,
        limit: int = 50,
        entity_kind: Optional[str] = None,
    ) -> List[AuditLogModel]:
        """Get most recent audit entries.

        Args:
            limit: Maximum number of entries to return
            entity_kind: Optional filter by entity type

        Returns:
            List of AuditLogModel entries, newest first
        """
        query = self.db.query(AuditLogModel)

        if entity_kind:
            query = query.filter(AuditLogModel.entity_kind == entity_kind)

        return query.order_by(desc(AuditLogModel.ts)).limit(limit).all()
