"""
Permit store.

All reads and writes of permit rows go through ``PermitStore``. Writes are
compare-and-swap: a transition only lands if the row still has the status and
revision the caller loaded, and the audit entry commits in the same
transaction as the row.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..errors import (
    CollaboratorFailure,
    ConflictError,
    IdentifierCollision,
    NotFound,
    PermitError,
)
from ..schemas.enums import PermitStatus, RenewalStatus, Role
from ..schemas.permit import PermitSnapshot
from .audit_service import AuditService
from .models import PermitIdAllocationModel, PermitModel, UserModel

logger = logging.getLogger(__name__)

# Serializes identifier allocation across every store in this process
_allocation_lock = threading.Lock()


def format_permit_id(prefix: str, number: int) -> str:
    """Render the external identifier, e.g. ``WP-1001``."""
    return f"{prefix}-{number}"


def parse_permit_number(permit_id: str) -> int:
    """Numeric suffix of a permit identifier, or -1 if it has none."""
    _, _, suffix = permit_id.rpartition("-")
    return int(suffix) if suffix.isdigit() else -1


def _renewal_change(
    before: PermitSnapshot, after: PermitSnapshot
) -> Optional[Tuple[int, Optional[RenewalStatus], RenewalStatus]]:
    """The renewal entry whose state differs between two snapshots, if any."""
    if not after.renewals:
        return None
    latest = after.renewals[-1]
    previous = {r.sequence: r.status for r in before.renewals}
    old_status = previous.get(latest.sequence)
    if old_status is latest.status:
        return None
    return latest.sequence, old_status, latest.status


class PermitStore:
    """Persistence for permits, identifier allocations and users."""

    def __init__(
        self,
        db: Session,
        *,
        id_prefix: str = "WP",
        id_start: int = 1000,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.id_prefix = id_prefix
        self.id_start = id_start
        self.audit = audit or AuditService(db)

    @contextmanager
    def _guard(
        self,
        operation: str,
        permit_id: Optional[str] = None,
        collision: bool = False,
    ) -> Iterator[None]:
        """Roll back on any failure and wrap database errors."""
        try:
            yield
        except PermitError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            if collision:
                logger.warning("Permit identifier collision on %s: %s", permit_id, exc)
                raise IdentifierCollision(
                    f"Permit identifier {permit_id} is already taken",
                    permit_id=permit_id,
                ) from exc
            raise CollaboratorFailure(
                f"Constraint violated during {operation}: {exc.orig}",
                permit_id=permit_id,
            ) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Permit store failed during %s: %s", operation, exc)
            raise CollaboratorFailure(
                f"Permit store failed during {operation}", permit_id=permit_id
            ) from exc
        except PydanticValidationError as exc:
            self.db.rollback()
            logger.error("Unreadable permit row during %s: %s", operation, exc)
            raise CollaboratorFailure(
                f"Stored permit {permit_id} failed validation during {operation}",
                permit_id=permit_id,
            ) from exc

    # Identifier allocation

    def allocate_next_permit_id(self) -> str:
        """Allocate the next ``WP-<n>`` identifier.

        The allocation row commits on its own, so an identifier is burned
        even if the permit insert that follows fails.
        """
        with _allocation_lock, self._guard("allocate_next_permit_id", collision=True):
            row = PermitIdAllocationModel(allocated_at=datetime.now(timezone.utc))
            self.db.add(row)
            self.db.flush()
            permit_id = format_permit_id(self.id_prefix, self.id_start + row.id)
            row.permit_id = permit_id
            self.db.commit()

        logger.info("Allocated permit identifier %s", permit_id)
        return permit_id

    # Permits

    def insert_permit(
        self,
        snapshot: PermitSnapshot,
        *,
        actor_role: str,
        actor_id: str,
        note: Optional[str] = None,
    ) -> PermitSnapshot:
        """Insert a new permit row together with its creation audit entry."""
        with self._guard("insert_permit", snapshot.permit_id, collision=True):
            row = PermitModel.from_snapshot(snapshot)
            self.db.add(row)
            self.audit.log_create(
                "Permit",
                snapshot.permit_id,
                after={"status": snapshot.status.value, "revision": snapshot.revision},
                actor_role=actor_role,
                actor_id=actor_id,
                note=note or f"Permit {snapshot.permit_id} submitted",
                commit=False,
            )
            self.db.commit()
            self.db.refresh(row)
            return row.to_snapshot()

    def load_permit(self, permit_id: str) -> PermitSnapshot:
        """Load the current snapshot of a permit.

        Raises:
            NotFound: If no permit has this identifier
        """
        with self._guard("load_permit", permit_id):
            row = (
                self.db.query(PermitModel)
                .populate_existing()
                .filter(PermitModel.permit_id == permit_id)
                .first()
            )
            if row is None:
                raise NotFound(f"Permit {permit_id} not found", permit_id=permit_id)
            return row.to_snapshot()

    def compare_and_save_permit(
        self,
        permit_id: str,
        expected_status: PermitStatus,
        new_snapshot: PermitSnapshot,
        *,
        actor_role: str,
        actor_id: str,
        note: Optional[str] = None,
        previous: Optional[PermitSnapshot] = None,
    ) -> PermitSnapshot:
        """Persist ``new_snapshot`` if the row is unchanged since it was loaded.

        ``new_snapshot.revision`` must still be the revision that was loaded;
        the stored revision is bumped by one. Status, document, renewals and
        blob references are written in a single UPDATE.
        The committed snapshot is returned without re-reading the row, so a
        read failure after commit cannot be mistaken for a lost write.

        Raises:
            ConflictError: If the row's status or revision moved on
            CollaboratorFailure: If the database write fails
        """
        with self._guard("compare_and_save_permit", permit_id):
            now = datetime.now(timezone.utc)
            stmt = (
                update(PermitModel)
                .where(
                    PermitModel.permit_id == permit_id,
                    PermitModel.status == expected_status.value,
                    PermitModel.revision == new_snapshot.revision,
                )
                .values(
                    status=new_snapshot.status.value,
                    work_type=new_snapshot.document.work_type,
                    document=new_snapshot.document.model_dump(mode="json"),
                    renewal_history=[
                        r.model_dump(mode="json") for r in new_snapshot.renewal_history
                    ],
                    current_renewal=(
                        new_snapshot.current_renewal.model_dump(mode="json")
                        if new_snapshot.current_renewal
                        else None
                    ),
                    attachment_ref=new_snapshot.attachment_ref,
                    final_artifact_ref=new_snapshot.final_artifact_ref,
                    revision=PermitModel.revision + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                logger.warning(
                    "Compare-and-swap lost on %s (expected %s, revision %s)",
                    permit_id,
                    expected_status.value,
                    new_snapshot.revision,
                )
                raise ConflictError(
                    f"Permit {permit_id} was modified concurrently; reload and retry",
                    permit_id=permit_id,
                )

            self.audit.log_status_change(
                "Permit",
                permit_id,
                old_status=expected_status.value,
                new_status=new_snapshot.status.value,
                actor_role=actor_role,
                actor_id=actor_id,
                note=note,
                commit=False,
            )
            change = _renewal_change(previous, new_snapshot) if previous else None
            if change is not None:
                sequence, old_entry, new_entry = change
                self.audit.log_renewal_change(
                    permit_id,
                    sequence,
                    old_entry.value if old_entry else None,
                    new_entry.value,
                    actor_role=actor_role,
                    actor_id=actor_id,
                    commit=False,
                )
            self.db.commit()

        return new_snapshot.model_copy(
            update={"revision": new_snapshot.revision + 1, "updated_at": now}
        )

    def list_permits(
        self,
        *,
        requester_email: Optional[str] = None,
        reviewer_email: Optional[str] = None,
        approver_email: Optional[str] = None,
        statuses: Optional[Iterable[PermitStatus]] = None,
    ) -> List[PermitSnapshot]:
        """Full scan with optional filters, newest identifier first."""
        with self._guard("list_permits"):
            query = self.db.query(PermitModel).populate_existing()

            if requester_email:
                query = query.filter(PermitModel.requester_email == requester_email.lower())
            if reviewer_email:
                query = query.filter(PermitModel.reviewer_email == reviewer_email.lower())
            if approver_email:
                query = query.filter(PermitModel.approver_email == approver_email.lower())
            if statuses is not None:
                query = query.filter(
                    PermitModel.status.in_([status.value for status in statuses])
                )

            snapshots = [row.to_snapshot() for row in query.all()]

        snapshots.sort(key=lambda s: parse_permit_number(s.permit_id), reverse=True)
        return snapshots

    # Users

    def load_user(self, email: str) -> Optional[UserModel]:
        """Look up a user by identity."""
        with self._guard("load_user"):
            return self.db.get(UserModel, email.strip().lower())

    def add_user(self, email: str, name: str, role: Role) -> UserModel:
        """Register a user, or update the name and role of an existing one."""
        with self._guard("add_user"):
            email = email.strip().lower()
            user = self.db.get(UserModel, email)
            if user is None:
                user = UserModel(email=email, name=name, role=role.value)
                self.db.add(user)
            else:
                user.name = name
                user.role = role.value
            self.db.commit()
            self.db.refresh(user)

        logger.info("Registered %s as %s", email, role.value)
        return user

    def list_users(self, role: Optional[Role] = None) -> List[UserModel]:
        """All users, optionally of one role, ordered by name."""
        with self._guard("list_users"):
            query = self.db.query(UserModel)
            if role is not None:
                query = query.filter(UserModel.role == role.value)
            return query.order_by(UserModel.name, UserModel.email).all()
