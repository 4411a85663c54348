"""
Permit service: the read-modify-write orchestration around the lifecycle.

Every mutating call follows the same path:

    load snapshot -> validate -> compute next snapshot -> compare-and-save

The lifecycle package does the validating and computing; the store does the
loading and saving; this module sequences them, holds the per-permit lock,
and keeps the blob store consistent with what was committed.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.store import PermitStore
from .errors import CollaboratorFailure, ConflictError, NotFound, PermitError, ValidationError
from .lifecycle import (
    LifecycleConfig,
    apply_transition,
    dashboard_statuses,
    decide_renewal,
    ensure_bound_actor,
    open_renewal,
    resolve_renewal_transition,
    resolve_transition,
    validate_permit_window,
    validate_renewal_window,
)
from .rendering import ClosureRenderer, JsonClosureRenderer
from .schemas.enums import PermitAction, PermitStatus, RenewalAction, Role
from .schemas.permit import (
    ActionComment,
    DocumentPatch,
    PermitDocument,
    PermitFields,
    PermitSnapshot,
    RenewalDecision,
    RenewalRequest,
)
from .schemas.primitives import Attachment, as_utc, utc_now
from .storage.blob import BlobStore

logger = structlog.get_logger()

E = TypeVar("E", bound=Enum)
M = TypeVar("M", bound=BaseModel)


class PermitLocks:
    """Per-permit locks for this process.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the registry only grows with the number of permits in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, permit_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(permit_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[permit_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every service instance in the process
permit_locks = PermitLocks()


def coerce_enum(enum_cls: Type[E], value: Union[E, str], what: str) -> E:
    """Accept an enum member, its value or its name (case-insensitive)."""
    if isinstance(value, enum_cls):
        return value
    wanted = str(value).strip().lower()
    for member in enum_cls:
        if wanted in (member.value.lower(), member.name.lower()):
            return member
    allowed = ", ".join(member.value for member in enum_cls)
    raise ValidationError(f"Unknown {what} '{value}' (expected one of: {allowed})")


def _parse(
    model_cls: Type[M], data: Union[M, Dict[str, Any], None], permit_id: Optional[str] = None
) -> M:
    """Validate input into ``model_cls``, reporting problems as ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(problems, permit_id=permit_id) from exc


def _identity(value: str) -> str:
    identity = (value or "").strip().lower()
    if not identity:
        raise ValidationError("Acting identity is required")
    return identity


class PermitService:
    """Work permit lifecycle operations.

    Usage:
        service = PermitService(db_session, create_blob_store(settings.blob_store_uri))
        permit_id = service.create_permit("requester@site", fields, start, end)
        service.transition_status(permit_id, "Reviewer", "reviewer@site", "review", {})
    """

    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        renderer: Optional[ClosureRenderer] = None,
        *,
        lifecycle_config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        store: Optional[PermitStore] = None,
        locks: Optional[PermitLocks] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.db = db
        self.store = store or PermitStore(
            db,
            id_prefix=settings.permit_id_prefix,
            id_start=settings.permit_id_start,
        )
        self.blob_store = blob_store
        self.renderer = renderer or JsonClosureRenderer(settings.signature_timezone)
        self.lifecycle_config = lifecycle_config or LifecycleConfig(
            max_permit_span_hours=settings.max_permit_span_hours,
            max_renewal_hours=settings.max_renewal_hours,
        )
        self.clock = clock
        self.locks = locks or permit_locks

    # Creation

    def create_permit(
        self,
        requester_identity: str,
        fields: Union[PermitFields, Dict[str, Any]],
        valid_from: datetime,
        valid_to: datetime,
        attachment: Optional[Attachment] = None,
    ) -> str:
        """Submit a new permit in ``Pending Review`` and return its identifier.

        Raises:
            ValidationError: Bad fields, bad window, or unknown/mismatched users
            IdentifierCollision: The allocated identifier was already taken
            CollaboratorFailure: Store or blob store failed
        """
        requester = _identity(requester_identity)
        fields = _parse(PermitFields, fields)
        valid_from, valid_to = as_utc(valid_from), as_utc(valid_to)
        validate_permit_window(valid_from, valid_to, self.lifecycle_config)

        reviewer = fields.reviewer_email.lower()
        approver = fields.approver_email.lower()
        self._require_user(requester, Role.REQUESTER)
        self._require_user(reviewer, Role.REVIEWER)
        self._require_user(approver, Role.APPROVER)

        permit_id = self.store.allocate_next_permit_id()
        log = logger.bind(permit_id=permit_id, requester=requester)

        attachment_ref = None
        if attachment is not None:
            attachment_ref = f"{permit_id}/attachment/{attachment.filename}"
            self.blob_store.put_object(attachment_ref, attachment.content, attachment.mime_type)

        now = self.clock()
        document = PermitDocument.model_validate(
            fields.model_dump(include=set(DocumentPatch.model_fields), exclude_none=True)
        )
        snapshot = PermitSnapshot(
            permit_id=permit_id,
            status=PermitStatus.PENDING_REVIEW,
            requester_email=requester,
            reviewer_email=reviewer,
            approver_email=approver,
            valid_from=valid_from,
            valid_to=valid_to,
            document=document,
            attachment_ref=attachment_ref,
            created_at=now,
            updated_at=now,
        )

        try:
            self.store.insert_permit(
                snapshot, actor_role=Role.REQUESTER.value, actor_id=requester
            )
        except PermitError as exc:
            log.error("permit_create_failed", error=exc.code)
            if attachment_ref:
                self._discard_blob(attachment_ref)
            raise

        log.info("permit_created", status=snapshot.status.value)
        return permit_id

    def _require_user(self, email: str, role: Role) -> None:
        user = self.store.load_user(email)
        if user is None:
            raise ValidationError(f"{email} is not a registered user")
        if user.role != role.value:
            raise ValidationError(
                f"{email} is registered as {user.role}, not {role.value}"
            )

    # Status transitions

    def transition_status(
        self,
        permit_id: str,
        acting_role: Union[Role, str],
        acting_identity: str,
        action: Union[PermitAction, str],
        field_patch: Union[DocumentPatch, Dict[str, Any], None] = None,
        comment: Optional[str] = None,
        expected_status: Union[PermitStatus, str, None] = None,
    ) -> PermitStatus:
        """Apply one row of the permit transition table and return the new status.

        Raises:
            NotFound: Unknown permit
            IllegalTransition: Action not allowed for this status/role/identity
            ValidationError: Bad field patch or unknown enum value
            ConflictError: ``expected_status`` is stale or another write won
            CollaboratorFailure: Store, blob store or renderer failed
        """
        role = coerce_enum(Role, acting_role, "role")
        action = coerce_enum(PermitAction, action, "action")
        identity = _identity(acting_identity)
        patch = _parse(DocumentPatch, field_patch, permit_id)
        comment = _parse(ActionComment, {"comment": comment}, permit_id).comment
        expected = (
            coerce_enum(PermitStatus, expected_status, "status")
            if expected_status is not None
            else None
        )
        log = logger.bind(
            permit_id=permit_id, role=role.value, action=action.value, actor=identity
        )

        with self.locks.hold(permit_id):
            current = self.store.load_permit(permit_id)
            if expected is not None and current.status is not expected:
                log.warning(
                    "permit_status_stale",
                    expected=expected.value,
                    actual=current.status.value,
                )
                raise ConflictError(
                    f"Permit {permit_id} is '{current.status.value}', "
                    f"not '{expected.value}'",
                    permit_id=permit_id,
                )

            transition = resolve_transition(current.status, role, action)
            ensure_bound_actor(current, role, identity)

            updated = apply_transition(
                current,
                transition,
                identity=identity,
                now=self.clock(),
                patch=patch,
                comment=comment,
            )

            artifact_ref = None
            if updated.status is PermitStatus.CLOSED:
                artifact_ref = self._store_closure_artifact(updated)
                updated = updated.model_copy(update={"final_artifact_ref": artifact_ref})

            try:
                saved = self.store.compare_and_save_permit(
                    permit_id,
                    current.status,
                    updated,
                    actor_role=role.value,
                    actor_id=identity,
                    note=comment,
                    previous=current,
                )
            except PermitError as exc:
                log.warning("permit_transition_failed", error=exc.code)
                if artifact_ref:
                    self._discard_blob(artifact_ref)
                raise

        log.info(
            "permit_transition",
            old_status=current.status.value,
            new_status=saved.status.value,
            revision=saved.revision,
        )
        return saved.status

    def _store_closure_artifact(self, snapshot: PermitSnapshot) -> str:
        """Render the final artifact and upload it; return its blob name."""
        try:
            content = self.renderer.render_closure_artifact(snapshot)
        except PermitError:
            raise
        except Exception as exc:
            logger.error(
                "closure_render_failed", permit_id=snapshot.permit_id, error=str(exc)
            )
            raise CollaboratorFailure(
                f"Rendering the closure artifact of {snapshot.permit_id} failed",
                collaborator="renderer",
                permit_id=snapshot.permit_id,
            ) from exc

        name = self.renderer.artifact_name(snapshot)
        url = self.blob_store.put_object(name, content, self.renderer.mime_type)
        logger.info("closure_artifact_stored", permit_id=snapshot.permit_id, url=url)
        return name

    def _discard_blob(self, name: str) -> None:
        try:
            self.blob_store.delete_object(name)
        except PermitError as exc:
            # The original failure is what the caller needs to see
            logger.warning("blob_cleanup_failed", blob=name, error=exc.message)

    # Renewals

    def submit_renewal(
        self,
        permit_id: str,
        acting_role: Union[Role, str],
        acting_identity: str,
        action: Union[RenewalAction, str],
        renewal_fields: Optional[Dict[str, Any]] = None,
    ) -> PermitStatus:
        """Request, review, approve or reject a renewal; return the permit status.

        A ``request`` takes the window and gas readings (``RenewalRequest``);
        the other actions take an optional ``comment`` and ``rejection_reason``.

        Raises:
            NotFound, IllegalTransition, ValidationError, ConflictError,
            CollaboratorFailure
        """
        role = coerce_enum(Role, acting_role, "role")
        action = coerce_enum(RenewalAction, action, "renewal action")
        identity = _identity(acting_identity)
        log = logger.bind(
            permit_id=permit_id, role=role.value, action=action.value, actor=identity
        )

        with self.locks.hold(permit_id):
            current = self.store.load_permit(permit_id)
            transition = resolve_renewal_transition(current, role, action)
            ensure_bound_actor(current, role, identity)
            now = self.clock()

            if action is RenewalAction.REQUEST:
                request = _parse(RenewalRequest, renewal_fields, permit_id)
                validate_renewal_window(current, request, self.lifecycle_config)
                updated = open_renewal(current, transition, request, identity=identity, now=now)
            else:
                decision = _parse(RenewalDecision, renewal_fields, permit_id)
                updated = decide_renewal(current, transition, decision, identity=identity, now=now)

            saved = self.store.compare_and_save_permit(
                permit_id,
                current.status,
                updated,
                actor_role=role.value,
                actor_id=identity,
                note=f"Renewal {action.value}",
                previous=current,
            )

        log.info(
            "renewal_transition",
            old_status=current.status.value,
            new_status=saved.status.value,
            renewal=transition.next_entry_status.value,
        )
        return saved.status

    # Reads

    def get_snapshot(self, permit_id: str) -> PermitSnapshot:
        """Current snapshot of a permit.

        Raises:
            NotFound: Unknown permit
        """
        return self.store.load_permit(permit_id)

    def list_permits(self, role: Union[Role, str], identity: str) -> List[PermitSnapshot]:
        """Dashboard for ``identity`` acting as ``role``, newest identifier first."""
        role = coerce_enum(Role, role, "role")
        identity = _identity(identity)
        statuses = dashboard_statuses(role)

        if role is Role.REQUESTER:
            return self.store.list_permits(requester_email=identity, statuses=statuses)
        if role is Role.REVIEWER:
            return self.store.list_permits(reviewer_email=identity, statuses=statuses)
        return self.store.list_permits(approver_email=identity, statuses=statuses)

    def get_audit_trail(self, permit_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Audit entries of a permit, newest first."""
        self.store.load_permit(permit_id)
        entries = self.store.audit.query_by_entity("Permit", permit_id, limit=limit)
        return [entry.to_dict() for entry in entries]

    def list_users(self) -> Dict[str, List[Dict[str, Any]]]:
        """The user directory grouped by role."""
        grouped: Dict[str, List[Dict[str, Any]]] = {role.value: [] for role in Role}
        for user in self.store.list_users():
            grouped[user.role].append(user.to_dict())
        return grouped

    def get_closure_artifact(self, permit_id: str) -> bytes:
        """Bytes of the artifact rendered when the permit closed.

        Raises:
            NotFound: Unknown permit, or the permit has not been closed
        """
        snapshot = self.store.load_permit(permit_id)
        if not snapshot.final_artifact_ref:
            raise NotFound(
                f"Permit {permit_id} has no closure artifact", permit_id=permit_id
            )
        return self.blob_store.get_object(snapshot.final_artifact_ref)
