"""
FastAPI application for Permit Workflow.

Authentication happens upstream: every permit route trusts the
``X-Permit-Role`` and ``X-Permit-Identity`` headers it is given.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Tuple

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import get_db, init_database
from .errors import Forbidden, PermitError
from .log_config import configure_logging
from .rendering import ClosureRenderer, JsonClosureRenderer
from .schemas.enums import Role
from .schemas.permit import PermitCreate, RenewalActionRequest, TransitionRequest
from .services import PermitService, coerce_enum
from .storage.blob import BlobStore, create_blob_store

# Initialize structured logging
logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("Starting Permit Workflow", environment=settings.environment)

    try:
        await init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error("Failed to start application", error=str(e))
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="Permit Workflow",
    description="Work permit approval, renewal and closure lifecycle",
    version=importlib.metadata.version("permit-workflow"),
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PermitError)
async def permit_error_handler(request: Request, exc: PermitError) -> JSONResponse:
    """Render lifecycle errors as ``{"error": {...}}`` with their HTTP status."""
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "Permit request failed",
        path=request.url.path,
        code=exc.code,
        permit_id=exc.permit_id,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Dependencies


@lru_cache
def get_blob_store() -> BlobStore:
    """Blob store configured by BLOB_STORE_URI."""
    return create_blob_store(get_settings().blob_store_uri)


def get_renderer() -> ClosureRenderer:
    """Renderer for closure artifacts."""
    return JsonClosureRenderer(get_settings().signature_timezone)


def get_permit_service(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    renderer: ClosureRenderer = Depends(get_renderer),
) -> PermitService:
    """Request-scoped permit service."""
    return PermitService(db, blob_store, renderer)


def get_actor(
    x_permit_role: str = Header(..., description="Role the caller acts in"),
    x_permit_identity: str = Header(..., description="Verified identity of the caller"),
) -> Tuple[Role, str]:
    """Acting role and identity supplied by the authenticating proxy."""
    return coerce_enum(Role, x_permit_role, "role"), x_permit_identity


# Health and Info Endpoints
@app.get("/healthz", tags=["system"])
def healthz(db: Session = Depends(get_db)) -> Dict[str, bool]:
    """Health check endpoint, including a database round trip."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        db_ok = False
    return {"ok": True, "db": db_ok}


@app.get("/version", tags=["system"])
def version() -> Dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("permit-workflow")}


# Users
@app.get("/users", tags=["users"])
def list_users(
    service: PermitService = Depends(get_permit_service),
) -> Dict[str, List[Dict[str, Any]]]:
    """The user directory grouped by role."""
    return service.list_users()


# Permits
@app.post(
    "/permits",
    status_code=201,
    tags=["permits"],
    responses={
        201: {"description": "Permit submitted for review"},
        403: {"description": "Only Requesters may create permits"},
        422: {"description": "Invalid fields, window or users"},
    },
)
def create_permit(
    body: PermitCreate,
    actor: Tuple[Role, str] = Depends(get_actor),
    service: PermitService = Depends(get_permit_service),
) -> Dict[str, Any]:
    """Submit a new work permit."""
    role, identity = actor
    if role is not Role.REQUESTER:
        raise Forbidden(f"{role.value} cannot create permits")

    permit_id = service.create_permit(identity, body, body.valid_from, body.valid_to)
    snapshot = service.get_snapshot(permit_id)
    return {"permit_id": permit_id, "status": snapshot.status.value}


@app.get("/permits", tags=["permits"])
def list_permits(
    actor: Tuple[Role, str] = Depends(get_actor),
    service: PermitService = Depends(get_permit_service),
) -> List[Dict[str, Any]]:
    """Dashboard of the permits visible to the caller."""
    role, identity = actor
    return [snapshot.to_dict() for snapshot in service.list_permits(role, identity)]


@app.get("/permits/{permit_id}", tags=["permits"])
def get_permit(
    permit_id: str,
    service: PermitService = Depends(get_permit_service),
) -> Dict[str, Any]:
    """Get a permit by identifier."""
    return service.get_snapshot(permit_id).to_dict()


@app.post("/permits/{permit_id}/status", tags=["permits"])
def transition_permit(
    permit_id: str,
    body: TransitionRequest,
    actor: Tuple[Role, str] = Depends(get_actor),
    service: PermitService = Depends(get_permit_service),
) -> Dict[str, str]:
    """Apply a status action to a permit."""
    role, identity = actor
    status = service.transition_status(
        permit_id,
        role,
        identity,
        body.action,
        body.fields,
        comment=body.comment,
        expected_status=body.expected_status,
    )
    return {"permit_id": permit_id, "status": status.value}


@app.post("/permits/{permit_id}/renewals", tags=["renewals"])
def renewal_action(
    permit_id: str,
    body: RenewalActionRequest,
    actor: Tuple[Role, str] = Depends(get_actor),
    service: PermitService = Depends(get_permit_service),
) -> Dict[str, str]:
    """Request, review, approve or reject a renewal."""
    role, identity = actor
    status = service.submit_renewal(permit_id, role, identity, body.action, body.fields)
    return {"permit_id": permit_id, "status": status.value}


@app.get("/permits/{permit_id}/audit", tags=["permits"])
def get_audit_trail(
    permit_id: str,
    limit: int = 100,
    service: PermitService = Depends(get_permit_service),
) -> List[Dict[str, Any]]:
    """Audit history of a permit, newest first."""
    return service.get_audit_trail(permit_id, limit=limit)


@app.get("/permits/{permit_id}/closure-artifact", tags=["permits"])
def get_closure_artifact(
    permit_id: str,
    service: PermitService = Depends(get_permit_service),
) -> Response:
    """Download the certificate rendered when the permit closed."""
    content = service.get_closure_artifact(permit_id)
    return Response(content=content, media_type=service.renderer.mime_type)
