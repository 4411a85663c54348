"""
Database package for Permit Workflow.
"""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, get_db, get_engine, get_session_local
from .models import PermitIdAllocationModel, PermitModel, UserModel
from .store import PermitStore, format_permit_id, parse_permit_number

__all__ = [
    "AuditLogModel",
    "AuditService",
    "Base",
    "PermitIdAllocationModel",
    "PermitModel",
    "PermitStore",
    "UserModel",
    "format_permit_id",
    "get_db",
    "get_engine",
    "get_session_local",
    "parse_permit_number",
]
