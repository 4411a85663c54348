"""
Common primitives shared by the permit schemas.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated
from zoneinfo import ZoneInfo

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, constr
from ulid import ULID

from .enums import Role


def generate_ulid() -> str:
    """Generate a ULID for audit and object IDs.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

Identity = constr(strip_whitespace=True, min_length=1, max_length=256)


class Signature(BaseModel):
    """Who signed a step of the permit and when."""

    model_config = ConfigDict(extra="forbid")

    signed_by: Identity = Field(..., description="Identity of the signer")
    role: Role = Field(..., description="Role the signer acted in")
    signed_at: UtcDatetime = Field(..., description="When the step was signed (UTC)")

    def display(self, tz_name: str = "UTC") -> str:
        """Render as '<signer> on <local time>' the way permit forms print it."""
        local = self.signed_at.astimezone(ZoneInfo(tz_name))
        return f"{self.signed_by} on {local:%d/%m/%Y, %H:%M:%S}"


class Attachment(BaseModel):
    """An uploaded file that accompanies a new permit."""

    filename: constr(min_length=1, max_length=256)
    content: bytes
    mime_type: str = "application/octet-stream"
