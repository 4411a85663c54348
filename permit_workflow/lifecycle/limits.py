"""
Time-window limits for permits and renewals.

Pure functions: no DB access, no request objects. Callers pass a
``LifecycleConfig`` or get one built from the application settings.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from ..errors import ValidationError

MAX_PERMIT_SPAN_HOURS = 168
MAX_RENEWAL_HOURS = 8


class LifecycleConfig(BaseModel):
    """Limits enforced by the lifecycle validators."""

    max_permit_span_hours: int = MAX_PERMIT_SPAN_HOURS
    max_renewal_hours: int = MAX_RENEWAL_HOURS

    @property
    def max_permit_span(self) -> timedelta:
        return timedelta(hours=self.max_permit_span_hours)

    @property
    def max_renewal_span(self) -> timedelta:
        return timedelta(hours=self.max_renewal_hours)


def get_default_lifecycle_config() -> LifecycleConfig:
    """Build the lifecycle config from environment settings.

    Lazy-loads the settings to avoid circular imports.
    """
    from ..config import get_settings

    settings = get_settings()
    return LifecycleConfig(
        max_permit_span_hours=settings.max_permit_span_hours,
        max_renewal_hours=settings.max_renewal_hours,
    )


def validate_permit_window(
    valid_from: datetime,
    valid_to: datetime,
    config: Optional[LifecycleConfig] = None,
) -> None:
    """Check a permit's active window.

    Raises:
        ValidationError: If the window is empty, inverted or too long
    """
    config = config or get_default_lifecycle_config()

    if valid_to <= valid_from:
        raise ValidationError(
            f"validTo ({valid_to.isoformat()}) must be after validFrom "
            f"({valid_from.isoformat()})"
        )
    if valid_to - valid_from > config.max_permit_span:
        raise ValidationError(
            f"Permit window exceeds the maximum of {config.max_permit_span_hours} hours"
        )
