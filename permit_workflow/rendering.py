"""
Closure artifact renderers.

A renderer turns the snapshot of a permit that is about to close into the
bytes of its final certificate. Renderers never see the database; they get a
read-only snapshot and return bytes or raise.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .schemas.permit import PermitSnapshot
from .schemas.primitives import Signature


class ClosureRenderer(ABC):
    """Produces the final artifact of a closed permit."""

    mime_type = "application/octet-stream"
    extension = "bin"

    @abstractmethod
    def render_closure_artifact(self, snapshot: PermitSnapshot) -> bytes:
        """Render the closure artifact for ``snapshot``."""
        pass

    def artifact_name(self, snapshot: PermitSnapshot) -> str:
        """Blob name the artifact is stored under."""
        return f"{snapshot.permit_id}/closure/certificate.{self.extension}"


class JsonClosureRenderer(ClosureRenderer):
    """Renders a JSON closure certificate with local-time signatures."""

    mime_type = "application/json"
    extension = "json"

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone

    def _signature(self, signature: Optional[Signature]) -> Optional[str]:
        return signature.display(self.timezone) if signature else None

    def render_closure_artifact(self, snapshot: PermitSnapshot) -> bytes:
        document = snapshot.document
        certificate: Dict[str, Any] = {
            "permit_id": snapshot.permit_id,
            "status": snapshot.status.value,
            "work_type": document.work_type,
            "work_description": document.work_description,
            "location": document.location,
            "contractor": document.contractor,
            "valid_from": snapshot.valid_from.isoformat(),
            "valid_to": snapshot.valid_to.isoformat(),
            "requester": snapshot.requester_email,
            "reviewer": snapshot.reviewer_email,
            "approver": snapshot.approver_email,
            "permit_signatures": {
                "reviewed": self._signature(document.reviewer_signature),
                "approved": self._signature(document.approver_signature),
            },
            "closure": {
                "receiver": self._signature(document.closure_receiver_signature),
                "receiver_remarks": document.closure_receiver_remarks,
                "reviewer": self._signature(document.closure_reviewer_signature),
                "reviewer_remarks": document.closure_reviewer_remarks,
                "issuer": self._signature(document.closure_issuer_signature),
                "issuer_remarks": document.closure_issuer_remarks,
            },
            "renewals": [
                {
                    "sequence": r.sequence,
                    "status": r.status.value,
                    "valid_from": r.valid_from.isoformat(),
                    "valid_to": r.valid_to.isoformat(),
                    "hydrocarbon_reading": r.hydrocarbon_reading,
                    "toxic_reading": r.toxic_reading,
                    "oxygen_reading": r.oxygen_reading,
                }
                for r in snapshot.renewals
            ],
            "timezone": self.timezone,
        }
        return json.dumps(certificate, indent=2).encode("utf-8")
