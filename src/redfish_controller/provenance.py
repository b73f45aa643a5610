"""Reconciliation provenance for audit.

Every reconciliation call is stamped with a provenance record answering:
- Which endpoint and resource were reconciled, by which controller build?
- Which phases ran and how many attributes changed?
- How did the job and power operations end?

Records are emitted as structured log entries. Attribute values are never
included; only names and counts.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Stamped into the image at build time
CONTROLLER_VERSION = os.environ.get("CONTROLLER_VERSION", "dev")


@dataclass
class ReconcileProvenance:
    """Provenance record for one reconciliation call."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    endpoint: str = ""
    resource: str = ""
    controller_version: str = CONTROLLER_VERSION
    controller_instance_id: str = ""

    # Outcome
    phases: list[str] = field(default_factory=list)
    changed_attributes: list[str] = field(default_factory=list)
    apply_time: str = ""
    job_uri: str = ""
    job_status: str = ""
    power_action: str = ""

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    @property
    def diff_size(self) -> int:
        return len(self.changed_attributes)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready view with an ISO timestamp and the diff size."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        result["diff_size"] = self.diff_size
        return result


class ProvenanceLogger:
    """Emits finished provenance records as structured log entries."""

    def __init__(self) -> None:
        self._instance_id = os.environ.get("CONTROLLER_INSTANCE_ID", "")

    def create_provenance(self, endpoint: str, resource: str, apply_time: str) -> ReconcileProvenance:
        """Start the record for one reconciliation call."""
        return ReconcileProvenance(
            endpoint=endpoint,
            resource=resource,
            controller_version=CONTROLLER_VERSION,
            controller_instance_id=self._instance_id,
            apply_time=apply_time,
        )

    def log_provenance(self, provenance: ReconcileProvenance) -> None:
        """Log a finished record: ERROR on failure, WARNING on a timed out job."""
        if provenance.error:
            level = logging.ERROR
        elif provenance.job_status == "TimedOut":
            level = logging.WARNING
        else:
            level = logging.INFO

        logger.log(
            level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                "endpoint": provenance.endpoint,
                "resource": provenance.resource,
                "diff_size": provenance.diff_size,
                "job_status": provenance.job_status,
                "controller_version": provenance.controller_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Process-wide instance
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Return the process-wide ProvenanceLogger."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
