"""Structured outcomes of multi-item operations."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..conflicts import ConflictResolution
    from ..models import BatchSession
    from ..provisioning import ProvisionedRoom


@dataclass
class BulkResult:
    """Per-item accounting for bulk and recurring operations.

    ``skipped_ids`` holds requested items that were not eligible (for example a
    live session in a bulk delete). They are neither successes nor failures.
    """

    requested: int = 0
    succeeded_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_ids)

    def as_payload(self) -> dict[str, Any]:
        return {
            "requested": self.requested,
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "succeeded_ids": list(self.succeeded_ids),
            "skipped_ids": list(self.skipped_ids),
            "failures": dict(self.failures),
        }


@dataclass
class RecurringResult(BulkResult):
    """Outcome of a recurring creation, keyed by ISO date for failures."""

    @property
    def created_count(self) -> int:
        return self.succeeded_count

    @property
    def session_ids(self) -> list[str]:
        return list(self.succeeded_ids)

    def as_payload(self) -> dict[str, Any]:
        return {
            "created_count": self.created_count,
            "failed_count": self.failed_count,
            "session_ids": self.session_ids,
            "failures": dict(self.failures),
        }


@dataclass(frozen=True)
class CreatedSession:
    session: "BatchSession"
    adjustment: Optional["ConflictResolution"] = None

    @property
    def adjusted(self) -> bool:
        return self.adjustment is not None and self.adjustment.shifted


@dataclass(frozen=True)
class StartedSession:
    session: "BatchSession"
    room: "ProvisionedRoom"

    def as_payload(self) -> dict[str, Any]:
        return {
            "session_id": self.session.id,
            "room_reference": self.room.room_reference,
            "participant_join_artifacts": [
                artifact.as_payload() for artifact in self.room.join_artifacts
            ],
        }
