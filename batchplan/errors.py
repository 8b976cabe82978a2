"""Error taxonomy for the scheduling engine.

Validation and state errors are raised before any change is made to a
session. Partial outcomes of bulk and recurring operations are returned as
counts; :class:`PartialFailure` is only raised when nothing succeeded.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .conflicts import ConflictResolution
    from .services.results import BulkResult


class SchedulingError(Exception):
    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(SchedulingError, ValueError):
    code = "validation_error"


class TeacherUnavailableError(ValidationError):
    code = "teacher_unavailable"


class BatchUnavailableError(ValidationError):
    code = "batch_unavailable"


class SessionNotFound(SchedulingError, LookupError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", {"session_id": session_id})
        self.session_id = session_id


class ConflictWarning(SchedulingError):
    """A resolvable overlap; carries the suggested start time."""

    code = "conflict"

    def __init__(self, resolution: "ConflictResolution"):
        super().__init__(
            f"Requested time overlaps existing sessions; suggested start is "
            f"{resolution.start_time:%H:%M}",
            resolution.as_payload(),
        )
        self.resolution = resolution


class StateError(SchedulingError):
    code = "invalid_state"

    def __init__(self, session_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} session {session_id} in '{status}' status",
            {"session_id": session_id, "status": status, "action": action},
        )
        self.session_id = session_id
        self.status = status
        self.action = action


class ProvisioningError(SchedulingError):
    code = "provisioning_failed"


class PartialFailure(SchedulingError):
    code = "partial_failure"

    def __init__(self, message: str, result: "BulkResult"):
        super().__init__(message, result.as_payload())
        self.result = result
