"""Helpers shared by the REST namespaces."""
from __future__ import annotations

from typing import Any, NoReturn

from flask_restx import Namespace

from ..errors import (
    ConflictWarning,
    PartialFailure,
    ProvisioningError,
    SchedulingError,
    SessionNotFound,
    StateError,
    ValidationError,
)
from ..models import BatchSession


ERROR_STATUS: tuple[tuple[type[SchedulingError], int], ...] = (
    (PartialFailure, 422),
    (SessionNotFound, 404),
    (ConflictWarning, 409),
    (StateError, 409),
    (ProvisioningError, 502),
    (ValidationError, 400),
)


def status_for(exc: SchedulingError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


def abort_for(ns: Namespace, exc: SchedulingError) -> NoReturn:
    ns.abort(status_for(exc), exc.message, code=exc.code, details=exc.details)


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def serialize_session(session: BatchSession) -> dict[str, Any]:
    def stamp(value):
        return value.isoformat() if value else None

    return {
        "id": session.id,
        "batch_id": session.batch_id,
        "subject": session.subject,
        "teacher_id": session.teacher_id,
        "teacher_name": session.teacher_name,
        "scheduled_date": session.scheduled_date.isoformat(),
        "start_time": session.start_time.strftime("%H:%M"),
        "end_time": session.end_time.strftime("%H:%M"),
        "duration_minutes": session.duration_minutes,
        "teaching_minutes": session.teaching_minutes,
        "prep_buffer_minutes": session.prep_buffer_minutes,
        "status": str(session.status),
        "room_reference": session.room_reference,
        "topic": session.topic,
        "notes": session.notes,
        "cancel_reason": session.cancel_reason,
        "created_at": stamp(session.created_at),
        "started_at": stamp(session.started_at),
        "ended_at": stamp(session.ended_at),
        "cancelled_at": stamp(session.cancelled_at),
    }
