"""Lifecycle operations for batch sessions.

Single-session operations commit on success and leave the record untouched
on any error. Recurring creation and the bulk operations treat every member
independently: each one runs inside its own savepoint and is committed on its
own, so one failing member never undoes the others.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Mapping, Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..clock import local_now, localize, minutes_of, parse_date, parse_time, utcnow
from ..conflicts import ConflictResolution, detect_conflicts, overlaps
from ..errors import (
    BatchUnavailableError,
    ConflictWarning,
    PartialFailure,
    ProvisioningError,
    SchedulingError,
    SessionNotFound,
    StateError,
    TeacherUnavailableError,
    ValidationError,
)
from ..extensions import db
from ..models import BatchSession, allowed_durations, new_session_id
from ..provisioning import get_provisioner
from ..recurrence import RecurringRequest
from ..roster import BatchInfo, Participant, get_roster
from ..state_machine import (
    TRANSITIONS,
    SessionAction,
    SessionStatus,
    apply_transition,
    ensure_transition,
)
from .results import BulkResult, CreatedSession, RecurringResult, StartedSession


ACTIVE_STATUSES = (SessionStatus.SCHEDULED, SessionStatus.LIVE)
MINUTES_PER_DAY = 24 * 60
EDITABLE_FIELDS = frozenset(
    {
        "subject",
        "teacher_id",
        "teacher_name",
        "scheduled_date",
        "start_time",
        "duration_minutes",
        "topic",
        "notes",
    }
)


def _require_text(value: Any, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required", {"field": field})
    return text


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_date(value: date | str | None) -> date:
    if value is None or value == "":
        raise ValidationError("scheduled_date is required", {"field": "scheduled_date"})
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parse_date(str(value))
    except ValueError:
        raise ValidationError(
            f"Invalid date '{value}'", {"field": "scheduled_date"}
        ) from None


def _coerce_time(value: time | str | None) -> time:
    if value is None or value == "":
        raise ValidationError("start_time is required", {"field": "start_time"})
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return parse_time(str(value))
    except ValueError:
        raise ValidationError(f"Invalid time '{value}'", {"field": "start_time"}) from None


def _coerce_duration(value: int | str | None) -> int:
    if value is None or value == "":
        return int(current_app.config.get("DEFAULT_DURATION_MINUTES", 90))
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid duration '{value}'", {"field": "duration_minutes"}
        ) from None
    allowed = allowed_durations()
    if duration not in allowed:
        raise ValidationError(
            f"Duration must be one of {', '.join(str(v) for v in allowed)} minutes",
            {"duration_minutes": duration},
        )
    return duration


def _ensure_not_past(scheduled_date: date, start_time: time, now: datetime | None) -> None:
    current = local_now(now)
    if localize(scheduled_date, start_time) < current:
        raise ValidationError(
            f"Cannot schedule a session in the past "
            f"({scheduled_date.isoformat()} {start_time:%H:%M})",
            {"scheduled_date": scheduled_date.isoformat(), "start_time": f"{start_time:%H:%M}"},
        )


def _ensure_same_day(scheduled_date: date, start_time: time, duration_minutes: int) -> None:
    if minutes_of(start_time) + duration_minutes > MINUTES_PER_DAY:
        raise ValidationError(
            f"A session starting at {start_time:%H:%M} for {duration_minutes} minutes "
            f"would run past midnight on {scheduled_date.isoformat()}",
            {
                "scheduled_date": scheduled_date.isoformat(),
                "start_time": f"{start_time:%H:%M}",
                "duration_minutes": duration_minutes,
            },
        )


def _load_batch(batch_id: str, subject: str) -> BatchInfo:
    batch = get_roster().get_batch(batch_id)
    if batch is None:
        raise BatchUnavailableError(f"Batch {batch_id} not found", {"batch_id": batch_id})
    if not batch.is_active:
        raise BatchUnavailableError(f"Batch {batch_id} is not active", {"batch_id": batch_id})
    if not batch.offers(subject):
        raise ValidationError(
            f"Subject '{subject}' is not offered by batch {batch_id}",
            {"batch_id": batch_id, "subject": subject, "subjects": list(batch.subjects)},
        )
    return batch


def _load_session(session_id: str, *, for_update: bool = False) -> BatchSession:
    session = db.session.get(BatchSession, session_id, with_for_update=for_update or None)
    if session is None:
        raise SessionNotFound(session_id)
    return session


def _check_teacher(
    teacher_id: Optional[str],
    scheduled_date: date,
    start_time: time,
    duration_minutes: int,
    *,
    exclude_session_id: str | None = None,
) -> None:
    """Reject a slot that breaks the teacher's daily cap or double-books them."""
    if not teacher_id:
        return
    stmt = select(BatchSession).where(
        BatchSession.teacher_id == teacher_id,
        BatchSession.scheduled_date == scheduled_date,
        BatchSession.status.in_(ACTIVE_STATUSES),
    )
    if exclude_session_id is not None:
        stmt = stmt.where(BatchSession.id != exclude_session_id)
    booked = list(db.session.scalars(stmt))

    cap = int(current_app.config.get("MAX_TEACHER_SESSIONS_PER_DAY") or 0)
    if cap and len(booked) >= cap:
        raise TeacherUnavailableError(
            f"Teacher {teacher_id} already has {len(booked)} sessions on "
            f"{scheduled_date.isoformat()}",
            {"teacher_id": teacher_id, "limit": cap},
        )

    start = minutes_of(start_time)
    end = start + duration_minutes
    clashes = [s.id for s in booked if overlaps(start, end, s.start_minutes, s.end_minutes)]
    if clashes:
        raise TeacherUnavailableError(
            f"Teacher {teacher_id} is already teaching at {start_time:%H:%M} on "
            f"{scheduled_date.isoformat()}",
            {"teacher_id": teacher_id, "conflicting_session_ids": clashes},
        )


def _place(
    batch_id: str,
    scheduled_date: date,
    start_time: time,
    duration_minutes: int,
    *,
    accept_adjusted_time: bool,
    exclude_session_id: str | None = None,
) -> ConflictResolution:
    resolution = detect_conflicts(
        batch_id,
        scheduled_date,
        start_time,
        duration_minutes,
        exclude_session_id=exclude_session_id,
    )
    if resolution.shifted:
        if not accept_adjusted_time:
            raise ConflictWarning(resolution)
        current_app.logger.warning(
            "Batch %s on %s: start moved from %s to %s (%s) to avoid %s",
            batch_id,
            scheduled_date,
            resolution.requested_time.strftime("%H:%M"),
            resolution.start_time.strftime("%H:%M"),
            resolution.placement,
            ", ".join(resolution.conflicting_session_ids),
        )
        if resolution.exceeds_operating_hours:
            current_app.logger.warning(
                "Batch %s on %s: no slot before the operating-hours ceiling; "
                "suggested %s runs past it",
                batch_id,
                scheduled_date,
                resolution.start_time.strftime("%H:%M"),
            )
    return resolution


def check_conflicts(
    batch_id: str,
    scheduled_date: date | str,
    start_time: time | str,
    duration_minutes: int | None = None,
    *,
    exclude_session_id: str | None = None,
) -> ConflictResolution:
    """Run the detector for a candidate slot without storing anything."""
    return detect_conflicts(
        _require_text(batch_id, "batch_id"),
        coerce_date(scheduled_date),
        _coerce_time(start_time),
        _coerce_duration(duration_minutes),
        exclude_session_id=_optional_text(exclude_session_id),
    )


def _create_one(
    *,
    batch_id: str,
    subject: str,
    scheduled_date: date,
    start_time: time,
    duration_minutes: int,
    teacher_id: Optional[str],
    teacher_name: Optional[str],
    topic: Optional[str],
    notes: Optional[str],
    created_by: Optional[str],
    accept_adjusted_time: bool,
    now: datetime | None,
) -> CreatedSession:
    """Validate, place and stage one session; the caller commits."""
    _ensure_same_day(scheduled_date, start_time, duration_minutes)
    _ensure_not_past(scheduled_date, start_time, now)
    batch = _load_batch(batch_id, subject)

    if not teacher_id:
        default = batch.teacher_for(subject)
        if default is not None:
            teacher_id, teacher_name = default.teacher_id, teacher_name or default.teacher_name
    elif not teacher_name:
        default = batch.teacher_for(subject)
        if default is not None and default.teacher_id == teacher_id:
            teacher_name = default.teacher_name

    resolution = _place(
        batch_id,
        scheduled_date,
        start_time,
        duration_minutes,
        accept_adjusted_time=accept_adjusted_time,
    )
    if resolution.shifted:
        _ensure_not_past(scheduled_date, resolution.start_time, now)
        _ensure_same_day(scheduled_date, resolution.start_time, duration_minutes)
    _check_teacher(teacher_id, scheduled_date, resolution.start_time, duration_minutes)

    session = BatchSession(
        id=new_session_id(),
        batch_id=batch_id,
        subject=subject,
        teacher_id=teacher_id,
        teacher_name=teacher_name,
        scheduled_date=scheduled_date,
        start_time=resolution.start_time,
        duration_minutes=duration_minutes,
        status=SessionStatus.SCHEDULED,
        topic=topic,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(session)
    db.session.flush()
    return CreatedSession(session=session, adjustment=resolution if resolution.shifted else None)


def create_session(
    batch_id: str,
    subject: str,
    scheduled_date: date | str,
    start_time: time | str,
    duration_minutes: int | None = None,
    *,
    teacher_id: str | None = None,
    teacher_name: str | None = None,
    topic: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
    accept_adjusted_time: bool = False,
    now: datetime | None = None,
) -> CreatedSession:
    """Create one ``scheduled`` session.

    When the requested time overlaps sessions already in the batch calendar
    the detector's suggestion is used if ``accept_adjusted_time`` is true;
    otherwise :class:`ConflictWarning` is raised and nothing is stored.
    """
    batch_id = _require_text(batch_id, "batch_id")
    subject = _require_text(subject, "subject")
    scheduled_date = coerce_date(scheduled_date)
    start_time = _coerce_time(start_time)
    duration_minutes = _coerce_duration(duration_minutes)

    try:
        created = _create_one(
            batch_id=batch_id,
            subject=subject,
            scheduled_date=scheduled_date,
            start_time=start_time,
            duration_minutes=duration_minutes,
            teacher_id=_optional_text(teacher_id),
            teacher_name=_optional_text(teacher_name),
            topic=_optional_text(topic),
            notes=_optional_text(notes),
            created_by=_optional_text(created_by),
            accept_adjusted_time=accept_adjusted_time,
            now=now,
        )
        db.session.commit()
    except (SchedulingError, SQLAlchemyError):
        db.session.rollback()
        raise

    session = created.session
    current_app.logger.info(
        "Scheduled session %s (%s) for batch %s on %s at %s",
        session.id,
        session.subject,
        session.batch_id,
        session.scheduled_date,
        session.start_time.strftime("%H:%M"),
    )
    return created


def create_recurring_sessions(
    batch_id: str,
    subject: str,
    recurrence: RecurringRequest,
    start_time: time | str,
    duration_minutes: int | None = None,
    *,
    teacher_id: str | None = None,
    teacher_name: str | None = None,
    topic: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
) -> RecurringResult:
    """Create one session per generated date, each independently.

    Conflicting times are shifted automatically. Dates that fail validation
    or storage are counted in ``failed_count``; :class:`PartialFailure` is
    raised only when no session at all could be created.
    """
    batch_id = _require_text(batch_id, "batch_id")
    subject = _require_text(subject, "subject")
    start_time = _coerce_time(start_time)
    duration_minutes = _coerce_duration(duration_minutes)

    generated = recurrence.dates()
    result = RecurringResult(requested=len(generated))
    for item in generated:
        key = item.date.isoformat()
        try:
            with db.session.begin_nested():
                created = _create_one(
                    batch_id=batch_id,
                    subject=subject,
                    scheduled_date=item.date,
                    start_time=start_time,
                    duration_minutes=duration_minutes,
                    teacher_id=_optional_text(teacher_id),
                    teacher_name=_optional_text(teacher_name),
                    topic=_optional_text(topic),
                    notes=_optional_text(notes),
                    created_by=_optional_text(created_by),
                    accept_adjusted_time=True,
                    now=now,
                )
            db.session.commit()
        except SchedulingError as exc:
            result.failures[key] = exc.message
            current_app.logger.warning("Recurring session on %s skipped: %s", key, exc.message)
            continue
        except SQLAlchemyError as exc:
            db.session.rollback()
            message = str(getattr(exc, "orig", None) or exc)
            result.failures[key] = message
            current_app.logger.warning("Recurring session on %s failed to save: %s", key, message)
            continue
        result.succeeded_ids.append(created.session.id)

    current_app.logger.info(
        "Recurring schedule for batch %s (%s): %d created, %d failed",
        batch_id,
        subject,
        result.created_count,
        result.failed_count,
    )
    if not result.succeeded_ids:
        raise PartialFailure("No sessions could be created for the recurring schedule", result)
    return result


def update_session(
    session_id: str,
    changes: Mapping[str, Any],
    *,
    accept_adjusted_time: bool = False,
    now: datetime | None = None,
) -> CreatedSession:
    """Edit a ``scheduled`` session, re-running placement when its slot moves."""
    unknown = sorted(set(changes) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update field(s): {', '.join(unknown)}", {"fields": unknown}
        )
    session = _load_session(session_id, for_update=True)
    if session.status is not SessionStatus.SCHEDULED:
        raise StateError(session.id, str(session.status), "update")

    subject = (
        _require_text(changes["subject"], "subject") if "subject" in changes else session.subject
    )
    scheduled_date = (
        coerce_date(changes["scheduled_date"])
        if "scheduled_date" in changes
        else session.scheduled_date
    )
    start_time = (
        _coerce_time(changes["start_time"]) if "start_time" in changes else session.start_time
    )
    duration_minutes = (
        _coerce_duration(changes["duration_minutes"])
        if "duration_minutes" in changes
        else session.duration_minutes
    )
    teacher_id = (
        _optional_text(changes["teacher_id"]) if "teacher_id" in changes else session.teacher_id
    )
    teacher_name = (
        _optional_text(changes["teacher_name"])
        if "teacher_name" in changes
        else (session.teacher_name if teacher_id == session.teacher_id else None)
    )

    moved = (
        subject != session.subject
        or scheduled_date != session.scheduled_date
        or start_time != session.start_time
        or duration_minutes != session.duration_minutes
    )
    adjustment: Optional[ConflictResolution] = None
    try:
        if moved:
            _ensure_same_day(scheduled_date, start_time, duration_minutes)
            _ensure_not_past(scheduled_date, start_time, now)
            _load_batch(session.batch_id, subject)
            resolution = _place(
                session.batch_id,
                scheduled_date,
                start_time,
                duration_minutes,
                accept_adjusted_time=accept_adjusted_time,
                exclude_session_id=session.id,
            )
            if resolution.shifted:
                _ensure_not_past(scheduled_date, resolution.start_time, now)
                _ensure_same_day(scheduled_date, resolution.start_time, duration_minutes)
                adjustment = resolution
            start_time = resolution.start_time
        if moved or teacher_id != session.teacher_id:
            _check_teacher(
                teacher_id,
                scheduled_date,
                start_time,
                duration_minutes,
                exclude_session_id=session.id,
            )

        session.subject = subject
        session.scheduled_date = scheduled_date
        session.start_time = start_time
        if duration_minutes != session.duration_minutes:
            session.duration_minutes = duration_minutes
        session.teacher_id = teacher_id
        session.teacher_name = teacher_name
        if "topic" in changes:
            session.topic = _optional_text(changes["topic"])
        if "notes" in changes:
            session.notes = _optional_text(changes["notes"])
        db.session.commit()
    except (SchedulingError, SQLAlchemyError):
        db.session.rollback()
        raise

    current_app.logger.info("Updated session %s (%s)", session.id, ", ".join(sorted(changes)))
    return CreatedSession(session=session, adjustment=adjustment)


def _participants(session: BatchSession, batch: Optional[BatchInfo]) -> list[Participant]:
    participants: list[Participant] = []
    if session.teacher_id:
        participants.append(
            Participant(
                identity=session.teacher_id,
                name=session.teacher_name or session.teacher_id,
                role="teacher",
            )
        )
    if batch is not None:
        participants.extend(batch.participants)
    return participants


def start_session(session_id: str) -> StartedSession:
    """Move a session to ``live`` after its room has been provisioned.

    The provisioner is called before any column changes; if it fails the
    session stays ``scheduled`` and :class:`ProvisioningError` propagates.
    """
    session = _load_session(session_id, for_update=True)
    ensure_transition(session, SessionAction.START)
    participants = _participants(session, get_roster().get_batch(session.batch_id))

    try:
        room = get_provisioner().provision(session, participants)
    except ProvisioningError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Provisioning failed for session %s; it remains scheduled: %s",
            session_id,
            exc.message,
        )
        raise

    apply_transition(
        session, SessionAction.START, at=utcnow(), room_reference=room.room_reference
    )
    db.session.commit()
    current_app.logger.info(
        "Session %s is live in room %s (%d join artifacts)",
        session.id,
        room.room_reference,
        len(room.join_artifacts),
    )
    return StartedSession(session=session, room=room)


def end_session(session_id: str) -> BatchSession:
    session = _load_session(session_id, for_update=True)
    apply_transition(session, SessionAction.END, at=utcnow())
    db.session.commit()
    current_app.logger.info("Session %s ended", session.id)
    return session


def cancel_session(session_id: str, reason: str) -> BatchSession:
    reason = _require_text(reason, "reason")
    session = _load_session(session_id, for_update=True)
    apply_transition(session, SessionAction.CANCEL, at=utcnow(), reason=reason)
    db.session.commit()
    current_app.logger.info("Session %s cancelled: %s", session.id, reason)
    return session


def delete_session(session_id: str) -> None:
    """Permanently remove a session; live sessions must be ended first."""
    session = _load_session(session_id, for_update=True)
    ensure_transition(session, SessionAction.DELETE)
    db.session.delete(session)
    db.session.commit()
    current_app.logger.info("Session %s permanently deleted", session_id)


def _unique_ids(session_ids: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for session_id in session_ids:
        if session_id:
            seen.setdefault(str(session_id), None)
    return list(seen)


def _bulk(session_ids: Iterable[str], action: SessionAction, apply) -> BulkResult:
    """Run ``apply`` on every eligible session, one savepoint per session."""
    ids = _unique_ids(session_ids)
    result = BulkResult(requested=len(ids))
    if not ids:
        return result

    found = {
        session.id: session
        for session in db.session.scalars(select(BatchSession).where(BatchSession.id.in_(ids)))
    }
    for session_id in ids:
        session = found.get(session_id)
        if session is None:
            result.skipped_ids.append(session_id)
            continue
        status = session.status
        if status not in TRANSITIONS[action].sources:
            current_app.logger.warning(
                "Skipping %s of session %s in '%s' status", action, session_id, status
            )
            result.skipped_ids.append(session_id)
            continue
        try:
            with db.session.begin_nested():
                apply(session)
            db.session.commit()
        except (SchedulingError, SQLAlchemyError) as exc:
            if isinstance(exc, SQLAlchemyError):
                db.session.rollback()
            message = exc.message if isinstance(exc, SchedulingError) else str(exc)
            result.failures[session_id] = message
            current_app.logger.warning("Failed to %s session %s: %s", action, session_id, message)
            continue
        result.succeeded_ids.append(session_id)
    return result


def cancel_sessions(session_ids: Iterable[str], reason: str) -> BulkResult:
    """Cancel the ``scheduled`` members of ``session_ids``; others are skipped."""
    reason = _require_text(reason, "reason")
    stamp = utcnow()
    result = _bulk(
        session_ids,
        SessionAction.CANCEL,
        lambda session: apply_transition(
            session, SessionAction.CANCEL, at=stamp, reason=reason
        ),
    )
    current_app.logger.info(
        "Bulk cancel: %d of %d cancelled, %d skipped, %d failed",
        result.succeeded_count,
        result.requested,
        result.skipped_count,
        result.failed_count,
    )
    return result


def delete_sessions(session_ids: Iterable[str]) -> BulkResult:
    """Permanently delete every requested session that is not ``live``."""

    def remove(session: BatchSession) -> None:
        ensure_transition(session, SessionAction.DELETE)
        db.session.delete(session)

    result = _bulk(session_ids, SessionAction.DELETE, remove)
    current_app.logger.info(
        "Bulk delete: %d of %d deleted, %d skipped, %d failed",
        result.succeeded_count,
        result.requested,
        result.skipped_count,
        result.failed_count,
    )
    return result


def get_session(session_id: str) -> BatchSession:
    return _load_session(session_id)


def list_sessions(
    *,
    batch_id: str | None = None,
    status: SessionStatus | str | None = None,
    date_from: date | str | None = None,
    date_to: date | str | None = None,
    teacher_id: str | None = None,
) -> list[BatchSession]:
    stmt = select(BatchSession)
    if batch_id:
        stmt = stmt.where(BatchSession.batch_id == batch_id)
    if status:
        try:
            stmt = stmt.where(BatchSession.status == SessionStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'", {"status": status}) from None
    if date_from:
        stmt = stmt.where(BatchSession.scheduled_date >= coerce_date(date_from))
    if date_to:
        stmt = stmt.where(BatchSession.scheduled_date <= coerce_date(date_to))
    if teacher_id:
        stmt = stmt.where(BatchSession.teacher_id == teacher_id)
    stmt = stmt.order_by(BatchSession.scheduled_date, BatchSession.start_time, BatchSession.id)
    return list(db.session.scalars(stmt))


def due_for_auto_start(now: datetime | None = None) -> list[BatchSession]:
    """Today's ``scheduled`` sessions whose preparation window has opened."""
    current = local_now(now)
    wall_clock = current.replace(tzinfo=None)
    candidates = db.session.scalars(
        select(BatchSession)
        .where(
            BatchSession.status == SessionStatus.SCHEDULED,
            BatchSession.scheduled_date == current.date(),
        )
        .order_by(BatchSession.start_time, BatchSession.id)
    )
    return [
        session
        for session in candidates
        if wall_clock >= session.starts_at - timedelta(minutes=session.prep_buffer_minutes)
    ]


def auto_start_due_sessions(now: datetime | None = None) -> BulkResult:
    """Start every due session through :func:`start_session`.

    A session another worker started in the meantime fails the state check
    and is counted as skipped, so a room is never provisioned twice.
    """
    due = [session.id for session in due_for_auto_start(now)]
    result = BulkResult(requested=len(due))
    for session_id in due:
        try:
            start_session(session_id)
        except StateError:
            result.skipped_ids.append(session_id)
            continue
        except SchedulingError as exc:
            result.failures[session_id] = exc.message
            continue
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Auto-start of session %s failed", session_id)
            result.failures[session_id] = str(exc)
            continue
        result.succeeded_ids.append(session_id)

    if due:
        current_app.logger.info(
            "Auto-start: %d started, %d skipped, %d failed",
            result.succeeded_count,
            result.skipped_count,
            result.failed_count,
        )
    return result
