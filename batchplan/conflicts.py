"""Conflict detection and start-time resolution within a batch calendar.

All arithmetic is done in minutes since midnight on half-open intervals
``[start, start + duration)``. Resolution is deterministic for a given
candidate and set of existing sessions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, Optional

from flask import current_app, has_app_context
from sqlalchemy import select

from .clock import minutes_of, parse_time, time_from_minutes
from .errors import ValidationError
from .extensions import db
from .models import BatchSession
from .state_machine import SessionStatus


DEFAULT_DAY_END = time(22, 0)

PLACEMENT_UNCHANGED = "unchanged"
PLACEMENT_SHIFTED = "shifted"
PLACEMENT_BEFORE_FIRST = "before_first"
PLACEMENT_AFTER_LAST = "after_last"


@dataclass(frozen=True)
class BusyInterval:
    session_id: str
    start: int
    end: int
    subject: Optional[str] = None

    @classmethod
    def from_session(cls, session: BatchSession) -> "BusyInterval":
        return cls(
            session_id=session.id,
            start=session.start_minutes,
            end=session.end_minutes,
            subject=session.subject,
        )


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


@dataclass(frozen=True)
class ConflictResolution:
    requested_time: time
    start_time: time
    duration_minutes: int
    placement: str = PLACEMENT_UNCHANGED
    conflicting_session_ids: tuple[str, ...] = field(default_factory=tuple)
    exceeds_operating_hours: bool = False

    @property
    def shifted(self) -> bool:
        return self.start_time != self.requested_time

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicting_session_ids)

    def as_payload(self) -> dict[str, object]:
        return {
            "requested_time": self.requested_time.strftime("%H:%M"),
            "suggested_time": self.start_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
            "placement": self.placement,
            "conflicting_session_ids": list(self.conflicting_session_ids),
            "exceeds_operating_hours": self.exceeds_operating_hours,
        }


def operating_day_end() -> time:
    if has_app_context():
        configured = current_app.config.get("OPERATING_DAY_END")
        if configured:
            return configured if isinstance(configured, time) else parse_time(configured)
    return DEFAULT_DAY_END


def resolve_start_time(
    start_time: time,
    duration_minutes: int,
    existing: Iterable[BusyInterval],
    *,
    day_end: time | None = None,
) -> ConflictResolution:
    """Propose a start time that avoids every interval in ``existing``.

    The candidate is pushed to the end of each session it overlaps until it
    fits. If it would then run past ``day_end`` it is placed right before the
    first session of the day when there is room, otherwise after the latest
    session; that last placement may still run past ``day_end`` and is
    flagged with ``exceeds_operating_hours``.
    """
    intervals = sorted(existing, key=lambda item: (item.start, item.end, item.session_id))
    requested = minutes_of(start_time)
    requested_time = time_from_minutes(requested)

    if not any(
        overlaps(requested, requested + duration_minutes, item.start, item.end)
        for item in intervals
    ):
        return ConflictResolution(requested_time, requested_time, duration_minutes)

    candidate = requested
    blockers: list[str] = []
    changed = True
    while changed:
        changed = False
        for item in intervals:
            if overlaps(candidate, candidate + duration_minutes, item.start, item.end):
                candidate = item.end
                if item.session_id not in blockers:
                    blockers.append(item.session_id)
                changed = True

    placement = PLACEMENT_SHIFTED
    exceeds = False
    ceiling = minutes_of(day_end or operating_day_end())
    if candidate + duration_minutes > ceiling:
        first = intervals[0]
        if first.start >= duration_minutes:
            candidate = first.start - duration_minutes
            placement = PLACEMENT_BEFORE_FIRST
        else:
            candidate = max(item.end for item in intervals)
            placement = PLACEMENT_AFTER_LAST
            exceeds = candidate + duration_minutes > ceiling

    try:
        resolved = time_from_minutes(candidate)
    except ValueError:
        raise ValidationError(
            "No start time is left on this date",
            {"conflicting_session_ids": blockers},
        ) from None

    return ConflictResolution(
        requested_time=requested_time,
        start_time=resolved,
        duration_minutes=duration_minutes,
        placement=placement,
        conflicting_session_ids=tuple(blockers),
        exceeds_operating_hours=exceeds,
    )


def busy_intervals(
    batch_id: str,
    scheduled_date: date,
    *,
    exclude_session_id: str | None = None,
) -> list[BusyInterval]:
    stmt = select(BatchSession).where(
        BatchSession.batch_id == batch_id,
        BatchSession.scheduled_date == scheduled_date,
        BatchSession.status != SessionStatus.CANCELLED,
    )
    if exclude_session_id is not None:
        stmt = stmt.where(BatchSession.id != exclude_session_id)
    return [BusyInterval.from_session(session) for session in db.session.scalars(stmt)]


def detect_conflicts(
    batch_id: str,
    scheduled_date: date,
    start_time: time,
    duration_minutes: int,
    *,
    exclude_session_id: str | None = None,
) -> ConflictResolution:
    """Check a candidate against the batch's non-cancelled sessions that day."""
    existing = busy_intervals(
        batch_id, scheduled_date, exclude_session_id=exclude_session_id
    )
    return resolve_start_time(start_time, duration_minutes, existing)
