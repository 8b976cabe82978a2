"""Read-only timetable projections over committed sessions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Optional

from sqlalchemy import select

from .extensions import db
from .models import BatchSession
from .state_machine import SessionStatus


TIMETABLE_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(frozen=True)
class TimetableSlot:
    start_time: time
    end_time: time
    subject: str
    teacher_id: Optional[str]
    teacher_name: Optional[str]
    duration_minutes: int

    @classmethod
    def from_session(cls, session: BatchSession) -> "TimetableSlot":
        return cls(
            start_time=session.start_time,
            end_time=session.end_time,
            subject=session.subject,
            teacher_id=session.teacher_id,
            teacher_name=session.teacher_name,
            duration_minutes=session.duration_minutes,
        )

    def as_payload(self) -> dict[str, object]:
        return {
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "subject": self.subject,
            "teacher_id": self.teacher_id,
            "teacher_name": self.teacher_name,
            "duration_minutes": self.duration_minutes,
        }


def group_slots_by_day(sessions: Iterable[BatchSession]) -> dict[str, list[TimetableSlot]]:
    """Group sessions into Monday..Saturday slots.

    A recurring series contributes one slot per weekday: slots are keyed by
    weekday, start, subject and teacher. Sunday sessions are left out.
    """
    grouped: dict[str, list[TimetableSlot]] = {day: [] for day in TIMETABLE_DAYS}
    seen: set[tuple[str, time, str, Optional[str]]] = set()
    for session in sessions:
        day_name = session.weekday_name
        if day_name not in grouped:
            continue
        key = (day_name, session.start_time, session.subject, session.teacher_id)
        if key in seen:
            continue
        seen.add(key)
        grouped[day_name].append(TimetableSlot.from_session(session))
    for slots in grouped.values():
        slots.sort(key=lambda slot: (slot.start_time, slot.subject))
    return grouped


def weekly_timetable(batch_id: str) -> dict[str, list[TimetableSlot]]:
    sessions = db.session.scalars(
        select(BatchSession)
        .where(
            BatchSession.batch_id == batch_id,
            BatchSession.status.in_((SessionStatus.SCHEDULED, SessionStatus.LIVE)),
        )
        .order_by(BatchSession.scheduled_date, BatchSession.start_time)
    )
    return group_slots_by_day(sessions)


def daily_timetable(day: date, batch_id: str | None = None) -> list[BatchSession]:
    """Non-cancelled sessions on ``day`` in start order."""
    stmt = select(BatchSession).where(
        BatchSession.scheduled_date == day,
        BatchSession.status != SessionStatus.CANCELLED,
    )
    if batch_id:
        stmt = stmt.where(BatchSession.batch_id == batch_id)
    stmt = stmt.order_by(BatchSession.start_time, BatchSession.batch_id, BatchSession.id)
    return list(db.session.scalars(stmt))
