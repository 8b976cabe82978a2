"""SQLAlchemy models for batch sessions and the batch roster."""
from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from flask import current_app, has_app_context
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .clock import minutes_of, utcnow
from .errors import StateError, ValidationError
from .extensions import db
from .state_machine import SessionStatus, is_legal_edge


DEFAULT_ALLOWED_DURATIONS: tuple[int, ...] = (30, 45, 60, 75, 90, 120)
MAX_PREP_BUFFER_MINUTES = 15


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def new_session_id() -> str:
    return _new_id("sess")


def new_batch_id() -> str:
    return _new_id("batch")


def allowed_durations() -> tuple[int, ...]:
    if has_app_context():
        configured = current_app.config.get("ALLOWED_DURATIONS")
        if configured:
            return tuple(int(value) for value in configured)
    return DEFAULT_ALLOWED_DURATIONS


def split_duration(duration_minutes: int) -> tuple[int, int]:
    """Return ``(teaching, prep_buffer)`` for a session length.

    Teaching time is the larger of ``duration - 15`` and 83% of the
    duration (rounded down); the remainder is preparation buffer.
    """
    teaching = max(duration_minutes - MAX_PREP_BUFFER_MINUTES, duration_minutes * 83 // 100)
    return teaching, duration_minutes - teaching


class TimeStampedModel:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Batch(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_batch_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    max_students: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    subjects: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    coordinator_id: Mapped[Optional[str]] = mapped_column(String(255))
    coordinator_name: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    teachers: Mapped[List["BatchTeacher"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan", order_by="BatchTeacher.subject"
    )
    students: Mapped[List["BatchStudent"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan", order_by="BatchStudent.student_id"
    )
    sessions: Mapped[List["BatchSession"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','inactive','archived')", name="chk_batch_status"
        ),
        CheckConstraint("max_students > 0", name="chk_batch_capacity"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Batch {self.id} {self.name}>"


class BatchTeacher(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[str] = mapped_column(
        ForeignKey("batch.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject: Mapped[str] = mapped_column(String(120), nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    teacher_name: Mapped[Optional[str]] = mapped_column(String(255))

    batch: Mapped[Batch] = relationship(back_populates="teachers")

    __table_args__ = (UniqueConstraint("batch_id", "subject", name="uq_batch_subject"),)


class BatchStudent(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[str] = mapped_column(
        ForeignKey("batch.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(String(255), nullable=False)
    student_name: Mapped[Optional[str]] = mapped_column(String(255))
    parent_id: Mapped[Optional[str]] = mapped_column(String(255))
    parent_name: Mapped[Optional[str]] = mapped_column(String(255))

    batch: Mapped[Batch] = relationship(back_populates="students")

    __table_args__ = (UniqueConstraint("batch_id", "student_id", name="uq_batch_student"),)


class BatchSession(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_session_id)
    batch_id: Mapped[str] = mapped_column(
        ForeignKey("batch.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject: Mapped[str] = mapped_column(String(120), nullable=False)
    teacher_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    teacher_name: Mapped[Optional[str]] = mapped_column(String(255))

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    teaching_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    prep_buffer_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[SessionStatus] = mapped_column(
        Enum(
            SessionStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=False,
        default=SessionStatus.SCHEDULED,
        index=True,
    )
    room_reference: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    topic: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    batch: Mapped[Batch] = relationship(back_populates="sessions")
    reminders: Mapped[List["ReminderLog"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "teaching_minutes + prep_buffer_minutes = duration_minutes",
            name="chk_session_duration_split",
        ),
        CheckConstraint("duration_minutes > 0", name="chk_session_duration_positive"),
    )

    @validates("duration_minutes")
    def _derive_split(self, key: str, value: int) -> int:
        value = int(value)
        allowed = allowed_durations()
        if value not in allowed:
            raise ValidationError(
                f"Duration must be one of {', '.join(str(v) for v in allowed)} minutes",
                {"duration_minutes": value},
            )
        self.teaching_minutes, self.prep_buffer_minutes = split_duration(value)
        return value

    @validates("status")
    def _guard_status(self, key: str, value: SessionStatus | str) -> SessionStatus:
        new_status = SessionStatus(value)
        current = self.status
        if current is not None and SessionStatus(current) is new_status:
            raise StateError(self.id, str(current), f"set status to {new_status}")
        if not is_legal_edge(current, new_status):
            raise StateError(self.id, str(current), f"set status to {new_status}")
        return new_status

    @property
    def start_minutes(self) -> int:
        return minutes_of(self.start_time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @property
    def starts_at(self) -> datetime:
        """Schedule-local wall clock start, naive."""
        return datetime.combine(self.scheduled_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    @property
    def end_time(self) -> time:
        return self.ends_at.time()

    @property
    def weekday_name(self) -> str:
        return self.scheduled_date.strftime("%A")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<BatchSession {self.id} {self.subject} {self.scheduled_date} {self.start_time:%H:%M}>"


class ReminderLog(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("batch_session.id", ondelete="CASCADE"), nullable=False, index=True
    )
    window: Mapped[str] = mapped_column(String(16), nullable=False)
    recipients: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    session: Mapped[BatchSession] = relationship(back_populates="reminders")

    __table_args__ = (UniqueConstraint("session_id", "window", name="uq_reminder_window"),)
