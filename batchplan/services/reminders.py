"""Session reminder sweep.

Runs on an external schedule (``flask sessions send-reminders``). Each
configured window fires at most once per session; the ``reminder_log``
unique constraint is the source of truth for what was already sent.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..clock import local_now, utcnow
from ..extensions import db
from ..models import BatchSession, ReminderLog
from ..roster import Participant, get_roster
from ..state_machine import SessionStatus
from .results import BulkResult


START_WINDOW = "start"


@dataclass(frozen=True)
class ReminderWindow:
    label: str
    minutes_before: int
    statuses: tuple[SessionStatus, ...]


@dataclass(frozen=True)
class SessionReminder:
    session: BatchSession
    window: ReminderWindow
    recipients: tuple[Participant, ...] = field(default_factory=tuple)


class ReminderDispatcher(ABC):
    @abstractmethod
    def dispatch(self, reminder: SessionReminder) -> int:
        """Deliver ``reminder`` and return how many recipients were notified."""


class LoggingDispatcher(ReminderDispatcher):
    def dispatch(self, reminder: SessionReminder) -> int:
        session = reminder.session
        for recipient in reminder.recipients:
            current_app.logger.info(
                "Reminder [%s] for session %s (%s at %s) -> %s %s",
                reminder.window.label,
                session.id,
                session.subject,
                session.start_time.strftime("%H:%M"),
                recipient.role,
                recipient.identity,
            )
        return len(reminder.recipients)


DISPATCHER_KEY = "batchplan.reminders"


def get_dispatcher() -> ReminderDispatcher:
    return current_app.extensions[DISPATCHER_KEY]


def configured_windows() -> list[ReminderWindow]:
    """``0`` is the start window and only covers sessions already live."""
    windows = []
    for minutes in current_app.config.get("REMINDER_WINDOWS", (30, 15, 0)):
        minutes = int(minutes)
        if minutes == 0:
            windows.append(ReminderWindow(START_WINDOW, 0, (SessionStatus.LIVE,)))
        else:
            windows.append(
                ReminderWindow(
                    str(minutes), minutes, (SessionStatus.SCHEDULED, SessionStatus.LIVE)
                )
            )
    return windows


def sessions_in_window(window: ReminderWindow, now: datetime | None = None) -> list[BatchSession]:
    current = local_now(now)
    wall_clock = current.replace(tzinfo=None)
    tolerance = float(current_app.config.get("REMINDER_TOLERANCE_MINUTES", 2.5))
    candidates = db.session.scalars(
        select(BatchSession)
        .where(
            BatchSession.status.in_(window.statuses),
            BatchSession.scheduled_date == current.date(),
        )
        .order_by(BatchSession.start_time, BatchSession.id)
    )
    selected = []
    for session in candidates:
        lead = (session.starts_at - wall_clock).total_seconds() / 60
        if window.minutes_before - tolerance < lead <= window.minutes_before + tolerance:
            selected.append(session)
    return selected


def _recipients(session: BatchSession) -> tuple[Participant, ...]:
    recipients: list[Participant] = []
    if session.teacher_id:
        recipients.append(
            Participant(session.teacher_id, session.teacher_name or session.teacher_id, "teacher")
        )
    batch = get_roster().get_batch(session.batch_id)
    if batch is not None:
        recipients.extend(batch.participants)
    return tuple(recipients)


def dispatch_session_reminders(
    now: datetime | None = None,
    *,
    dispatcher: Optional[ReminderDispatcher] = None,
    windows: Sequence[ReminderWindow] | None = None,
) -> BulkResult:
    """Send every reminder that is due at ``now`` and has not been sent yet.

    Result ids are ``<session_id>:<window>`` pairs.
    """
    dispatcher = dispatcher or get_dispatcher()
    result = BulkResult()
    for window in windows or configured_windows():
        due = sessions_in_window(window, now)
        if not due:
            continue
        already_sent = set(
            db.session.scalars(
                select(ReminderLog.session_id).where(
                    ReminderLog.window == window.label,
                    ReminderLog.session_id.in_([session.id for session in due]),
                )
            )
        )
        for session in due:
            key = f"{session.id}:{window.label}"
            result.requested += 1
            if session.id in already_sent:
                result.skipped_ids.append(key)
                continue
            try:
                with db.session.begin_nested():
                    entry = ReminderLog(session_id=session.id, window=window.label, sent_at=utcnow())
                    db.session.add(entry)
                    db.session.flush()
                    entry.recipients = dispatcher.dispatch(
                        SessionReminder(session, window, _recipients(session))
                    )
                db.session.commit()
            except IntegrityError:
                # Another sweep claimed this window first.
                result.skipped_ids.append(key)
                continue
            except Exception as exc:
                current_app.logger.exception("Reminder %s could not be dispatched", key)
                result.failures[key] = str(exc)
                continue
            result.succeeded_ids.append(key)

    if result.requested:
        current_app.logger.info(
            "Reminder sweep: %d sent, %d already sent, %d failed",
            result.succeeded_count,
            result.skipped_count,
            result.failed_count,
        )
    return result
