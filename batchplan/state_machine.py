"""Session status sum type and its legal transitions.

``scheduled`` is the only initial state. ``start`` and ``cancel`` leave
``scheduled``; ``end`` leaves ``live``. Permanent deletion is allowed from
every state except ``live``. Nothing is idempotent: re-applying a transition
fails, so a live session can never be provisioned twice.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import StateError

if TYPE_CHECKING:  # pragma: no cover
    from .models import BatchSession


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class SessionAction(str, enum.Enum):
    START = "start"
    END = "end"
    CANCEL = "cancel"
    DELETE = "delete"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Transition:
    action: SessionAction
    sources: frozenset[SessionStatus]
    target: Optional[SessionStatus]


TRANSITIONS: dict[SessionAction, Transition] = {
    SessionAction.START: Transition(
        SessionAction.START, frozenset({SessionStatus.SCHEDULED}), SessionStatus.LIVE
    ),
    SessionAction.END: Transition(
        SessionAction.END, frozenset({SessionStatus.LIVE}), SessionStatus.ENDED
    ),
    SessionAction.CANCEL: Transition(
        SessionAction.CANCEL, frozenset({SessionStatus.SCHEDULED}), SessionStatus.CANCELLED
    ),
    # Deletion has no target state: the record disappears.
    SessionAction.DELETE: Transition(
        SessionAction.DELETE,
        frozenset({SessionStatus.SCHEDULED, SessionStatus.ENDED, SessionStatus.CANCELLED}),
        None,
    ),
}

STATUS_EDGES: frozenset[tuple[SessionStatus, SessionStatus]] = frozenset(
    (source, transition.target)
    for transition in TRANSITIONS.values()
    if transition.target is not None
    for source in transition.sources
)


def can_apply(status: SessionStatus, action: SessionAction) -> bool:
    return status in TRANSITIONS[action].sources


def is_legal_edge(current: SessionStatus | None, new: SessionStatus) -> bool:
    if current is None:
        return new is SessionStatus.SCHEDULED
    return (SessionStatus(current), SessionStatus(new)) in STATUS_EDGES


def ensure_transition(session: "BatchSession", action: SessionAction) -> Transition:
    """Return the transition for ``action`` or raise :class:`StateError`."""
    transition = TRANSITIONS[action]
    if session.status not in transition.sources:
        raise StateError(session.id, str(session.status), str(action))
    return transition


def apply_transition(
    session: "BatchSession",
    action: SessionAction,
    *,
    at,
    reason: str | None = None,
    room_reference: str | None = None,
) -> SessionStatus:
    """Move ``session`` along ``action`` and stamp the matching audit column.

    Deletion is not applied here; callers remove the row after
    :func:`ensure_transition` succeeds.
    """
    transition = ensure_transition(session, action)
    if transition.target is None:
        raise ValueError(f"{action} does not produce a status")
    if action is SessionAction.START:
        session.room_reference = room_reference
        session.started_at = at
    elif action is SessionAction.END:
        session.ended_at = at
    elif action is SessionAction.CANCEL:
        session.cancel_reason = reason
        session.cancelled_at = at
    session.status = transition.target
    return transition.target
