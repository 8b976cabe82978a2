"""Batch roster provider: the read-only view of a batch the engine consumes."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from .extensions import db
from .models import Batch


@dataclass(frozen=True)
class Participant:
    identity: str
    name: str
    role: str


@dataclass(frozen=True)
class SubjectTeacher:
    subject: str
    teacher_id: str
    teacher_name: Optional[str] = None


@dataclass(frozen=True)
class BatchInfo:
    batch_id: str
    name: str
    is_active: bool
    capacity: int
    subjects: tuple[str, ...] = ()
    teachers: tuple[SubjectTeacher, ...] = ()
    participants: tuple[Participant, ...] = field(default_factory=tuple)
    coordinator_id: Optional[str] = None

    def offers(self, subject: str) -> bool:
        if not self.subjects:
            return True
        wanted = subject.strip().lower()
        return any(item.strip().lower() == wanted for item in self.subjects)

    def teacher_for(self, subject: str) -> Optional[SubjectTeacher]:
        wanted = subject.strip().lower()
        return next(
            (item for item in self.teachers if item.subject.strip().lower() == wanted),
            None,
        )


class RosterProvider(ABC):
    @abstractmethod
    def get_batch(self, batch_id: str) -> Optional[BatchInfo]:
        """Return the batch or ``None`` when it does not exist."""


class DatabaseRosterProvider(RosterProvider):
    """Roster backed by the local ``batch`` tables."""

    def get_batch(self, batch_id: str) -> Optional[BatchInfo]:
        batch = db.session.get(Batch, batch_id)
        if batch is None:
            return None
        participants: list[Participant] = []
        seen: set[tuple[str, str]] = set()

        def add(identity: str | None, name: str | None, role: str) -> None:
            if not identity or (role, identity) in seen:
                return
            seen.add((role, identity))
            participants.append(Participant(identity=identity, name=name or identity, role=role))

        for student in batch.students:
            add(student.student_id, student.student_name, "student")
            add(student.parent_id, student.parent_name, "parent")
        add(batch.coordinator_id, batch.coordinator_name, "batch_coordinator")

        return BatchInfo(
            batch_id=batch.id,
            name=batch.name,
            is_active=batch.is_active,
            capacity=batch.max_students,
            subjects=tuple(batch.subjects or ()),
            teachers=tuple(
                SubjectTeacher(link.subject, link.teacher_id, link.teacher_name)
                for link in batch.teachers
            ),
            participants=tuple(participants),
            coordinator_id=batch.coordinator_id,
        )


def get_roster() -> RosterProvider:
    return current_app.extensions["batchplan.roster"]
