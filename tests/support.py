from __future__ import annotations

import unittest
from datetime import date, datetime, time
from typing import Optional

from batchplan import create_app
from batchplan.config import TestConfig
from batchplan.errors import ProvisioningError
from batchplan.extensions import db
from batchplan.models import Batch, BatchSession, BatchStudent, BatchTeacher
from batchplan.provisioning import EXTENSION_KEY, JoinArtifact, ProvisionedRoom, RoomProvisioner
from batchplan.state_machine import SessionAction, SessionStatus, apply_transition


# Naive datetimes are read as schedule-local wall clock time.
NOW = datetime(2025, 1, 1, 8, 0)
MONDAY = date(2025, 1, 6)


class RecordingProvisioner(RoomProvisioner):
    def __init__(self) -> None:
        self.calls: list[tuple[str, list]] = []

    def provision(self, session, participants) -> ProvisionedRoom:
        self.calls.append((session.id, list(participants)))
        return ProvisionedRoom(
            room_reference=f"room_{session.id}",
            join_artifacts=tuple(
                JoinArtifact(p.identity, p.name, p.role, f"token-{p.identity}", f"/join/{p.identity}")
                for p in participants
            ),
        )


class FailingProvisioner(RoomProvisioner):
    def __init__(self) -> None:
        self.calls = 0

    def provision(self, session, participants) -> ProvisionedRoom:
        self.calls += 1
        raise ProvisioningError("Room provisioning timed out", {"session_id": session.id})


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(TestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

    def tearDown(self) -> None:
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def use_provisioner(self, provisioner: RoomProvisioner) -> RoomProvisioner:
        self.app.extensions[EXTENSION_KEY] = provisioner
        return provisioner

    def make_batch(
        self,
        batch_id: str = "batch_alpha",
        *,
        subjects: tuple[str, ...] = ("Mathematics", "Physics"),
        teachers: Optional[dict[str, tuple[str, str]]] = None,
        status: str = "active",
        with_students: bool = True,
    ) -> Batch:
        if teachers is None:
            teachers = {"Mathematics": ("teacher_ravi", "Ravi Kumar")}
        batch = Batch(
            id=batch_id,
            name=f"Batch {batch_id}",
            status=status,
            max_students=30,
            subjects=list(subjects),
            coordinator_id="coord_anita",
            coordinator_name="Anita Rao",
        )
        for subject, (teacher_id, teacher_name) in teachers.items():
            batch.teachers.append(
                BatchTeacher(subject=subject, teacher_id=teacher_id, teacher_name=teacher_name)
            )
        if with_students:
            batch.students.append(
                BatchStudent(
                    student_id="student_001",
                    student_name="Arjun Menon",
                    parent_id="parent_001",
                    parent_name="Suresh Menon",
                )
            )
            batch.students.append(BatchStudent(student_id="student_002", student_name="Diya Shah"))
        db.session.add(batch)
        db.session.commit()
        return batch

    def add_session(
        self,
        batch_id: str = "batch_alpha",
        scheduled_date: date = MONDAY,
        start_time: time = time(9, 0),
        duration_minutes: int = 60,
        *,
        subject: str = "Physics",
        teacher_id: Optional[str] = None,
        status: SessionStatus = SessionStatus.SCHEDULED,
        session_id: Optional[str] = None,
    ) -> BatchSession:
        """Insert a session directly, bypassing scheduling validation."""
        kwargs = {"id": session_id} if session_id else {}
        session = BatchSession(
            batch_id=batch_id,
            subject=subject,
            teacher_id=teacher_id,
            scheduled_date=scheduled_date,
            start_time=start_time,
            duration_minutes=duration_minutes,
            status=SessionStatus.SCHEDULED,
            **kwargs,
        )
        db.session.add(session)
        db.session.flush()
        stamp = datetime(2025, 1, 1, 0, 0)
        if status in (SessionStatus.LIVE, SessionStatus.ENDED):
            apply_transition(session, SessionAction.START, at=stamp, room_reference=f"room_{session.id}")
        if status is SessionStatus.ENDED:
            apply_transition(session, SessionAction.END, at=stamp)
        if status is SessionStatus.CANCELLED:
            apply_transition(session, SessionAction.CANCEL, at=stamp, reason="test")
        db.session.commit()
        return session
