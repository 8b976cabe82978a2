from __future__ import annotations

from typing import Optional

from .extensions import db
from .models import Batch, BatchStudent, BatchTeacher


def seed_data() -> Optional[Batch]:
    if db.session.query(Batch.id).first() is not None:
        return None

    batch = Batch(
        name="Class 10 - Morning",
        max_students=30,
        subjects=["Mathematics", "Physics", "Chemistry"],
        coordinator_id="coord_anita",
        coordinator_name="Anita Rao",
    )
    for subject, teacher_id, teacher_name in (
        ("Mathematics", "teacher_ravi", "Ravi Kumar"),
        ("Physics", "teacher_meera", "Meera Nair"),
        ("Chemistry", "teacher_john", "John Mathew"),
    ):
        batch.teachers.append(
            BatchTeacher(subject=subject, teacher_id=teacher_id, teacher_name=teacher_name)
        )
    for index, (student, parent) in enumerate(
        (
            ("Arjun Menon", "Suresh Menon"),
            ("Diya Shah", "Kavita Shah"),
            ("Kabir Singh", None),
        ),
        start=1,
    ):
        batch.students.append(
            BatchStudent(
                student_id=f"student_{index:03d}",
                student_name=student,
                parent_id=f"parent_{index:03d}" if parent else None,
                parent_name=parent,
            )
        )

    db.session.add(batch)
    db.session.commit()
    return batch
