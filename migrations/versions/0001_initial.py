"""Initial batch session schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "batch",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("subjects", sa.JSON(), nullable=False),
        sa.Column("coordinator_id", sa.String(length=255)),
        sa.Column("coordinator_name", sa.String(length=255)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('active','inactive','archived')", name="chk_batch_status"
        ),
        sa.CheckConstraint("max_students > 0", name="chk_batch_capacity"),
    )

    op.create_table(
        "batch_teacher",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "batch_id",
            sa.String(length=32),
            sa.ForeignKey("batch.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("subject", sa.String(length=120), nullable=False),
        sa.Column("teacher_id", sa.String(length=255), nullable=False),
        sa.Column("teacher_name", sa.String(length=255)),
        sa.UniqueConstraint("batch_id", "subject", name="uq_batch_subject"),
    )
    op.create_index("ix_batch_teacher_batch_id", "batch_teacher", ["batch_id"])
    op.create_index("ix_batch_teacher_teacher_id", "batch_teacher", ["teacher_id"])

    op.create_table(
        "batch_student",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "batch_id",
            sa.String(length=32),
            sa.ForeignKey("batch.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("student_id", sa.String(length=255), nullable=False),
        sa.Column("student_name", sa.String(length=255)),
        sa.Column("parent_id", sa.String(length=255)),
        sa.Column("parent_name", sa.String(length=255)),
        sa.UniqueConstraint("batch_id", "student_id", name="uq_batch_student"),
    )
    op.create_index("ix_batch_student_batch_id", "batch_student", ["batch_id"])

    op.create_table(
        "batch_session",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column(
            "batch_id",
            sa.String(length=32),
            sa.ForeignKey("batch.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("subject", sa.String(length=120), nullable=False),
        sa.Column("teacher_id", sa.String(length=255)),
        sa.Column("teacher_name", sa.String(length=255)),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("teaching_minutes", sa.Integer(), nullable=False),
        sa.Column("prep_buffer_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("room_reference", sa.String(length=255)),
        sa.Column("topic", sa.String(length=255)),
        sa.Column("notes", sa.Text()),
        sa.Column("cancel_reason", sa.Text()),
        sa.Column("created_by", sa.String(length=255)),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("ended_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "teaching_minutes + prep_buffer_minutes = duration_minutes",
            name="chk_session_duration_split",
        ),
        sa.CheckConstraint("duration_minutes > 0", name="chk_session_duration_positive"),
    )
    op.create_index("ix_batch_session_batch_id", "batch_session", ["batch_id"])
    op.create_index("ix_batch_session_teacher_id", "batch_session", ["teacher_id"])
    op.create_index("ix_batch_session_scheduled_date", "batch_session", ["scheduled_date"])
    op.create_index("ix_batch_session_status", "batch_session", ["status"])
    op.create_index("ix_batch_session_room_reference", "batch_session", ["room_reference"])

    op.create_table(
        "reminder_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(length=32),
            sa.ForeignKey("batch_session.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("window", sa.String(length=16), nullable=False),
        sa.Column("recipients", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("session_id", "window", name="uq_reminder_window"),
    )
    op.create_index("ix_reminder_log_session_id", "reminder_log", ["session_id"])


def downgrade() -> None:
    op.drop_index("ix_reminder_log_session_id", table_name="reminder_log")
    op.drop_table("reminder_log")
    for index in (
        "ix_batch_session_room_reference",
        "ix_batch_session_status",
        "ix_batch_session_scheduled_date",
        "ix_batch_session_teacher_id",
        "ix_batch_session_batch_id",
    ):
        op.drop_index(index, table_name="batch_session")
    op.drop_table("batch_session")
    op.drop_index("ix_batch_student_batch_id", table_name="batch_student")
    op.drop_table("batch_student")
    op.drop_index("ix_batch_teacher_teacher_id", table_name="batch_teacher")
    op.drop_index("ix_batch_teacher_batch_id", table_name="batch_teacher")
    op.drop_table("batch_teacher")
    op.drop_table("batch")
