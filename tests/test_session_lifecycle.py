from datetime import date, datetime, time
from unittest import mock

from sqlalchemy.exc import OperationalError

from support import MONDAY, NOW, DatabaseTestCase, FailingProvisioner, RecordingProvisioner

from batchplan.errors import (
    BatchUnavailableError,
    ConflictWarning,
    PartialFailure,
    ProvisioningError,
    SessionNotFound,
    StateError,
    TeacherUnavailableError,
    ValidationError,
)
from batchplan.extensions import db
from batchplan.models import BatchSession
from batchplan.provisioning import get_provisioner
from batchplan.recurrence import HorizonUnit, RecurringRequest, Weekday
from batchplan.services import sessions as service
from batchplan.state_machine import SessionStatus


def count_sessions(batch_id: str = "batch_alpha") -> int:
    return db.session.query(BatchSession).filter_by(batch_id=batch_id).count()


class CreateSessionTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()

    def test_creates_scheduled_session_with_default_teacher(self) -> None:
        created = service.create_session(
            "batch_alpha", "Mathematics", MONDAY, time(9, 0), topic="Algebra", now=NOW
        )

        session = db.session.get(BatchSession, created.session.id)
        self.assertIs(session.status, SessionStatus.SCHEDULED)
        self.assertEqual(session.duration_minutes, 90)
        self.assertEqual((session.teaching_minutes, session.prep_buffer_minutes), (75, 15))
        self.assertEqual(session.teacher_id, "teacher_ravi")
        self.assertEqual(session.teacher_name, "Ravi Kumar")
        self.assertEqual(session.topic, "Algebra")
        self.assertIsNone(session.room_reference)
        self.assertFalse(created.adjusted)

    def test_accepts_string_inputs(self) -> None:
        created = service.create_session(
            "batch_alpha", "Physics", "2025-01-06", "14:30", "60", now=NOW
        )

        self.assertEqual(created.session.scheduled_date, MONDAY)
        self.assertEqual(created.session.start_time, time(14, 30))
        self.assertEqual(created.session.duration_minutes, 60)

    def test_rejects_past_datetime(self) -> None:
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Physics", date(2025, 1, 1), time(7, 59), now=NOW)
        self.assertEqual(count_sessions(), 0)

    def test_past_check_uses_schedule_timezone(self) -> None:
        # 02:00 UTC is 07:30 in Asia/Kolkata.
        aware_now = datetime.fromisoformat("2025-01-01T02:00:00+00:00")

        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Physics", date(2025, 1, 1), time(7, 0), now=aware_now)
        created = service.create_session(
            "batch_alpha", "Physics", date(2025, 1, 1), time(8, 0), now=aware_now
        )
        self.assertEqual(created.session.start_time, time(8, 0))

    def test_rejects_missing_fields_and_bad_duration(self) -> None:
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "  ", MONDAY, time(9, 0), now=NOW)
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Physics", None, time(9, 0), now=NOW)
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Physics", MONDAY, None, now=NOW)
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Physics", MONDAY, time(9, 0), 50, now=NOW)
        self.assertEqual(count_sessions(), 0)

    def test_rejects_sessions_running_past_midnight(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            service.create_session("batch_alpha", "Physics", MONDAY, time(23, 30), 60, now=NOW)
        self.assertEqual(ctx.exception.details["duration_minutes"], 60)
        self.assertEqual(count_sessions(), 0)

        created = service.create_session(
            "batch_alpha", "Physics", MONDAY, time(23, 0), 60, now=NOW
        )
        self.assertEqual(created.session.end_time, time(0, 0))

    def test_rejects_unknown_or_inactive_batch_and_foreign_subject(self) -> None:
        self.make_batch("batch_closed", status="inactive")

        with self.assertRaises(BatchUnavailableError):
            service.create_session("batch_missing", "Physics", MONDAY, time(9, 0), now=NOW)
        with self.assertRaises(BatchUnavailableError):
            service.create_session("batch_closed", "Physics", MONDAY, time(9, 0), now=NOW)
        with self.assertRaises(ValidationError):
            service.create_session("batch_alpha", "Biology", MONDAY, time(9, 0), now=NOW)

    def test_conflict_is_reported_unless_adjustment_accepted(self) -> None:
        existing = self.add_session(start_time=time(9, 30), duration_minutes=60)

        with self.assertRaises(ConflictWarning) as ctx:
            service.create_session("batch_alpha", "Mathematics", MONDAY, time(9, 0), 90, now=NOW)
        self.assertEqual(ctx.exception.resolution.start_time, time(10, 30))
        self.assertEqual(ctx.exception.details["conflicting_session_ids"], [existing.id])
        self.assertEqual(count_sessions(), 1)

        created = service.create_session(
            "batch_alpha",
            "Mathematics",
            MONDAY,
            time(9, 0),
            90,
            accept_adjusted_time=True,
            now=NOW,
        )
        self.assertTrue(created.adjusted)
        self.assertEqual(created.session.start_time, time(10, 30))
        self.assertEqual(count_sessions(), 2)

    def test_teacher_cannot_be_double_booked_across_batches(self) -> None:
        self.make_batch("batch_beta")
        service.create_session("batch_alpha", "Mathematics", MONDAY, time(9, 0), 60, now=NOW)

        with self.assertRaises(TeacherUnavailableError):
            service.create_session("batch_beta", "Mathematics", MONDAY, time(9, 30), 60, now=NOW)
        self.assertEqual(count_sessions("batch_beta"), 0)

    def test_teacher_daily_cap(self) -> None:
        self.app.config["MAX_TEACHER_SESSIONS_PER_DAY"] = 2
        service.create_session("batch_alpha", "Mathematics", MONDAY, time(9, 0), 60, now=NOW)
        service.create_session("batch_alpha", "Mathematics", MONDAY, time(11, 0), 60, now=NOW)

        with self.assertRaises(TeacherUnavailableError):
            service.create_session("batch_alpha", "Mathematics", MONDAY, time(14, 0), 60, now=NOW)
        self.assertEqual(count_sessions(), 2)


class RecurringCreateTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()
        self.make_batch("batch_beta")

    def weekdays_request(self) -> RecurringRequest:
        return RecurringRequest(
            weekdays=(Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU, Weekday.FRI),
            start_date=MONDAY,
            count=1,
            unit=HorizonUnit.WEEKS,
        )

    def test_creates_one_session_per_generated_date(self) -> None:
        request = RecurringRequest((Weekday.MON, Weekday.WED), MONDAY, 2, HorizonUnit.WEEKS)

        result = service.create_recurring_sessions(
            "batch_alpha", "Physics", request, time(16, 0), 60, now=NOW
        )

        self.assertEqual(result.created_count, 4)
        self.assertEqual(result.failed_count, 0)
        dates = sorted(
            db.session.get(BatchSession, session_id).scheduled_date
            for session_id in result.session_ids
        )
        self.assertEqual(
            dates, [date(2025, 1, 6), date(2025, 1, 8), date(2025, 1, 13), date(2025, 1, 15)]
        )

    def test_storage_failures_do_not_roll_back_other_dates(self) -> None:
        taken = [
            self.add_session("batch_beta", session_id=f"sess_taken{index}").id
            for index in range(3)
        ]
        db.session.expunge_all()
        ids = ["sess_fresh0", taken[0], "sess_fresh1", taken[1], taken[2]]

        with mock.patch.object(service, "new_session_id", side_effect=ids):
            result = service.create_recurring_sessions(
                "batch_alpha", "Physics", self.weekdays_request(), time(16, 0), 60, now=NOW
            )

        self.assertEqual(result.created_count, 2)
        self.assertEqual(result.failed_count, 3)
        self.assertEqual(result.created_count + result.failed_count, 5)
        self.assertEqual(
            sorted(result.failures), ["2025-01-07", "2025-01-09", "2025-01-10"]
        )
        self.assertEqual(sorted(result.session_ids), ["sess_fresh0", "sess_fresh1"])
        self.assertEqual(count_sessions(), 2)
        self.assertEqual(count_sessions("batch_beta"), 3)

    def test_failed_commit_does_not_poison_later_dates(self) -> None:
        real_commit = db.session.commit
        calls = []

        def flaky_commit() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        with mock.patch.object(db.session, "commit", side_effect=flaky_commit):
            result = service.create_recurring_sessions(
                "batch_alpha", "Physics", self.weekdays_request(), time(16, 0), 60, now=NOW
            )

        self.assertEqual(list(result.failures), ["2025-01-06"])
        self.assertEqual(result.created_count, 4)
        self.assertEqual(count_sessions(), 4)

    def test_conflicting_dates_are_shifted(self) -> None:
        blocker_id = self.add_session(scheduled_date=date(2025, 1, 8), start_time=time(16, 0)).id
        request = RecurringRequest((Weekday.MON, Weekday.WED), MONDAY, 1, HorizonUnit.WEEKS)

        result = service.create_recurring_sessions(
            "batch_alpha", "Physics", request, time(16, 0), 60, now=NOW
        )

        self.assertEqual(result.created_count, 2)
        created = {
            session.scheduled_date: session
            for session in (db.session.get(BatchSession, sid) for sid in result.session_ids)
        }
        self.assertEqual(created[date(2025, 1, 6)].start_time, time(16, 0))
        self.assertEqual(created[date(2025, 1, 8)].start_time, time(17, 0))
        self.assertEqual(db.session.get(BatchSession, blocker_id).start_time, time(16, 0))

    def test_validation_failures_are_counted_per_date(self) -> None:
        result = service.create_recurring_sessions(
            "batch_alpha",
            "Physics",
            self.weekdays_request(),
            time(16, 0),
            60,
            now=datetime(2025, 1, 8, 17, 0),
        )

        self.assertEqual(result.created_count, 2)
        self.assertEqual(result.failed_count, 3)

    def test_nothing_created_raises_partial_failure(self) -> None:
        with self.assertRaises(PartialFailure) as ctx:
            service.create_recurring_sessions(
                "batch_alpha",
                "Physics",
                self.weekdays_request(),
                time(16, 0),
                60,
                now=datetime(2025, 2, 1, 8, 0),
            )

        self.assertEqual(ctx.exception.result.created_count, 0)
        self.assertEqual(ctx.exception.result.failed_count, 5)
        self.assertEqual(count_sessions(), 0)


class StartSessionTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()
        self.session = service.create_session(
            "batch_alpha", "Mathematics", MONDAY, time(9, 0), now=NOW
        ).session

    def test_start_provisions_room_once(self) -> None:
        provisioner = self.use_provisioner(RecordingProvisioner())

        started = service.start_session(self.session.id)

        self.assertIs(started.session.status, SessionStatus.LIVE)
        self.assertEqual(started.session.room_reference, f"room_{self.session.id}")
        self.assertIsNotNone(started.session.started_at)
        roles = sorted({artifact.role for artifact in started.room.join_artifacts})
        self.assertEqual(roles, ["batch_coordinator", "parent", "student", "teacher"])

        with self.assertRaises(StateError):
            service.start_session(self.session.id)
        self.assertEqual(len(provisioner.calls), 1)

    def test_provisioning_failure_keeps_session_scheduled(self) -> None:
        provisioner = self.use_provisioner(FailingProvisioner())

        with self.assertRaises(ProvisioningError):
            service.start_session(self.session.id)

        db.session.expire_all()
        session = db.session.get(BatchSession, self.session.id)
        self.assertEqual(provisioner.calls, 1)
        self.assertIs(session.status, SessionStatus.SCHEDULED)
        self.assertIsNone(session.room_reference)
        self.assertIsNone(session.started_at)

    def test_local_provisioner_issues_signed_join_tokens(self) -> None:
        started = service.start_session(self.session.id)

        self.assertRegex(started.room.room_reference, r"^batchplan_20250106_0900_[a-z0-9]{6}$")
        provisioner = get_provisioner()
        for artifact in started.room.join_artifacts:
            claims = provisioner.verify_token(artifact.token)
            self.assertEqual(claims["session_id"], self.session.id)
            self.assertEqual(claims["room"], started.room.room_reference)
            self.assertIn(f"/classroom/{self.session.id}?token=", artifact.join_url)
        self.assertIsNone(provisioner.verify_token("not-a-token"))

    def test_start_unknown_session(self) -> None:
        with self.assertRaises(SessionNotFound):
            service.start_session("sess_missing")


class EndCancelDeleteTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()
        self.use_provisioner(RecordingProvisioner())

    def test_end_requires_live_session(self) -> None:
        session = self.add_session()

        with self.assertRaises(StateError):
            service.end_session(session.id)
        service.start_session(session.id)
        ended = service.end_session(session.id)

        self.assertIs(ended.status, SessionStatus.ENDED)
        self.assertIsNotNone(ended.ended_at)
        with self.assertRaises(StateError):
            service.end_session(session.id)

    def test_cancel_requires_reason_and_scheduled_status(self) -> None:
        session = self.add_session()
        live = self.add_session(start_time=time(12, 0), status=SessionStatus.LIVE)

        with self.assertRaises(ValidationError):
            service.cancel_session(session.id, "   ")
        cancelled = service.cancel_session(session.id, "Teacher on leave")

        self.assertIs(cancelled.status, SessionStatus.CANCELLED)
        self.assertEqual(cancelled.cancel_reason, "Teacher on leave")
        self.assertIsNotNone(cancelled.cancelled_at)
        with self.assertRaises(StateError):
            service.cancel_session(session.id, "again")
        with self.assertRaises(StateError):
            service.cancel_session(live.id, "mid-class")
        self.assertIs(db.session.get(BatchSession, live.id).status, SessionStatus.LIVE)

    def test_delete_refuses_live_sessions(self) -> None:
        live = self.add_session(status=SessionStatus.LIVE)
        ended = self.add_session(start_time=time(11, 0), status=SessionStatus.ENDED)
        cancelled = self.add_session(start_time=time(13, 0), status=SessionStatus.CANCELLED)
        scheduled = self.add_session(start_time=time(15, 0))
        live_id = live.id

        with self.assertRaises(StateError):
            service.delete_session(live_id)
        for session_id in (ended.id, cancelled.id, scheduled.id):
            service.delete_session(session_id)

        self.assertEqual(count_sessions(), 1)
        self.assertIs(db.session.get(BatchSession, live_id).status, SessionStatus.LIVE)
        with self.assertRaises(SessionNotFound):
            service.delete_session("sess_missing")


class UpdateSessionTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()
        self.session = service.create_session(
            "batch_alpha", "Mathematics", MONDAY, time(9, 0), 90, now=NOW
        ).session
        self.other = self.add_session(start_time=time(11, 0), duration_minutes=60)

    def test_moving_into_another_session_is_reported(self) -> None:
        with self.assertRaises(ConflictWarning) as ctx:
            service.update_session(self.session.id, {"start_time": "10:30"}, now=NOW)
        self.assertEqual(ctx.exception.resolution.start_time, time(12, 0))
        self.assertEqual(db.session.get(BatchSession, self.session.id).start_time, time(9, 0))

        updated = service.update_session(
            self.session.id, {"start_time": "10:30"}, accept_adjusted_time=True, now=NOW
        )
        self.assertEqual(updated.session.start_time, time(12, 0))
        self.assertTrue(updated.adjusted)

    def test_session_does_not_conflict_with_itself(self) -> None:
        updated = service.update_session(self.session.id, {"start_time": "09:15"}, now=NOW)

        self.assertEqual(updated.session.start_time, time(9, 15))
        self.assertFalse(updated.adjusted)

    def test_duration_change_rederives_split(self) -> None:
        updated = service.update_session(
            self.session.id, {"duration_minutes": 60, "topic": "Vectors"}, now=NOW
        )

        self.assertEqual(
            (updated.session.teaching_minutes, updated.session.prep_buffer_minutes), (49, 11)
        )
        self.assertEqual(updated.session.topic, "Vectors")

    def test_only_scheduled_sessions_can_be_updated(self) -> None:
        self.use_provisioner(RecordingProvisioner())
        service.start_session(self.session.id)

        with self.assertRaises(StateError):
            service.update_session(self.session.id, {"topic": "Late change"}, now=NOW)

    def test_moving_past_midnight_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            service.update_session(self.session.id, {"start_time": "23:00"}, now=NOW)
        self.assertEqual(db.session.get(BatchSession, self.session.id).start_time, time(9, 0))

    def test_unknown_fields_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            service.update_session(self.session.id, {"status": "live"}, now=NOW)
