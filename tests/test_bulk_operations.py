from datetime import time
from unittest import mock

from sqlalchemy.exc import OperationalError

from support import DatabaseTestCase

from batchplan.errors import ValidationError
from batchplan.extensions import db
from batchplan.models import BatchSession
from batchplan.services import sessions as service
from batchplan.state_machine import SessionStatus


class BulkDeleteTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()
        self.scheduled = self.add_session(start_time=time(9, 0)).id
        self.live = self.add_session(start_time=time(11, 0), status=SessionStatus.LIVE).id
        self.ended = self.add_session(start_time=time(13, 0), status=SessionStatus.ENDED).id

    def test_live_sessions_are_skipped(self) -> None:
        result = service.delete_sessions([self.scheduled, self.live, self.ended])

        self.assertEqual(result.succeeded_count, 2)
        self.assertEqual(result.skipped_ids, [self.live])
        self.assertEqual(result.failed_count, 0)
        self.assertIsNone(db.session.get(BatchSession, self.scheduled))
        self.assertIsNone(db.session.get(BatchSession, self.ended))
        self.assertIs(db.session.get(BatchSession, self.live).status, SessionStatus.LIVE)

    def test_unknown_and_duplicate_ids(self) -> None:
        result = service.delete_sessions([self.scheduled, self.scheduled, "sess_missing", ""])

        self.assertEqual(result.requested, 2)
        self.assertEqual(result.succeeded_ids, [self.scheduled])
        self.assertEqual(result.skipped_ids, ["sess_missing"])
        self.assertLessEqual(result.succeeded_count, result.requested)

    def test_failed_commit_does_not_poison_later_sessions(self) -> None:
        later = self.add_session(start_time=time(15, 0)).id
        real_commit = db.session.commit
        calls = []

        def flaky_commit() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        with mock.patch.object(db.session, "commit", side_effect=flaky_commit):
            result = service.delete_sessions([self.scheduled, self.ended, later])

        self.assertEqual(list(result.failures), [self.scheduled])
        self.assertEqual(result.succeeded_ids, [self.ended, later])
        self.assertIsNotNone(db.session.get(BatchSession, self.scheduled))
        self.assertIsNone(db.session.get(BatchSession, later))

    def test_empty_selection(self) -> None:
        result = service.delete_sessions([])

        self.assertEqual(result.as_payload()["succeeded_count"], 0)
        self.assertEqual(result.requested, 0)


class BulkCancelTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_batch()

    def test_only_scheduled_sessions_are_cancelled(self) -> None:
        first = self.add_session(start_time=time(8, 0)).id
        second = self.add_session(start_time=time(10, 0)).id
        live = self.add_session(start_time=time(12, 0), status=SessionStatus.LIVE).id
        ended = self.add_session(start_time=time(14, 0), status=SessionStatus.ENDED).id
        cancelled = self.add_session(start_time=time(16, 0), status=SessionStatus.CANCELLED).id

        result = service.cancel_sessions([first, live, second, ended, cancelled], "Holiday")

        self.assertEqual(result.succeeded_ids, [first, second])
        self.assertEqual(sorted(result.skipped_ids), sorted([live, ended, cancelled]))
        for session_id in (first, second):
            session = db.session.get(BatchSession, session_id)
            self.assertIs(session.status, SessionStatus.CANCELLED)
            self.assertEqual(session.cancel_reason, "Holiday")
        self.assertIs(db.session.get(BatchSession, live).status, SessionStatus.LIVE)
        self.assertEqual(db.session.get(BatchSession, cancelled).cancel_reason, "test")

    def test_reason_is_required(self) -> None:
        session_id = self.add_session().id

        with self.assertRaises(ValidationError):
            service.cancel_sessions([session_id], "")
        self.assertIs(db.session.get(BatchSession, session_id).status, SessionStatus.SCHEDULED)
