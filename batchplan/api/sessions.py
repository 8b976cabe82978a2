"""Batch session endpoints: scheduling, lifecycle and bulk operations."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from flask import current_app, request
from flask_restx import Namespace, Resource, fields

from ..errors import SchedulingError
from ..recurrence import RecurringRequest
from ..services import reminders as reminder_service
from ..services import sessions as session_service
from .common import abort_for, as_bool, serialize_session


ns = Namespace("sessions", description="Batch session scheduling and lifecycle")

recurrence_model = ns.model(
    "Recurrence",
    {
        "weekdays": fields.List(fields.String, required=True, description="Mon..Sun"),
        "count": fields.Integer(required=True, min=1),
        "unit": fields.String(enum=["weeks", "months"], default="months"),
    },
)

session_model = ns.model(
    "SessionRequest",
    {
        "batch_id": fields.String(required=True),
        "subject": fields.String(required=True),
        "teacher_id": fields.String(),
        "teacher_name": fields.String(),
        "scheduled_date": fields.String(required=True, description="YYYY-MM-DD"),
        "start_time": fields.String(required=True, description="HH:MM"),
        "duration_minutes": fields.Integer(),
        "topic": fields.String(),
        "notes": fields.String(),
        "created_by": fields.String(),
        "accept_adjusted_time": fields.Boolean(default=False),
        "recurrence": fields.Nested(recurrence_model, allow_null=True),
    },
)

check_model = ns.model(
    "ConflictCheck",
    {
        "batch_id": fields.String(required=True),
        "scheduled_date": fields.String(required=True, description="YYYY-MM-DD"),
        "start_time": fields.String(required=True, description="HH:MM"),
        "duration_minutes": fields.Integer(),
        "exclude_session_id": fields.String(),
    },
)

cancel_model = ns.model("CancelRequest", {"reason": fields.String()})

bulk_model = ns.model(
    "BulkRequest",
    {
        "session_ids": fields.List(fields.String, required=True),
        "reason": fields.String(),
        "permanent": fields.Boolean(default=True, description="bulk-delete only; false cancels"),
    },
)

sweep_model = ns.model(
    "SweepRequest",
    {"now": fields.String(description="ISO datetime in the schedule timezone")},
)


def _payload() -> dict[str, Any]:
    return request.get_json(silent=True) or {}


def _cancel_reason(value: Optional[str]) -> str:
    reason = (value or "").strip()
    return reason or current_app.config.get("DEFAULT_CANCEL_REASON", "Cancelled by operator")


def _sweep_now() -> Optional[datetime]:
    raw = _payload().get("now")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        ns.abort(400, f"Invalid datetime '{raw}'")


@ns.route("")
class SessionList(Resource):
    """List sessions or schedule new ones."""

    @ns.doc(
        params={
            "batch_id": "Filter by batch",
            "status": "scheduled, live, ended or cancelled",
            "date_from": "YYYY-MM-DD",
            "date_to": "YYYY-MM-DD",
            "teacher_id": "Filter by teacher",
        }
    )
    def get(self) -> list[dict[str, Any]]:
        args = request.args
        try:
            sessions = session_service.list_sessions(
                batch_id=args.get("batch_id"),
                status=args.get("status"),
                date_from=args.get("date_from"),
                date_to=args.get("date_to"),
                teacher_id=args.get("teacher_id"),
            )
        except SchedulingError as exc:
            abort_for(ns, exc)
        return [serialize_session(session) for session in sessions]

    @ns.expect(session_model, validate=True)
    def post(self) -> tuple[dict[str, Any], int]:
        payload = _payload()
        common = {
            "teacher_id": payload.get("teacher_id"),
            "teacher_name": payload.get("teacher_name"),
            "topic": payload.get("topic"),
            "notes": payload.get("notes"),
            "created_by": payload.get("created_by"),
        }
        recurrence = payload.get("recurrence")
        try:
            if recurrence:
                request_ = RecurringRequest.build(
                    recurrence.get("weekdays") or [],
                    session_service.coerce_date(payload.get("scheduled_date")),
                    recurrence.get("count", 0),
                    recurrence.get("unit") or "months",
                )
                result = session_service.create_recurring_sessions(
                    payload.get("batch_id"),
                    payload.get("subject"),
                    request_,
                    payload.get("start_time"),
                    payload.get("duration_minutes"),
                    **common,
                )
                return result.as_payload(), 201

            created = session_service.create_session(
                payload.get("batch_id"),
                payload.get("subject"),
                payload.get("scheduled_date"),
                payload.get("start_time"),
                payload.get("duration_minutes"),
                accept_adjusted_time=as_bool(payload.get("accept_adjusted_time")),
                **common,
            )
        except SchedulingError as exc:
            abort_for(ns, exc)

        body: dict[str, Any] = {
            "session_id": created.session.id,
            "session": serialize_session(created.session),
        }
        if created.adjusted:
            body["adjustment"] = created.adjustment.as_payload()
        return body, 201


@ns.route("/check")
class ConflictCheck(Resource):
    """Preview the conflict detector's suggestion without storing anything."""

    @ns.expect(check_model, validate=True)
    def post(self) -> dict[str, Any]:
        payload = _payload()
        try:
            resolution = session_service.check_conflicts(
                payload.get("batch_id"),
                payload.get("scheduled_date"),
                payload.get("start_time"),
                payload.get("duration_minutes"),
                exclude_session_id=payload.get("exclude_session_id"),
            )
        except SchedulingError as exc:
            abort_for(ns, exc)
        return resolution.as_payload()


@ns.route("/<string:session_id>")
@ns.param("session_id", "Session identifier")
class SessionResource(Resource):
    def get(self, session_id: str) -> dict[str, Any]:
        try:
            session = session_service.get_session(session_id)
        except SchedulingError as exc:
            abort_for(ns, exc)
        return serialize_session(session)

    def patch(self, session_id: str) -> dict[str, Any]:
        payload = dict(_payload())
        accept = as_bool(payload.pop("accept_adjusted_time", None))
        try:
            updated = session_service.update_session(
                session_id, payload, accept_adjusted_time=accept
            )
        except SchedulingError as exc:
            abort_for(ns, exc)
        body = serialize_session(updated.session)
        if updated.adjusted:
            body["adjustment"] = updated.adjustment.as_payload()
        return body

    @ns.doc(params={"permanent": "true (default) deletes, false cancels", "reason": "Cancel reason"})
    def delete(self, session_id: str) -> dict[str, Any]:
        permanent = as_bool(request.args.get("permanent"), default=True)
        try:
            if permanent:
                session_service.delete_session(session_id)
                return {"deleted_count": 1}
            session_service.cancel_session(session_id, _cancel_reason(request.args.get("reason")))
        except SchedulingError as exc:
            abort_for(ns, exc)
        return {"cancelled_count": 1}


@ns.route("/<string:session_id>/start")
@ns.param("session_id", "Session identifier")
class StartSession(Resource):
    def post(self, session_id: str) -> dict[str, Any]:
        try:
            started = session_service.start_session(session_id)
        except SchedulingError as exc:
            abort_for(ns, exc)
        return started.as_payload()


@ns.route("/<string:session_id>/end")
@ns.param("session_id", "Session identifier")
class EndSession(Resource):
    def post(self, session_id: str) -> dict[str, Any]:
        try:
            session_service.end_session(session_id)
        except SchedulingError as exc:
            abort_for(ns, exc)
        return {}


@ns.route("/<string:session_id>/cancel")
@ns.param("session_id", "Session identifier")
class CancelSession(Resource):
    @ns.expect(cancel_model)
    def post(self, session_id: str) -> dict[str, Any]:
        try:
            session_service.cancel_session(session_id, _cancel_reason(_payload().get("reason")))
        except SchedulingError as exc:
            abort_for(ns, exc)
        return {"cancelled_count": 1}


@ns.route("/bulk-cancel")
class BulkCancel(Resource):
    @ns.expect(bulk_model, validate=True)
    def post(self) -> dict[str, Any]:
        payload = _payload()
        try:
            result = session_service.cancel_sessions(
                payload.get("session_ids") or [], _cancel_reason(payload.get("reason"))
            )
        except SchedulingError as exc:
            abort_for(ns, exc)
        return {"cancelled_count": result.succeeded_count, **result.as_payload()}


@ns.route("/bulk-delete")
class BulkDelete(Resource):
    @ns.expect(bulk_model, validate=True)
    def post(self) -> dict[str, Any]:
        payload = _payload()
        session_ids = payload.get("session_ids") or []
        if not as_bool(payload.get("permanent"), default=True):
            try:
                result = session_service.cancel_sessions(
                    session_ids, _cancel_reason(payload.get("reason"))
                )
            except SchedulingError as exc:
                abort_for(ns, exc)
            return {"cancelled_count": result.succeeded_count, **result.as_payload()}
        result = session_service.delete_sessions(session_ids)
        return {"deleted_count": result.succeeded_count, **result.as_payload()}


@ns.route("/auto-start")
class AutoStart(Resource):
    """Start every session whose preparation window has opened."""

    @ns.expect(sweep_model)
    def post(self) -> dict[str, Any]:
        result = session_service.auto_start_due_sessions(_sweep_now())
        return {"started_count": result.succeeded_count, **result.as_payload()}


@ns.route("/reminders")
class Reminders(Resource):
    """Dispatch the reminders that are due now."""

    @ns.expect(sweep_model)
    def post(self) -> dict[str, Any]:
        result = reminder_service.dispatch_session_reminders(_sweep_now())
        return {"sent_count": result.succeeded_count, **result.as_payload()}

