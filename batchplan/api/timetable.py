"""Timetable projections."""
from __future__ import annotations

from typing import Any

from flask import request
from flask_restx import Namespace, Resource

from ..clock import local_now, parse_date
from ..timetable import daily_timetable, weekly_timetable
from .common import serialize_session


ns = Namespace("timetable", description="Weekly and daily timetables")


@ns.route("/weekly/<string:batch_id>")
@ns.param("batch_id", "Batch identifier")
class WeeklyTimetable(Resource):
    def get(self, batch_id: str) -> dict[str, Any]:
        grouped = weekly_timetable(batch_id)
        return {
            "batch_id": batch_id,
            "days": {day: [slot.as_payload() for slot in slots] for day, slots in grouped.items()},
        }


@ns.route("/daily")
@ns.doc(params={"date": "YYYY-MM-DD, defaults to today", "batch_id": "Optional batch filter"})
class DailyTimetable(Resource):
    def get(self) -> dict[str, Any]:
        raw_date = request.args.get("date")
        try:
            day = parse_date(raw_date) if raw_date else local_now().date()
        except ValueError:
            ns.abort(400, f"Invalid date '{raw_date}'")
        batch_id = request.args.get("batch_id") or None
        sessions = daily_timetable(day, batch_id)
        return {
            "date": day.isoformat(),
            "batch_id": batch_id,
            "sessions": [serialize_session(session) for session in sessions],
        }
