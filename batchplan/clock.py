"""Authoritative clock helpers.

Session dates and start times are stored as wall-clock values in the
configured schedule timezone. Audit timestamps are naive UTC.
"""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


DEFAULT_TIMEZONE = "Asia/Kolkata"


def schedule_zone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("SCHEDULE_TIMEZONE") or DEFAULT_TIMEZONE
    return ZoneInfo(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(now: datetime | None = None) -> datetime:
    """Return ``now`` as an aware datetime in the schedule timezone.

    Naive values are taken to already be schedule-local wall-clock time.
    """
    zone = schedule_zone()
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now.astimezone(zone)


def localize(day: date, start: time) -> datetime:
    return datetime.combine(day, start).replace(tzinfo=schedule_zone())


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(total: int) -> time:
    if not 0 <= total < 24 * 60:
        raise ValueError(f"{total} minutes is outside a single day")
    return time(total // 60, total % 60)


def parse_time(value: str) -> time:
    """Parse ``HH:MM`` (seconds are tolerated and dropped)."""
    parsed = time.fromisoformat(value.strip())
    return parsed.replace(second=0, microsecond=0)


def parse_date(value: str) -> date:
    return date.fromisoformat(value.strip()[:10])
