"""Expand a weekday pattern and a horizon into concrete session dates."""
from __future__ import annotations

import calendar
import enum
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Sequence

from .errors import ValidationError


class Weekday(str, enum.Enum):
    MON = "Mon"
    TUE = "Tue"
    WED = "Wed"
    THU = "Thu"
    FRI = "Fri"
    SAT = "Sat"
    SUN = "Sun"

    @property
    def index(self) -> int:
        """Day-of-week index with Sunday=0, Monday=1 ... Saturday=6."""
        return _WEEKDAY_INDEX[self]

    @property
    def full_name(self) -> str:
        return _FULL_NAMES[self]

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return _BY_INDEX[day_index(day)]

    @classmethod
    def parse(cls, value: "Weekday | str") -> "Weekday":
        if isinstance(value, Weekday):
            return value
        token = str(value).strip()[:3].title()
        try:
            return cls(token)
        except ValueError:
            raise ValidationError(f"Unknown weekday '{value}'", {"weekday": value}) from None


_WEEKDAY_INDEX = {
    Weekday.SUN: 0,
    Weekday.MON: 1,
    Weekday.TUE: 2,
    Weekday.WED: 3,
    Weekday.THU: 4,
    Weekday.FRI: 5,
    Weekday.SAT: 6,
}
_BY_INDEX = {index: weekday for weekday, index in _WEEKDAY_INDEX.items()}
_FULL_NAMES = {
    Weekday.MON: "Monday",
    Weekday.TUE: "Tuesday",
    Weekday.WED: "Wednesday",
    Weekday.THU: "Thursday",
    Weekday.FRI: "Friday",
    Weekday.SAT: "Saturday",
    Weekday.SUN: "Sunday",
}


class HorizonUnit(str, enum.Enum):
    WEEKS = "weeks"
    MONTHS = "months"


def day_index(day: date) -> int:
    return (day.weekday() + 1) % 7


def add_months(day: date, months: int) -> date:
    """Calendar-month addition, clamping to the last day of a shorter month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def horizon_end(start: date, count: int, unit: HorizonUnit) -> date:
    if unit is HorizonUnit.MONTHS:
        return add_months(start, count)
    return start + timedelta(days=count * 7)


@dataclass(frozen=True)
class GeneratedDate:
    weekday: Weekday
    date: date


@dataclass(frozen=True)
class RecurringRequest:
    weekdays: tuple[Weekday, ...]
    start_date: date
    count: int
    unit: HorizonUnit = HorizonUnit.MONTHS

    @classmethod
    def build(
        cls,
        weekdays: Iterable["Weekday | str"],
        start_date: date,
        count: int,
        unit: "HorizonUnit | str" = HorizonUnit.MONTHS,
    ) -> "RecurringRequest":
        try:
            parsed_unit = HorizonUnit(unit)
        except ValueError:
            raise ValidationError(f"Unknown horizon unit '{unit}'", {"unit": unit}) from None
        return cls(
            weekdays=tuple(Weekday.parse(day) for day in weekdays),
            start_date=start_date,
            count=int(count),
            unit=parsed_unit,
        )

    @property
    def end_date(self) -> date:
        return horizon_end(self.start_date, self.count, self.unit)

    def dates(self) -> list[GeneratedDate]:
        return generate_dates(self.weekdays, self.start_date, self.count, self.unit)


def generate_dates(
    weekdays: Sequence[Weekday],
    start: date,
    count: int,
    unit: HorizonUnit = HorizonUnit.MONTHS,
) -> list[GeneratedDate]:
    """Return every date in ``[start, end)`` falling on one of ``weekdays``.

    The scan covers ``ceil(days / 7) + 1`` weeks so that the week containing
    ``end`` is reached even when ``start`` falls late in its own week.
    """
    if not weekdays:
        raise ValidationError("At least one weekday is required for a recurring schedule")
    if count < 1:
        raise ValidationError("Recurring horizon must be at least 1", {"count": count})

    end = horizon_end(start, count, unit)
    weeks_to_scan = math.ceil((end - start).days / 7) + 1
    start_index = day_index(start)

    found: dict[date, Weekday] = {}
    for week in range(weeks_to_scan):
        week_anchor = start + timedelta(days=week * 7)
        for weekday in weekdays:
            offset = (weekday.index - start_index + 7) % 7
            candidate = week_anchor + timedelta(days=offset)
            if start <= candidate < end and candidate not in found:
                found[candidate] = weekday

    return [GeneratedDate(weekday=found[day], date=day) for day in sorted(found)]
