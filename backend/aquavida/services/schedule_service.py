# Overview: Pure time-slot arithmetic: HH:MM parsing, overlap tests, next occurrence.

"""
Scheduling rules.

All times are "HH:MM" strings converted to minute-of-day integers. Slots
are half-open [start, end): a slot ending at 09:00 does not collide with
one starting at 09:00. Weekdays are 0=Sunday .. 6=Saturday.

Nothing in this module touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from ..errors import ValidationError
from ..time_utils import school_weekday
from ..validation import require_hhmm


WEEKDAYS = range(7)


@dataclass(frozen=True)
class TimeSlot:
    weekday: int
    start: str
    end: str

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end)

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


def parse_hhmm(value: str) -> int:
    """'07:30' -> 450."""
    value = require_hhmm("time", value)
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def make_slot(weekday, start, end) -> TimeSlot:
    """Validate and build a slot (weekday in 0..6, end strictly after start)."""
    if isinstance(weekday, bool) or not isinstance(weekday, int) or weekday not in WEEKDAYS:
        raise ValidationError("weekday must be an integer between 0 (Sunday) and 6 (Saturday)", weekday=weekday)
    start = require_hhmm("start_time", start)
    end = require_hhmm("end_time", end)
    slot = TimeSlot(weekday, start, end)
    if slot.end_minutes <= slot.start_minutes:
        raise ValidationError("end_time must be after start_time", start_time=start, end_time=end)
    return slot


def duration_minutes(start: str, end: str) -> int:
    return parse_hhmm(end) - parse_hhmm(start)


def intervals_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Half-open overlap: [a0, a1) and [b0, b1) share at least one minute."""
    a0, a1 = parse_hhmm(start_a), parse_hhmm(end_a)
    b0, b1 = parse_hhmm(start_b), parse_hhmm(end_b)
    return a0 < b1 and b0 < a1


def has_schedule_conflict(a: TimeSlot, b: TimeSlot) -> bool:
    """Same weekday and overlapping [start, end). Symmetric by construction."""
    if a.weekday != b.weekday:
        return False
    return intervals_overlap(a.start, a.end, b.start, b.end)


def find_conflicts(candidates: Iterable[TimeSlot], existing: Iterable[TimeSlot]) -> list[tuple[TimeSlot, TimeSlot]]:
    existing = list(existing)
    return [(c, e) for c in candidates for e in existing if has_schedule_conflict(c, e)]


def is_within_hours(time_value: str, start: str, end: str) -> bool:
    """Inclusive on both ends: a teacher working 08:00-12:00 is available at 12:00."""
    t = parse_hhmm(time_value)
    return parse_hhmm(start) <= t <= parse_hhmm(end)


def next_occurrence(slots: Iterable[TimeSlot], *, now: datetime) -> datetime | None:
    """
    Start datetime of the nearest upcoming slot.

    A slot later today counts; a slot that already started today rolls to
    next week.
    """
    best = None
    today_weekday = school_weekday(now.date())
    now_minutes = now.hour * 60 + now.minute
    for slot in slots:
        days_ahead = (slot.weekday - today_weekday) % 7
        if days_ahead == 0 and slot.start_minutes <= now_minutes:
            days_ahead = 7
        day = now.date() + timedelta(days=days_ahead)
        start = datetime.combine(day, datetime.min.time()) + timedelta(minutes=slot.start_minutes)
        if best is None or start < best:
            best = start
    return best


def weekday_of(d: date) -> int:
    return school_weekday(d)
