# Overview: Service-layer operations for lessons; scheduling, state machine and attendance marking.

"""
Lesson Service

STATE MACHINE:
    scheduled -> in_progress -> completed
    scheduled | in_progress -> cancelled
    scheduled | in_progress -> postponed   (cancel with a reschedule date)

    completed, cancelled and postponed are terminal.

RULES:
- A teacher never has two non-cancelled lessons on the same date with
  overlapping [start, end).
- Teacher working hours are advisory; ENFORCE_TEACHER_AVAILABILITY turns
  the check into a hard ScheduleConflictError.
- Every attendance mark upserts both the lesson roster line and the single
  Attendance row for (student, lesson), then refreshes the lesson's frozen
  statistics, all in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from flask import current_app

from ..errors import InvalidTransitionError, ScheduleConflictError, ValidationError
from ..extensions import db
from ..models import Attendance, Lesson, LessonRosterEntry, Student, SwimClass, Teacher
from ..rounding import round_half_up
from ..time_utils import utcnow
from ..validation import coerce_date, require_choice, require_hhmm
from . import entity_store
from .concurrency import run_with_retry, touch
from .schedule_service import format_hhmm, intervals_overlap, make_slot, weekday_of
from .teacher_service import is_available


# =============================================================================
# LESSON STATUS (CONSTANTS)
# =============================================================================

LESSON_SCHEDULED = "scheduled"
LESSON_IN_PROGRESS = "in_progress"
LESSON_COMPLETED = "completed"
LESSON_CANCELLED = "cancelled"
LESSON_POSTPONED = "postponed"

VALID_LESSON_STATUSES = [
    LESSON_SCHEDULED,
    LESSON_IN_PROGRESS,
    LESSON_COMPLETED,
    LESSON_CANCELLED,
    LESSON_POSTPONED,
]

CANCEL_REASONS = ["teacher_illness", "holiday", "maintenance", "weather", "other"]


# =============================================================================
# ATTENDANCE STATUS (CONSTANTS)
# =============================================================================

PRESENT = "present"
ABSENT = "absent"
EXCUSED = "excused"
MEDICAL_NOTE = "medical_note"

VALID_ATTENDANCE_STATUSES = [PRESENT, ABSENT, EXCUSED, MEDICAL_NOTE]

# action -> (allowed source states, target state)
_TRANSITIONS = {
    "start": ({LESSON_SCHEDULED}, LESSON_IN_PROGRESS),
    "finish": ({LESSON_IN_PROGRESS}, LESSON_COMPLETED),
    "cancel": ({LESSON_SCHEDULED, LESSON_IN_PROGRESS}, LESSON_CANCELLED),
    "postpone": ({LESSON_SCHEDULED, LESSON_IN_PROGRESS}, LESSON_POSTPONED),
}

_OPEN_FOR_ATTENDANCE = {LESSON_SCHEDULED, LESSON_IN_PROGRESS, LESSON_COMPLETED}


@dataclass(frozen=True)
class AttendanceStats:
    total: int
    present: int
    absent: int
    pct: int


def attendance_stats(statuses: Iterable[str]) -> AttendanceStats:
    """present / total roster entries, rounded half-up to an integer."""
    statuses = list(statuses)
    total = len(statuses)
    present = sum(1 for s in statuses if s == PRESENT)
    pct = int(round_half_up(present / total * 100, 0)) if total else 0
    return AttendanceStats(total=total, present=present, absent=total - present, pct=pct)


def next_status(current: str, action: str) -> str:
    allowed, target = _TRANSITIONS[action]
    if current not in allowed:
        raise InvalidTransitionError("lesson", current, action)
    return target


def refresh_lesson_stats(lesson: Lesson) -> AttendanceStats:
    """Recount the roster into the lesson's stored attendance fields. Does not commit."""
    stats = attendance_stats(r.status for r in lesson.roster)
    lesson.total_students = stats.total
    lesson.present_count = stats.present
    lesson.absent_count = stats.absent
    lesson.attendance_pct = stats.pct
    return stats


# =============================================================================
# SCHEDULING
# =============================================================================

def _check_double_booking(teacher_id: int, lesson_date: date, start: str, end: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Lesson).filter(
        Lesson.teacher_id == teacher_id,
        Lesson.lesson_date == lesson_date,
        Lesson.status != LESSON_CANCELLED,
    )
    if exclude_id is not None:
        query = query.filter(Lesson.id != exclude_id)
    for other in query.all():
        if intervals_overlap(start, end, other.start_time, other.end_time):
            raise ScheduleConflictError(
                "Teacher already has a lesson at this time",
                teacher_id=teacher_id,
                lesson_id=other.id,
                class_id=other.class_id,
                lesson_date=lesson_date.isoformat(),
                start_time=other.start_time,
                end_time=other.end_time,
            )


def _check_availability(teacher: Teacher, lesson_date: date, start: str, end: str) -> None:
    weekday = weekday_of(lesson_date)
    if is_available(teacher, weekday, start) and is_available(teacher, weekday, end):
        return
    if current_app.config.get("ENFORCE_TEACHER_AVAILABILITY"):
        raise ScheduleConflictError(
            "Lesson falls outside the teacher's working hours",
            teacher_id=teacher.id,
            lesson_date=lesson_date.isoformat(),
            start_time=start,
            end_time=end,
        )
    current_app.logger.warning(
        "Teacher %s scheduled outside working hours on %s %s-%s",
        teacher.id, lesson_date.isoformat(), start, end,
    )


def _default_times(swim_class: SwimClass, lesson_date: date) -> tuple[str, str]:
    weekday = weekday_of(lesson_date)
    slot = next((s for s in swim_class.slots if s.weekday == weekday), None)
    if slot is None:
        raise ValidationError(
            "Class has no slot on that weekday; start_time and end_time are required",
            class_id=swim_class.id, weekday=weekday,
        )
    return slot.start_time, slot.end_time


def create_lesson(
    class_id: int,
    lesson_date,
    start_time: str | None = None,
    end_time: str | None = None,
    *,
    teacher_id: int | None = None,
    content: dict | None = None,
    notes: str | None = None,
) -> Lesson:
    """
    Schedule one lesson of a class.

    Times default to the class slot for that weekday. The roster starts with
    every enrolled student marked absent.

    Raises:
        ValidationError: bad date/times or class closed
        ScheduleConflictError: teacher double-booked (or outside working
            hours when enforcement is on)
    """
    lesson_date = coerce_date("lesson_date", lesson_date)
    if lesson_date is None:
        raise ValidationError("lesson_date is required")

    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        if not swim_class.is_active:
            raise ValidationError("Cannot schedule lessons for a closed class", class_id=class_id)

        start, end = start_time, end_time
        if start is None or end is None:
            start, end = _default_times(swim_class, lesson_date)
        slot = make_slot(weekday_of(lesson_date), start, end)

        teacher = entity_store.get(Teacher, teacher_id or swim_class.teacher_id)
        if not teacher.is_active:
            raise ValidationError("Teacher is not active", teacher_id=teacher.id)
        _check_double_booking(teacher.id, lesson_date, slot.start, slot.end)
        _check_availability(teacher, lesson_date, slot.start, slot.end)

        lesson = Lesson(
            class_id=swim_class.id,
            teacher_id=teacher.id,
            lesson_date=lesson_date,
            start_time=slot.start,
            end_time=slot.end,
            duration_minutes=slot.duration_minutes,
            status=LESSON_SCHEDULED,
            content=content,
            notes=notes,
        )
        lesson.roster = [
            LessonRosterEntry(student_id=e.student_id, status=ABSENT)
            for e in swim_class.enrollments
        ]
        refresh_lesson_stats(lesson)
        db.session.add(lesson)
        db.session.commit()
        current_app.logger.info(
            "Scheduled lesson %s for class %s on %s %s-%s",
            lesson.id, class_id, lesson_date.isoformat(), slot.start, slot.end,
        )
        return lesson

    return run_with_retry(_op)


def update_lesson(lesson_id: int, changes: dict) -> Lesson:
    """Reschedule or edit a lesson that has not started yet."""
    allowed = {"lesson_date", "start_time", "end_time", "teacher_id", "content", "notes"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        if lesson.status != LESSON_SCHEDULED:
            raise InvalidTransitionError("lesson", lesson.status, "edit")

        lesson_date = coerce_date("lesson_date", changes.get("lesson_date", lesson.lesson_date))
        slot = make_slot(
            weekday_of(lesson_date),
            changes.get("start_time", lesson.start_time),
            changes.get("end_time", lesson.end_time),
        )
        teacher = entity_store.get(Teacher, changes.get("teacher_id", lesson.teacher_id))
        if teacher.id != lesson.teacher_id and not teacher.is_active:
            raise ValidationError("Teacher is not active", teacher_id=teacher.id)
        if {"lesson_date", "start_time", "end_time", "teacher_id"} & set(changes):
            _check_double_booking(teacher.id, lesson_date, slot.start, slot.end, exclude_id=lesson.id)
            _check_availability(teacher, lesson_date, slot.start, slot.end)

        lesson.lesson_date = lesson_date
        lesson.start_time = slot.start
        lesson.end_time = slot.end
        lesson.duration_minutes = slot.duration_minutes
        lesson.teacher_id = teacher.id
        if "content" in changes:
            lesson.content = changes["content"]
        if "notes" in changes:
            lesson.notes = changes["notes"]
        db.session.commit()
        return lesson

    return run_with_retry(_op)


# =============================================================================
# STATE MACHINE
# =============================================================================

def start_lesson(lesson_id: int, *, now: datetime | None = None) -> Lesson:
    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        lesson.status = next_status(lesson.status, "start")
        lesson.started_at = now or utcnow()
        db.session.commit()
        current_app.logger.info("Lesson %s started", lesson_id)
        return lesson

    return run_with_retry(_op)


def finish_lesson(lesson_id: int, *, now: datetime | None = None) -> Lesson:
    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        lesson.status = next_status(lesson.status, "finish")
        lesson.finished_at = now or utcnow()
        stats = refresh_lesson_stats(lesson)
        db.session.commit()
        current_app.logger.info(
            "Lesson %s completed: %s/%s present (%s%%)",
            lesson_id, stats.present, stats.total, stats.pct,
        )
        return lesson

    return run_with_retry(_op)


def cancel_lesson(
    lesson_id: int,
    reason: str,
    description: str | None = None,
    reschedule_date=None,
) -> Lesson:
    """Cancel, or postpone when a reschedule date is supplied."""
    require_choice("reason", reason, CANCEL_REASONS)
    reschedule_date = coerce_date("reschedule_date", reschedule_date)

    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        action = "postpone" if reschedule_date is not None else "cancel"
        lesson.status = next_status(lesson.status, action)
        lesson.cancellation_reason = reason
        lesson.cancellation_description = description
        lesson.reschedule_date = reschedule_date
        db.session.commit()
        current_app.logger.info("Lesson %s %s (%s)", lesson_id, lesson.status, reason)
        return lesson

    return run_with_retry(_op)


# =============================================================================
# ATTENDANCE
# =============================================================================

def _mark_locked(
    lesson: Lesson,
    student_id: int,
    status: str,
    note: str | None,
    arrival_time: str | None,
    actor_user_id: int | None,
    now: datetime,
) -> Attendance:
    require_choice("status", status, VALID_ATTENDANCE_STATUSES)
    entity_store.get(Student, student_id)
    if status == PRESENT:
        arrival_time = require_hhmm("arrival_time", arrival_time) if arrival_time else format_hhmm(now.hour * 60 + now.minute)
    else:
        arrival_time = None

    entry = next((r for r in lesson.roster if r.student_id == student_id), None)
    if entry is None:
        entry = LessonRosterEntry(student_id=student_id)
        lesson.roster.append(entry)
    entry.status = status
    entry.note = note
    entry.arrival_time = arrival_time

    record = (
        db.session.query(Attendance)
        .filter_by(student_id=student_id, lesson_id=lesson.id)
        .first()
    )
    if record is None:
        record = Attendance(
            student_id=student_id,
            lesson_id=lesson.id,
            class_id=lesson.class_id,
            lesson_date=lesson.lesson_date,
            recorded_at=now,
        )
        db.session.add(record)
    record.status = status
    record.note = note
    record.arrival_time = arrival_time
    record.recorded_by_user_id = actor_user_id

    refresh_lesson_stats(lesson)
    touch(lesson)
    return record


def mark_attendance(
    lesson_id: int,
    student_id: int,
    status: str,
    note: str | None = None,
    *,
    arrival_time: str | None = None,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> Attendance:
    """
    Upsert one student's attendance.

    Marking the same (student, lesson) twice overwrites the first mark; the
    Attendance table never holds two rows for the pair.
    """
    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        if lesson.status not in _OPEN_FOR_ATTENDANCE:
            raise InvalidTransitionError("lesson", lesson.status, "mark attendance for")
        record = _mark_locked(lesson, student_id, status, note, arrival_time, actor_user_id, now or utcnow())
        db.session.commit()
        return record

    return run_with_retry(_op)


def mark_attendance_bulk(
    lesson_id: int,
    marks: list[dict],
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> list[Attendance]:
    """Apply several {"student_id", "status", "note"?, "arrival_time"?} marks atomically."""
    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        if lesson.status not in _OPEN_FOR_ATTENDANCE:
            raise InvalidTransitionError("lesson", lesson.status, "mark attendance for")
        stamp = now or utcnow()
        records = [
            _mark_locked(
                lesson,
                mark["student_id"],
                mark["status"],
                mark.get("note"),
                mark.get("arrival_time"),
                actor_user_id,
                stamp,
            )
            for mark in marks
        ]
        db.session.commit()
        return records

    return run_with_retry(_op)


def lesson_stats(lesson: Lesson) -> AttendanceStats:
    return attendance_stats(r.status for r in lesson.roster)


# =============================================================================
# QUERIES / REPORTS
# =============================================================================

def lessons_in_period(
    start,
    end,
    *,
    class_id: int | None = None,
    teacher_id: int | None = None,
    status: str | None = None,
) -> list[Lesson]:
    start = coerce_date("start", start)
    end = coerce_date("end", end)
    criteria = [Lesson.lesson_date >= start, Lesson.lesson_date <= end]
    if class_id is not None:
        criteria.append(Lesson.class_id == class_id)
    if teacher_id is not None:
        criteria.append(Lesson.teacher_id == teacher_id)
    if status is not None:
        require_choice("status", status, VALID_LESSON_STATUSES)
        criteria.append(Lesson.status == status)
    return entity_store.find(Lesson, *criteria, order_by=[Lesson.lesson_date, Lesson.start_time])


def teacher_lesson_stats(teacher_id: int, start, end) -> dict:
    lessons = lessons_in_period(start, end, teacher_id=teacher_id)
    completed = [l for l in lessons if l.status == LESSON_COMPLETED]
    cancelled = [l for l in lessons if l.status == LESSON_CANCELLED]
    average = round(sum(l.attendance_pct for l in completed) / len(completed), 1) if completed else 0.0
    return {
        "teacher_id": teacher_id,
        "total": len(lessons),
        "completed": len(completed),
        "cancelled": len(cancelled),
        "average_attendance_pct": average,
    }
