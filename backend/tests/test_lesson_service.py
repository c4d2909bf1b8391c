from datetime import date, datetime

import pytest

from aquavida.errors import InvalidTransitionError, ScheduleConflictError, ValidationError
from aquavida.extensions import db
from aquavida.models import Attendance
from aquavida.services import class_service, lesson_service, teacher_service
from aquavida.services.lesson_service import attendance_stats, next_status, refresh_lesson_stats

from conftest import MONDAY


SATURDAY = date(2025, 3, 8)


@pytest.fixture
def enforce_availability(app):
    app.config["ENFORCE_TEACHER_AVAILABILITY"] = True
    yield
    app.config["ENFORCE_TEACHER_AVAILABILITY"] = False


def _fill(swim_class, make_student, count):
    class_service.update_class(swim_class.id, {"capacity": max(count, swim_class.capacity)})
    students = [make_student() for _ in range(count)]
    for s in students:
        class_service.enroll(swim_class.id, s.id)
    return students


# =============================================================================
# PURE HELPERS
# =============================================================================

def test_attendance_stats():
    stats = attendance_stats(["present"] * 8 + ["absent"] * 2)
    assert (stats.total, stats.present, stats.absent, stats.pct) == (10, 8, 2, 80)
    assert attendance_stats([]).pct == 0
    # 1 of 8 present is 12.5%
    assert attendance_stats(["present"] + ["absent"] * 7).pct == 13


@pytest.mark.parametrize("current,action,expected", [
    ("scheduled", "start", "in_progress"),
    ("in_progress", "finish", "completed"),
    ("scheduled", "cancel", "cancelled"),
    ("in_progress", "postpone", "postponed"),
])
def test_next_status(current, action, expected):
    assert next_status(current, action) == expected


@pytest.mark.parametrize("current,action", [
    ("scheduled", "finish"),
    ("completed", "start"),
    ("cancelled", "cancel"),
    ("postponed", "start"),
])
def test_next_status_rejects(current, action):
    with pytest.raises(InvalidTransitionError):
        next_status(current, action)


# =============================================================================
# SCHEDULING
# =============================================================================

def test_create_lesson_defaults_to_slot(swim_class, make_student):
    students = _fill(swim_class, make_student, 2)
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)

    assert (lesson.start_time, lesson.end_time, lesson.duration_minutes) == ("08:00", "09:00", 60)
    assert lesson.status == "scheduled"
    assert sorted(r.student_id for r in lesson.roster) == sorted(s.id for s in students)
    assert all(r.status == "absent" for r in lesson.roster)
    assert lesson.attendance_pct == 0


def test_create_lesson_without_slot_needs_times(swim_class):
    with pytest.raises(ValidationError):
        lesson_service.create_lesson(swim_class.id, date(2025, 3, 4))


def test_teacher_double_booking(swim_class):
    lesson_service.create_lesson(swim_class.id, MONDAY)
    with pytest.raises(ScheduleConflictError) as exc:
        lesson_service.create_lesson(swim_class.id, MONDAY, "08:30", "09:30")
    assert exc.value.context["teacher_id"] == swim_class.teacher_id


def test_cancelled_lesson_frees_the_slot(swim_class):
    first = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.cancel_lesson(first.id, "holiday")
    assert lesson_service.create_lesson(swim_class.id, MONDAY).id != first.id


def test_adjacent_lessons_are_allowed(swim_class):
    lesson_service.create_lesson(swim_class.id, MONDAY)
    assert lesson_service.create_lesson(swim_class.id, MONDAY, "09:00", "10:00").id is not None


def test_outside_working_hours_is_advisory(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, SATURDAY, "10:00", "11:00")
    assert lesson.id is not None


def test_outside_working_hours_enforced(swim_class, enforce_availability):
    with pytest.raises(ScheduleConflictError):
        lesson_service.create_lesson(swim_class.id, SATURDAY, "10:00", "11:00")


def test_update_lesson_reschedules(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.update_lesson(lesson.id, {"start_time": "10:00", "end_time": "10:45"})
    assert (lesson.start_time, lesson.end_time, lesson.duration_minutes) == ("10:00", "10:45", 45)

    lesson_service.start_lesson(lesson.id)
    with pytest.raises(InvalidTransitionError):
        lesson_service.update_lesson(lesson.id, {"notes": "too late"})


def test_update_lesson_rejects_inactive_substitute(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    substitute = teacher_service.create_teacher({
        "name": "Beatriz Rocha",
        "cpf": "987.654.321-00",
        "working_hours": {1: {"start_time": "07:00", "end_time": "12:00"}},
    })
    teacher_service.terminate(substitute.id, "moved away")

    with pytest.raises(ValidationError):
        lesson_service.update_lesson(lesson.id, {"teacher_id": substitute.id})
    assert lesson.teacher_id == swim_class.teacher_id


# =============================================================================
# STATE MACHINE
# =============================================================================

def test_start_then_finish(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.start_lesson(lesson.id, now=datetime(2025, 3, 3, 8, 0))
    lesson_service.finish_lesson(lesson.id, now=datetime(2025, 3, 3, 9, 0))
    assert lesson.status == "completed"
    assert lesson.finished_at == datetime(2025, 3, 3, 9, 0)


def test_finish_without_start_fails(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    with pytest.raises(InvalidTransitionError):
        lesson_service.finish_lesson(lesson.id)
    assert lesson.status == "scheduled"


def test_cancel_with_reschedule_postpones(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.cancel_lesson(lesson.id, "weather", "storm", reschedule_date="2025-03-10")
    assert lesson.status == "postponed"
    assert lesson.reschedule_date == date(2025, 3, 10)


def test_cancel_reason_is_checked(swim_class):
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    with pytest.raises(ValidationError):
        lesson_service.cancel_lesson(lesson.id, "bored")


# =============================================================================
# ATTENDANCE
# =============================================================================

def test_attendance_percentage(swim_class, make_student):
    students = _fill(swim_class, make_student, 10)
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    for s in students[:8]:
        lesson_service.mark_attendance(lesson.id, s.id, "present", arrival_time="08:02")

    assert (lesson.total_students, lesson.present_count, lesson.absent_count) == (10, 8, 2)
    assert lesson.attendance_pct == 80


def test_refresh_lesson_stats_recounts_roster(swim_class, make_student):
    _fill(swim_class, make_student, 2)
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson.roster[0].status = "present"

    stats = refresh_lesson_stats(lesson)

    assert stats.pct == 50
    assert (lesson.total_students, lesson.present_count, lesson.absent_count, lesson.attendance_pct) == (2, 1, 1, 50)


def test_marking_twice_keeps_one_row(swim_class, make_student):
    student = _fill(swim_class, make_student, 1)[0]
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)

    lesson_service.mark_attendance(lesson.id, student.id, "present", now=datetime(2025, 3, 3, 8, 5))
    record = lesson_service.mark_attendance(lesson.id, student.id, "absent", "left early")

    rows = db.session.query(Attendance).filter_by(student_id=student.id, lesson_id=lesson.id).all()
    assert len(rows) == 1
    assert rows[0].id == record.id
    assert record.status == "absent"
    assert record.arrival_time is None


def test_present_without_arrival_uses_clock(swim_class, make_student):
    student = _fill(swim_class, make_student, 1)[0]
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    record = lesson_service.mark_attendance(lesson.id, student.id, "present", now=datetime(2025, 3, 3, 8, 7))
    assert record.arrival_time == "08:07"


def test_cannot_mark_cancelled_lesson(swim_class, make_student):
    student = _fill(swim_class, make_student, 1)[0]
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.cancel_lesson(lesson.id, "maintenance")
    with pytest.raises(InvalidTransitionError):
        lesson_service.mark_attendance(lesson.id, student.id, "present")


def test_bulk_marking(swim_class, make_student):
    a, b, c = _fill(swim_class, make_student, 3)
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.mark_attendance_bulk(lesson.id, [
        {"student_id": a.id, "status": "present", "arrival_time": "08:00"},
        {"student_id": b.id, "status": "present", "arrival_time": "08:10"},
        {"student_id": c.id, "status": "medical_note", "note": "flu"},
    ])
    stats = lesson_service.lesson_stats(lesson)
    assert (stats.present, stats.absent, stats.pct) == (2, 1, 67)


def test_bulk_marking_is_atomic(swim_class, make_student):
    a = _fill(swim_class, make_student, 1)[0]
    lesson = lesson_service.create_lesson(swim_class.id, MONDAY)
    with pytest.raises(ValidationError):
        lesson_service.mark_attendance_bulk(lesson.id, [
            {"student_id": a.id, "status": "present", "arrival_time": "08:00"},
            {"student_id": a.id, "status": "asleep"},
        ])
    assert db.session.query(Attendance).filter_by(lesson_id=lesson.id).count() == 0


# =============================================================================
# REPORTS
# =============================================================================

def test_teacher_lesson_stats(swim_class, make_student, teacher):
    students = _fill(swim_class, make_student, 2)
    done = lesson_service.create_lesson(swim_class.id, MONDAY)
    lesson_service.start_lesson(done.id)
    lesson_service.mark_attendance(done.id, students[0].id, "present", arrival_time="08:00")
    lesson_service.finish_lesson(done.id)

    dropped = lesson_service.create_lesson(swim_class.id, date(2025, 3, 5))
    lesson_service.cancel_lesson(dropped.id, "holiday")

    stats = lesson_service.teacher_lesson_stats(teacher.id, "2025-03-01", "2025-03-31")
    assert stats == {
        "teacher_id": teacher.id,
        "total": 2,
        "completed": 1,
        "cancelled": 1,
        "average_attendance_pct": 50.0,
    }
    assert [l.id for l in lesson_service.lessons_in_period("2025-03-01", "2025-03-31", status="cancelled")] == [dropped.id]
