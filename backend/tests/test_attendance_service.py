import pytest

from aquavida.errors import NotFoundError, ValidationError
from aquavida.services import attendance_service, class_service, lesson_service

from conftest import MONDAY, WEDNESDAY


@pytest.fixture
def two_lessons(swim_class, make_student):
    ana, bruno = make_student("Ana"), make_student("Bruno")
    class_service.enroll(swim_class.id, ana.id)
    class_service.enroll(swim_class.id, bruno.id)
    monday = lesson_service.create_lesson(swim_class.id, MONDAY)
    wednesday = lesson_service.create_lesson(swim_class.id, WEDNESDAY)
    return ana, bruno, monday, wednesday


def test_justify_absence_marks_excused(two_lessons):
    ana, _, monday, _ = two_lessons
    lesson_service.mark_attendance(monday.id, ana.id, "absent")

    record = attendance_service.justify_absence(
        ana.id, monday.id, "illness", "fever", document_url="https://files.local/atestado.pdf",
    )

    assert record.status == "excused"
    assert record.justification["reason"] == "illness"
    assert next(r for r in monday.roster if r.student_id == ana.id).status == "excused"


def test_justify_medical_note_keeps_status(two_lessons):
    ana, _, monday, _ = two_lessons
    lesson_service.mark_attendance(monday.id, ana.id, "medical_note")
    record = attendance_service.justify_absence(ana.id, monday.id, "illness")
    assert record.status == "medical_note"
    assert record.justification is not None


def test_cannot_justify_present(two_lessons):
    ana, _, monday, _ = two_lessons
    lesson_service.mark_attendance(monday.id, ana.id, "present", arrival_time="08:00")
    with pytest.raises(ValidationError):
        attendance_service.justify_absence(ana.id, monday.id, "travel")


def test_justify_requires_recorded_attendance(two_lessons):
    ana, _, monday, _ = two_lessons
    with pytest.raises(NotFoundError):
        attendance_service.justify_absence(ana.id, monday.id, "travel")


def test_record_observations_merges(two_lessons):
    ana, _, monday, _ = two_lessons
    lesson_service.mark_attendance(monday.id, ana.id, "present", arrival_time="08:00")

    attendance_service.record_observations(ana.id, monday.id, behavior="good")
    record = attendance_service.record_observations(ana.id, monday.id, progress="very_good", notes="first lap")

    assert record.observations == {"behavior": "good", "progress": "very_good", "notes": "first lap"}
    with pytest.raises(ValidationError):
        attendance_service.record_observations(ana.id, monday.id, participation="sleepy")


def test_student_frequency(two_lessons):
    ana, _, monday, wednesday = two_lessons
    lesson_service.mark_attendance(monday.id, ana.id, "present", arrival_time="08:00")
    lesson_service.mark_attendance(wednesday.id, ana.id, "absent")

    report = attendance_service.student_frequency(ana.id, "2025-03-01", "2025-03-31")

    assert report["total"] == 2
    assert report["present"] == 1
    assert report["absent"] == 1
    assert report["frequency_pct"] == 50.0
    assert attendance_service.student_frequency(ana.id, "2025-04-01", "2025-04-30")["frequency_pct"] == 0.0


def test_class_frequency_best_first(two_lessons, swim_class):
    ana, bruno, monday, wednesday = two_lessons
    lesson_service.mark_attendance_bulk(monday.id, [
        {"student_id": ana.id, "status": "absent"},
        {"student_id": bruno.id, "status": "present", "arrival_time": "08:00"},
    ])
    lesson_service.mark_attendance_bulk(wednesday.id, [
        {"student_id": ana.id, "status": "present", "arrival_time": "08:00"},
        {"student_id": bruno.id, "status": "present", "arrival_time": "08:00"},
    ])

    rows = attendance_service.class_frequency(swim_class.id, "2025-03-01", "2025-03-31")

    assert [(r["name"], r["frequency_pct"]) for r in rows] == [("Bruno", 100.0), ("Ana", 50.0)]
