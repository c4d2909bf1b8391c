from datetime import date

import pytest

from aquavida.errors import DuplicateError, InvalidTransitionError, ValidationError
from aquavida.services import teacher_service


def test_is_available_is_inclusive(teacher):
    assert teacher_service.is_available(teacher, 1, "07:00")
    assert teacher_service.is_available(teacher, 1, "21:00")
    assert not teacher_service.is_available(teacher, 1, "21:01")
    assert not teacher_service.is_available(teacher, 0, "10:00")


def test_is_available_rejects_bad_weekday(teacher):
    with pytest.raises(ValidationError):
        teacher_service.is_available(teacher, 7, "10:00")


def test_available_teachers(teacher):
    other = teacher_service.create_teacher({
        "name": "Beatriz Rocha",
        "cpf": "987.654.321-00",
        "working_hours": {6: {"start_time": "08:00", "end_time": "12:00"}},
    })
    assert [t.id for t in teacher_service.available_teachers(6, "09:00")] == [other.id]
    assert [t.id for t in teacher_service.available_teachers(2, "09:00")] == [teacher.id]


def test_set_working_hours_replaces_grid(teacher):
    teacher_service.set_working_hours(teacher.id, {1: {"start_time": "13:00", "end_time": "18:00"}})
    assert [w.weekday for w in teacher.working_hours] == [1]
    assert not teacher_service.is_available(teacher, 1, "09:00")
    assert teacher_service.is_available(teacher, 1, "14:00")


def test_duplicate_cpf(teacher):
    with pytest.raises(DuplicateError):
        teacher_service.create_teacher({"name": "Other", "cpf": teacher.cpf})


def test_unknown_specialty_is_rejected(db_session):
    with pytest.raises(ValidationError):
        teacher_service.create_teacher({"name": "X", "cpf": "222.333.444-55", "specialties": ["surfing"]})


def test_teachers_by_specialty(teacher):
    assert [t.id for t in teacher_service.teachers_by_specialty("kids_swim")] == [teacher.id]
    assert teacher_service.teachers_by_specialty("water_polo") == []


def test_certification_expiry_must_follow_obtained(teacher):
    with pytest.raises(ValidationError):
        teacher_service.add_certification(teacher.id, {
            "name": "Lifeguard",
            "institution": "Red Cross",
            "obtained_on": "2024-01-10",
            "expires_on": "2024-01-10",
        })


def test_valid_certifications(teacher):
    teacher_service.add_certification(teacher.id, {
        "name": "Lifeguard", "institution": "Red Cross", "obtained_on": "2023-01-10", "expires_on": "2025-01-10",
    })
    current = teacher_service.add_certification(teacher.id, {
        "name": "CREF", "institution": "CONFEF", "obtained_on": "2020-06-01",
    })
    assert [c.id for c in teacher_service.valid_certifications(teacher, today=date(2025, 3, 3))] == [current.id]


def test_terminate_and_reactivate(teacher):
    teacher_service.terminate(teacher.id, "end of contract")
    assert teacher.is_active is False
    assert teacher_service.available_teachers(1, "09:00") == []

    with pytest.raises(InvalidTransitionError):
        teacher_service.terminate(teacher.id, "again")

    teacher_service.reactivate(teacher.id)
    assert teacher.is_active is True
    assert teacher.termination_reason is None


def test_compute_age(teacher):
    assert teacher_service.compute_age(teacher) is None
    teacher.birth_date = date(1990, 3, 4)
    assert teacher_service.compute_age(teacher, today=date(2025, 3, 3)) == 34
