import pytest

from aquavida.errors import DuplicateError, NotFoundError
from aquavida.models import Student, User
from aquavida.services import entity_store


def test_get_missing_row(db_session):
    with pytest.raises(NotFoundError) as exc:
        entity_store.get(Student, 999)
    assert exc.value.context == {"entity": "Student", "id": 999}

    with pytest.raises(NotFoundError):
        entity_store.get(Student, None)


def test_find_filters_and_orders(make_student):
    for name in ("Bruno", "Ana", "Caio"):
        make_student(name)
    make_student("Duda").is_active = False
    active = entity_store.find(Student, order_by=Student.name.desc(), is_active=True)

    assert [s.name for s in active] == ["Caio", "Bruno", "Ana"]
    assert [s.name for s in entity_store.find(Student, Student.name.like("B%"))] == ["Bruno"]
    assert len(entity_store.find(Student, page=2, per_page=3)) == 1


def test_paginate(make_student):
    for name in ("Ana", "Bruno", "Caio"):
        make_student(name)

    page = entity_store.paginate(Student, order_by=Student.name, page=2, per_page=2)

    assert [s.name for s in page["items"]] == ["Caio"]
    assert page["total"] == 3
    assert page["pages"] == 2
    assert page["page"] == 2


def test_save_translates_unique_violation(guardian_user):
    with pytest.raises(DuplicateError):
        entity_store.save(User(email="maria@example.com", name="Another Maria", role="guardian"))


def test_delete(make_student):
    student = make_student()
    student_id = student.id

    entity_store.delete(Student, student_id)

    with pytest.raises(NotFoundError):
        entity_store.get(Student, student_id)
