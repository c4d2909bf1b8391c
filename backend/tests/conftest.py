"""
Pytest fixtures for AquaVida backend tests.

Provides the in-memory application, a per-test clean database and small
factories for the records most tests need (users, a teacher, a plan,
students and a class).
"""

from datetime import date

import pytest
from aquavida import create_app
from aquavida.extensions import db
from aquavida.models import User
from aquavida.services import class_service, plan_service, student_service, teacher_service


# 2025-03-03 is a Monday (weekday 1 with Sunday = 0)
MONDAY = date(2025, 3, 3)
WEDNESDAY = date(2025, 3, 5)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    user = User(email="admin@aquavida.local", name="Admin", role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def guardian_user(db_session):
    user = User(email="maria@example.com", name="Maria Souza", phone="11 99999-0000", role="guardian")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def teacher(db_session):
    """Active teacher working 07:00-21:00 Monday to Friday."""
    weekdays = {d: {"start_time": "07:00", "end_time": "21:00"} for d in range(1, 6)}
    return teacher_service.create_teacher({
        "name": "Carlos Lima",
        "cpf": "123.456.789-09",
        "email": "carlos@aquavida.local",
        "specialties": ["kids_swim", "adult_swim"],
        "working_hours": weekdays,
    })


@pytest.fixture(scope='function')
def teacher_user(db_session, teacher):
    user = User(email="carlos@aquavida.local", name="Carlos Lima", role="teacher")
    db_session.add(user)
    db_session.commit()
    teacher.user_id = user.id
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def plan(db_session):
    return plan_service.create_plan({
        "name": "Kids 2x",
        "plan_type": "monthly",
        "category": "basic",
        "price_cents": 20000,
        "sessions_per_week": 2,
        "session_minutes": 45,
        "min_age": 3,
        "max_age": 14,
        "due_day": 10,
    })


@pytest.fixture(scope='function')
def make_student(db_session, guardian_user, plan):
    """Factory: make_student(name="...", **overrides)."""
    counter = {"n": 0}

    def _make(name=None, **overrides):
        counter["n"] += 1
        data = {
            "name": name or f"Student {counter['n']}",
            "birth_date": "2017-05-10",
            "guardian_user_id": guardian_user.id,
            "guardian": {"name": "Maria Souza", "phone": "11 99999-0000", "relationship": "mother"},
            "plan_id": plan.id,
        }
        data.update(overrides)
        return student_service.create_student(data)

    return _make


@pytest.fixture(scope='function')
def swim_class(db_session, teacher):
    """Capacity 3, ages 4-12, Monday and Wednesday 08:00-09:00."""
    return class_service.create_class({
        "name": "Golfinhos A",
        "level": "beginner",
        "modality": "kids_swim",
        "min_age": 4,
        "max_age": 12,
        "teacher_id": teacher.id,
        "capacity": 3,
        "pool": "kids_pool",
        "slots": [
            {"weekday": 1, "start_time": "08:00", "end_time": "09:00"},
            {"weekday": 3, "start_time": "08:00", "end_time": "09:00"},
        ],
    })
