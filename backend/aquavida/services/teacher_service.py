# Overview: Service-layer operations for teachers; working hours, certifications, employment.

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..errors import InvalidTransitionError, ValidationError
from ..extensions import db
from ..models import Teacher, TeacherCertification, TeacherWorkingHours
from ..time_utils import age_on, utcnow
from ..validation import coerce_date, require_choice, require_fields, validate_cpf, validate_email
from . import entity_store
from .schedule_service import WEEKDAYS, is_within_hours, make_slot


VALID_SPECIALTIES = [
    "kids_swim",
    "adult_swim",
    "competitive_swim",
    "water_aerobics",
    "aqua_fitness",
    "therapeutic_swim",
    "water_polo",
    "synchronized",
    "diving",
    "lifesaving",
]

VALID_EMPLOYMENT_TYPES = ["clt", "pj", "freelancer", "internship"]


def compute_age(teacher: Teacher, *, today: date | None = None) -> int | None:
    if teacher.birth_date is None:
        return None
    return age_on(teacher.birth_date, today or utcnow().date())


def create_teacher(data: dict) -> Teacher:
    """
    Register a teacher.

    working_hours is an optional mapping weekday -> {"start_time", "end_time"}
    (weekdays not listed are off).
    """
    require_fields(data, ["name", "cpf"])
    specialties = data.get("specialties") or []
    for specialty in specialties:
        require_choice("specialties", specialty, VALID_SPECIALTIES)
    employment_type = data.get("employment_type", "clt")
    require_choice("employment_type", employment_type, VALID_EMPLOYMENT_TYPES)

    teacher = Teacher(
        name=data["name"],
        cpf=validate_cpf(data["cpf"]),
        email=validate_email(data.get("email")),
        phone=data.get("phone"),
        birth_date=coerce_date("birth_date", data.get("birth_date")),
        specialties=list(specialties),
        employment_type=employment_type,
        hired_on=coerce_date("hired_on", data.get("hired_on")) or utcnow().date(),
        user_id=data.get("user_id"),
    )
    if data.get("working_hours"):
        teacher.working_hours = _build_hours(data["working_hours"])
    entity_store.save(teacher)
    current_app.logger.info("Registered teacher %s (%s)", teacher.id, teacher.name)
    return teacher


def _build_hours(grid: dict) -> list[TeacherWorkingHours]:
    rows = []
    for weekday, hours in grid.items():
        weekday = int(weekday)
        if hours is None:
            continue
        slot = make_slot(weekday, hours.get("start_time"), hours.get("end_time"))
        rows.append(TeacherWorkingHours(
            weekday=slot.weekday,
            is_active=hours.get("is_active", True),
            start_time=slot.start,
            end_time=slot.end,
        ))
    return rows


def set_working_hours(teacher_id: int, grid: dict) -> Teacher:
    """Replace the whole weekly grid."""
    teacher = entity_store.get(Teacher, teacher_id)
    rows = _build_hours(grid)
    # old rows must be gone before the (teacher, weekday) unique key is reused
    teacher.working_hours = []
    db.session.flush()
    teacher.working_hours = rows
    return entity_store.save(teacher)


def is_available(teacher: Teacher, weekday: int, time_value: str) -> bool:
    """
    True iff the teacher works that weekday and time_value falls inside
    [start, end] inclusive. Advisory: lesson scheduling only enforces it when
    ENFORCE_TEACHER_AVAILABILITY is set.
    """
    if weekday not in WEEKDAYS:
        raise ValidationError("weekday must be between 0 (Sunday) and 6 (Saturday)")
    row = next((w for w in teacher.working_hours if w.weekday == weekday), None)
    if row is None or not row.is_active or not row.start_time or not row.end_time:
        return False
    return is_within_hours(time_value, row.start_time, row.end_time)


def available_teachers(weekday: int, time_value: str) -> list[Teacher]:
    teachers = db.session.query(Teacher).filter(Teacher.is_active.is_(True)).order_by(Teacher.name).all()
    return [t for t in teachers if is_available(t, weekday, time_value)]


def teachers_by_specialty(specialty: str) -> list[Teacher]:
    require_choice("specialty", specialty, VALID_SPECIALTIES)
    teachers = db.session.query(Teacher).filter(Teacher.is_active.is_(True)).order_by(Teacher.name).all()
    return [t for t in teachers if specialty in (t.specialties or [])]


# =============================================================================
# CERTIFICATIONS
# =============================================================================

def add_certification(teacher_id: int, data: dict) -> TeacherCertification:
    require_fields(data, ["name", "institution", "obtained_on"])
    obtained_on = coerce_date("obtained_on", data["obtained_on"])
    expires_on = coerce_date("expires_on", data.get("expires_on"))
    if expires_on is not None and expires_on <= obtained_on:
        raise ValidationError("expires_on must be after obtained_on")
    teacher = entity_store.get(Teacher, teacher_id)
    cert = TeacherCertification(
        name=data["name"],
        institution=data["institution"],
        obtained_on=obtained_on,
        expires_on=expires_on,
        number=data.get("number"),
    )
    teacher.certifications.append(cert)
    entity_store.save(teacher)
    return cert


def valid_certifications(teacher: Teacher, *, today: date | None = None) -> list[TeacherCertification]:
    """Certifications with no expiry or expiring after today."""
    today = today or utcnow().date()
    return [c for c in teacher.certifications if c.expires_on is None or c.expires_on > today]


# =============================================================================
# EMPLOYMENT
# =============================================================================

def terminate(teacher_id: int, reason: str, *, now: datetime | None = None) -> Teacher:
    teacher = entity_store.get(Teacher, teacher_id)
    if not teacher.is_active:
        raise InvalidTransitionError("teacher", "terminated", "terminate")
    teacher.is_active = False
    teacher.terminated_at = now or utcnow()
    teacher.termination_reason = reason
    entity_store.save(teacher)
    current_app.logger.info("Terminated teacher %s: %s", teacher_id, reason)
    return teacher


def reactivate(teacher_id: int) -> Teacher:
    teacher = entity_store.get(Teacher, teacher_id)
    if teacher.is_active:
        raise InvalidTransitionError("teacher", "active", "reactivate")
    teacher.is_active = True
    teacher.terminated_at = None
    teacher.termination_reason = None
    return entity_store.save(teacher)
