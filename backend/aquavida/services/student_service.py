# Overview: Service-layer operations for students; registration, lifecycle and class changes.

from __future__ import annotations

from collections import Counter
from datetime import date, datetime

from flask import current_app

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ClassEnrollment, Plan, Student, StudentClassHistory, StudentDocument, SwimClass, User
from ..time_utils import age_on, utcnow
from ..validation import (
    coerce_date,
    require_choice,
    require_fields,
    validate_cep,
    validate_cpf,
    validate_email,
)
from . import entity_store
from .class_service import VALID_LEVELS, _enroll_locked, _unenroll_locked
from .concurrency import run_with_retry


VALID_GENDERS = ["M", "F"]

VALID_RELATIONSHIPS = [
    "father",
    "mother",
    "grandfather",
    "grandmother",
    "uncle",
    "aunt",
    "legal_guardian",
    "other",
]

VALID_DOCUMENT_TYPES = ["rg", "cpf", "proof_of_address", "medical_certificate", "photo", "other"]

AGE_BUCKETS = [(0, 5, "0-5"), (6, 11, "6-11"), (12, 17, "12-17"), (18, None, "18+")]


def compute_age(student: Student, *, today: date | None = None) -> int:
    return age_on(student.birth_date, today or utcnow().date())


def age_bucket(age: int) -> str:
    for low, high, label in AGE_BUCKETS:
        if age >= low and (high is None or age <= high):
            return label
    return "unknown"


def _validate_guardian(block: dict | None) -> dict | None:
    if block is None:
        return None
    require_fields(block, ["name", "phone", "relationship"])
    require_choice("guardian.relationship", block["relationship"], VALID_RELATIONSHIPS)
    cleaned = dict(block)
    if block.get("cpf"):
        cleaned["cpf"] = validate_cpf(block["cpf"])
    if block.get("email"):
        cleaned["email"] = validate_email(block["email"])
    return cleaned


def _validate_address(block: dict | None) -> dict | None:
    if block is None:
        return None
    cleaned = dict(block)
    if block.get("cep"):
        cleaned["cep"] = validate_cep(block["cep"])
    return cleaned


_WRITABLE = {
    "name", "birth_date", "gender", "cpf", "email", "phone", "address",
    "guardian_user_id", "guardian", "swim_level", "medical_restrictions",
    "plan_id", "notes",
}


def _clean(data: dict, *, today: date) -> dict:
    unknown = set(data) - _WRITABLE
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    cleaned = dict(data)
    if "birth_date" in data:
        birth = coerce_date("birth_date", data["birth_date"])
        if birth is None or birth >= today:
            raise ValidationError("birth_date must be in the past")
        cleaned["birth_date"] = birth
    if data.get("gender") is not None:
        require_choice("gender", data["gender"], VALID_GENDERS)
    if "cpf" in data:
        cleaned["cpf"] = validate_cpf(data["cpf"])
    if "email" in data:
        cleaned["email"] = validate_email(data["email"])
    if "swim_level" in data:
        require_choice("swim_level", data["swim_level"], VALID_LEVELS)
    if "guardian" in data:
        cleaned["guardian"] = _validate_guardian(data["guardian"])
    if "address" in data:
        cleaned["address"] = _validate_address(data["address"])
    if data.get("plan_id") is not None:
        entity_store.get(Plan, data["plan_id"])
    if data.get("guardian_user_id") is not None:
        guardian = entity_store.get(User, data["guardian_user_id"])
        if guardian.role != "guardian":
            raise ValidationError("guardian_user_id must reference a guardian account")
    return cleaned


def create_student(data: dict, *, today: date | None = None) -> Student:
    """
    Register a student.

    Raises:
        ValidationError: missing/invalid fields (birth date must be past,
            CPF and CEP formats, guardian block)
        DuplicateError: CPF already registered
    """
    require_fields(data, ["name", "birth_date"])
    cleaned = _clean(data, today=today or utcnow().date())
    student = Student(**cleaned)
    entity_store.save(student)
    current_app.logger.info("Registered student %s", student.id)
    return student


def update_student(student_id: int, changes: dict, *, today: date | None = None) -> Student:
    student = entity_store.get(Student, student_id)
    cleaned = _clean(changes, today=today or utcnow().date())
    for key, value in cleaned.items():
        setattr(student, key, value)
    return entity_store.save(student)


# =============================================================================
# LIFECYCLE
# =============================================================================

def inactivate(student_id: int, reason: str, *, now: datetime | None = None) -> Student:
    student = entity_store.get(Student, student_id)
    if not student.is_active:
        raise InvalidTransitionError("student", "inactive", "inactivate")
    if not reason:
        raise ValidationError("reason is required")
    student.is_active = False
    student.inactivated_at = now or utcnow()
    student.inactivation_reason = reason
    entity_store.save(student)
    current_app.logger.info("Inactivated student %s: %s", student_id, reason)
    return student


def reactivate(student_id: int) -> Student:
    student = entity_store.get(Student, student_id)
    if student.is_active:
        raise InvalidTransitionError("student", "active", "reactivate")
    student.is_active = True
    student.inactivated_at = None
    student.inactivation_reason = None
    return entity_store.save(student)


def add_document(student_id: int, *, doc_type: str, name: str, url: str) -> StudentDocument:
    require_choice("doc_type", doc_type, VALID_DOCUMENT_TYPES)
    if not name or not url:
        raise ValidationError("Document name and url are required")
    student = entity_store.get(Student, student_id)
    document = StudentDocument(doc_type=doc_type, name=name, url=url, uploaded_at=utcnow())
    student.documents.append(document)
    entity_store.save(student)
    return document


def remove_document(student_id: int, document_id: int) -> None:
    student = entity_store.get(Student, student_id)
    document = next((d for d in student.documents if d.id == document_id), None)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", student_id=student_id)
    student.documents.remove(document)
    entity_store.save(student)


# =============================================================================
# CLASS LINK (derived from ClassEnrollment)
# =============================================================================

def current_class(student_id: int) -> SwimClass | None:
    """Most recent class the student is enrolled in, if any."""
    enrollment = (
        db.session.query(ClassEnrollment)
        .filter(ClassEnrollment.student_id == student_id)
        .order_by(ClassEnrollment.id.desc())
        .first()
    )
    return enrollment.swim_class if enrollment is not None else None


def change_class(
    student_id: int,
    new_class_id: int,
    reason: str | None = None,
    *,
    actor_user_id: int | None = None,
    today: date | None = None,
) -> StudentClassHistory:
    """
    Move a student to another class in a single transaction.

    Leaves the current class (if any), joins the new one and appends a
    history entry. Either all three happen or none do.
    """
    def _op():
        student = entity_store.get(Student, student_id)
        old = current_class(student_id)
        if old is not None and old.id == new_class_id:
            raise ValidationError("Student is already in this class", class_id=new_class_id)

        target = entity_store.get(SwimClass, new_class_id, for_update=True)
        if old is not None:
            old = entity_store.get(SwimClass, old.id, for_update=True)
            _unenroll_locked(old, student_id)
        _enroll_locked(target, student, today=today)

        entry = StudentClassHistory(
            from_class_id=old.id if old is not None else None,
            to_class_id=target.id,
            reason=reason or "Class change",
            changed_by_user_id=actor_user_id,
            changed_at=utcnow(),
        )
        student.class_history.append(entry)
        db.session.commit()
        current_app.logger.info(
            "Moved student %s from class %s to class %s",
            student_id, entry.from_class_id, entry.to_class_id,
        )
        return entry

    return run_with_retry(_op)


# =============================================================================
# QUERIES / STATISTICS
# =============================================================================

def students_for_guardian(guardian_user_id: int) -> list[Student]:
    return entity_store.find(Student, order_by=Student.name, guardian_user_id=guardian_user_id)


def students_in_class(class_id: int) -> list[Student]:
    """Active students enrolled in the class."""
    return (
        db.session.query(Student)
        .join(ClassEnrollment, ClassEnrollment.student_id == Student.id)
        .filter(ClassEnrollment.class_id == class_id, Student.is_active.is_(True))
        .order_by(Student.name)
        .all()
    )


def student_statistics(*, today: date | None = None) -> dict:
    today = today or utcnow().date()
    students = db.session.query(Student).all()
    active = [s for s in students if s.is_active]
    by_level = Counter(s.swim_level for s in active)
    by_age = Counter(age_bucket(age_on(s.birth_date, today)) for s in active)
    return {
        "total": len(students),
        "active": len(active),
        "inactive": len(students) - len(active),
        "by_level": dict(sorted(by_level.items())),
        "by_age": {label: by_age.get(label, 0) for _, _, label in AGE_BUCKETS},
    }
