# Overview: Service-layer operations for classes; roster, waitlist and schedule rules.

"""
Class Roster & Waitlist Service

WHY: A class ("turma") is the unit students enroll into. Its roster is the
one place where a hard capacity invariant lives, so every roster mutation
goes through here.

RULES:
- enrolled count never exceeds capacity (checked with the class row locked;
  the class version_id is bumped on every roster change so a concurrent
  writer fails with StaleDataError and is retried by run_with_retry)
- a student is enrolled at most once and waitlisted at most once per class
- unenroll surfaces the next waitlist candidate but never promotes it;
  promotion is the explicit promote_from_waitlist call
- a teacher's active classes never have overlapping slots
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..errors import (
    AlreadyEnrolledError,
    AlreadyWaitlistedError,
    CapacityExceededError,
    InvalidTransitionError,
    NotEnrolledError,
    NotFoundError,
    ScheduleConflictError,
    ValidationError,
    WaitlistDisabledError,
)
from ..extensions import db
from ..models import ClassEnrollment, ClassSchedule, Student, SwimClass, Teacher, WaitlistEntry
from ..time_utils import age_on, utcnow
from ..validation import require_choice, require_fields, require_int_range
from . import entity_store
from .concurrency import run_with_retry, touch
from .schedule_service import TimeSlot, has_schedule_conflict, make_slot, next_occurrence, parse_hhmm


# =============================================================================
# ENUMS (CONSTANTS)
# =============================================================================

VALID_LEVELS = ["beginner", "basic", "intermediate", "advanced", "competitive"]

VALID_MODALITIES = [
    "free_swim",
    "kids_swim",
    "adult_swim",
    "water_aerobics",
    "aqua_fitness",
    "therapeutic_swim",
    "water_polo",
    "synchronized",
    "diving",
    "lifesaving",
]

VALID_POOLS = ["pool_1", "pool_2", "kids_pool", "heated_pool"]

MIN_CAPACITY = 1
MAX_CAPACITY = 50
MAX_LANE = 8

# Derived class status
STATUS_INACTIVE = "inactive"
STATUS_EMPTY = "empty"
STATUS_FULL = "full"
STATUS_ALMOST_FULL = "almost_full"
STATUS_AVAILABLE = "available"

ALMOST_FULL_RATIO = 0.8


# =============================================================================
# SNAPSHOTS / DERIVED VALUES
# =============================================================================

@dataclass(frozen=True)
class WaitlistCandidate:
    student_id: int
    priority: int
    joined_at: datetime


@dataclass(frozen=True)
class UnenrollResult:
    class_id: int
    student_id: int
    next_candidate: WaitlistCandidate | None


@dataclass(frozen=True)
class RosterSnapshot:
    capacity: int
    enrolled: int
    is_active: bool


def roster_snapshot(swim_class: SwimClass) -> RosterSnapshot:
    return RosterSnapshot(
        capacity=swim_class.capacity,
        enrolled=len(swim_class.enrollments),
        is_active=swim_class.is_active,
    )


def available_seats(snapshot: RosterSnapshot) -> int:
    return max(0, snapshot.capacity - snapshot.enrolled)


def occupancy_pct(snapshot: RosterSnapshot) -> float:
    if snapshot.capacity <= 0:
        return 0.0
    return round(snapshot.enrolled / snapshot.capacity * 100, 1)


def class_status(snapshot: RosterSnapshot) -> str:
    if not snapshot.is_active:
        return STATUS_INACTIVE
    if snapshot.enrolled == 0:
        return STATUS_EMPTY
    if snapshot.enrolled >= snapshot.capacity:
        return STATUS_FULL
    if snapshot.enrolled >= snapshot.capacity * ALMOST_FULL_RATIO:
        return STATUS_ALMOST_FULL
    return STATUS_AVAILABLE


def select_waitlist_candidate(entries) -> WaitlistCandidate | None:
    """Highest priority first; ties go to the earliest joined_at."""
    entries = list(entries)
    if not entries:
        return None
    head = sorted(entries, key=lambda e: (-e.priority, e.joined_at, e.id or 0))[0]
    return WaitlistCandidate(student_id=head.student_id, priority=head.priority, joined_at=head.joined_at)


def class_slots(swim_class: SwimClass) -> list[TimeSlot]:
    slots = [TimeSlot(s.weekday, s.start_time, s.end_time) for s in swim_class.slots]
    return sorted(slots, key=lambda s: (s.weekday, s.start_minutes))


def next_session(swim_class: SwimClass, *, now: datetime | None = None) -> datetime | None:
    return next_occurrence(class_slots(swim_class), now=now or utcnow())


def class_summary(swim_class: SwimClass, *, now: datetime | None = None) -> dict:
    snap = roster_snapshot(swim_class)
    data = swim_class.to_dict()
    data.update({
        "status": class_status(snap),
        "available_seats": available_seats(snap),
        "occupancy_pct": occupancy_pct(snap),
        "next_session": None,
    })
    upcoming = next_session(swim_class, now=now)
    if upcoming is not None:
        data["next_session"] = upcoming.isoformat()
    return data


# =============================================================================
# VALIDATION
# =============================================================================

def _validate_slots(raw_slots) -> list[TimeSlot]:
    if not raw_slots:
        raise ValidationError("At least one weekly slot is required")
    slots = [make_slot(s.get("weekday"), s.get("start_time"), s.get("end_time")) for s in raw_slots]
    for i, a in enumerate(slots):
        for b in slots[i + 1:]:
            if has_schedule_conflict(a, b):
                raise ValidationError("Class slots overlap each other", slot_a=a.__dict__, slot_b=b.__dict__)
    return slots


def _validate_class_fields(data: dict) -> None:
    if "level" in data:
        require_choice("level", data["level"], VALID_LEVELS)
    if "modality" in data:
        require_choice("modality", data["modality"], VALID_MODALITIES)
    if data.get("pool") is not None:
        require_choice("pool", data["pool"], VALID_POOLS)
    if data.get("lane") is not None:
        require_int_range("lane", data["lane"], 1, MAX_LANE)
    if "capacity" in data:
        require_int_range("capacity", data["capacity"], MIN_CAPACITY, MAX_CAPACITY)
    if "min_age" in data:
        require_int_range("min_age", data["min_age"], 0)
    if "max_age" in data:
        require_int_range("max_age", data["max_age"], 0)


def _require_active_teacher(teacher_id) -> Teacher:
    teacher = entity_store.get(Teacher, teacher_id)
    if not teacher.is_active:
        raise ValidationError(f"Teacher {teacher.name} is not active", teacher_id=teacher.id)
    return teacher


def _check_teacher_conflicts(teacher_id: int, slots: list[TimeSlot], *, exclude_class_id: int | None = None) -> None:
    query = db.session.query(SwimClass).filter(
        SwimClass.teacher_id == teacher_id,
        SwimClass.is_active.is_(True),
    )
    if exclude_class_id is not None:
        query = query.filter(SwimClass.id != exclude_class_id)
    for other in query.all():
        for existing in class_slots(other):
            for slot in slots:
                if has_schedule_conflict(slot, existing):
                    raise ScheduleConflictError(
                        f"Schedule conflicts with class '{other.name}'",
                        teacher_id=teacher_id,
                        class_id=other.id,
                        class_name=other.name,
                        weekday=slot.weekday,
                        start_time=existing.start,
                        end_time=existing.end,
                    )


def _replace_slots(swim_class: SwimClass, slots: list[TimeSlot]) -> None:
    swim_class.slots = [
        ClassSchedule(
            weekday=s.weekday,
            start_time=s.start,
            end_time=s.end,
            duration_minutes=s.duration_minutes,
        )
        for s in slots
    ]


# =============================================================================
# CLASS CRUD
# =============================================================================

_WRITABLE = {
    "name", "description", "level", "modality", "min_age", "max_age",
    "teacher_id", "substitute_teacher_id", "capacity", "pool", "lane",
    "allow_waitlist", "notify_guardians", "require_medical_certificate",
    "flexible_age", "start_date", "end_date",
}


def create_class(data: dict) -> SwimClass:
    """
    Create a class with its weekly slots.

    Raises:
        ValidationError: bad enum/range, end <= start, max_age < min_age,
            inactive or unknown teacher
        ScheduleConflictError: a slot overlaps another active class of the
            same teacher
    """
    require_fields(data, ["name", "level", "modality", "min_age", "max_age", "teacher_id", "capacity"])
    _validate_class_fields(data)
    if data["max_age"] < data["min_age"]:
        raise ValidationError("max_age must be >= min_age")

    slots = _validate_slots(data.get("slots"))
    _require_active_teacher(data["teacher_id"])
    if data.get("substitute_teacher_id") is not None:
        entity_store.get(Teacher, data["substitute_teacher_id"])
    _check_teacher_conflicts(data["teacher_id"], slots)

    swim_class = SwimClass(**{k: v for k, v in data.items() if k in _WRITABLE})
    _replace_slots(swim_class, slots)
    entity_store.save(swim_class)
    current_app.logger.info("Created class %s (%s) for teacher %s", swim_class.id, swim_class.name, swim_class.teacher_id)
    return swim_class


def update_class(class_id: int, changes: dict) -> SwimClass:
    unknown = set(changes) - _WRITABLE - {"slots"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    _validate_class_fields(changes)

    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        min_age = changes.get("min_age", swim_class.min_age)
        max_age = changes.get("max_age", swim_class.max_age)
        if max_age < min_age:
            raise ValidationError("max_age must be >= min_age")

        capacity = changes.get("capacity", swim_class.capacity)
        if capacity < len(swim_class.enrollments):
            raise ValidationError(
                "capacity cannot be lower than the number of enrolled students",
                enrolled=len(swim_class.enrollments),
            )

        teacher_id = changes.get("teacher_id", swim_class.teacher_id)
        if "teacher_id" in changes:
            _require_active_teacher(teacher_id)
        slots = _validate_slots(changes["slots"]) if "slots" in changes else class_slots(swim_class)
        if "slots" in changes or "teacher_id" in changes:
            _check_teacher_conflicts(teacher_id, slots, exclude_class_id=swim_class.id)

        for key, value in changes.items():
            if key != "slots":
                setattr(swim_class, key, value)
        if "slots" in changes:
            _replace_slots(swim_class, slots)
        db.session.commit()
        return swim_class

    return run_with_retry(_op)


def close_class(class_id: int, reason: str, *, now: datetime | None = None) -> SwimClass:
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        if not swim_class.is_active:
            raise InvalidTransitionError("class", STATUS_INACTIVE, "close")
        swim_class.is_active = False
        swim_class.closed_at = now or utcnow()
        swim_class.close_reason = reason
        db.session.commit()
        current_app.logger.info("Closed class %s: %s", class_id, reason)
        return swim_class

    return run_with_retry(_op)


def reopen_class(class_id: int) -> SwimClass:
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        if swim_class.is_active:
            raise InvalidTransitionError("class", "active", "reopen")
        _check_teacher_conflicts(swim_class.teacher_id, class_slots(swim_class), exclude_class_id=swim_class.id)
        swim_class.is_active = True
        swim_class.closed_at = None
        swim_class.close_reason = None
        db.session.commit()
        return swim_class

    return run_with_retry(_op)


def update_class_stats(class_id: int, *, total_lessons: int, average_attendance: float) -> SwimClass:
    swim_class = entity_store.get(SwimClass, class_id)
    swim_class.total_lessons = total_lessons
    swim_class.average_attendance = round(float(average_attendance), 1)
    return entity_store.save(swim_class)


# =============================================================================
# ROSTER
# =============================================================================

def _enroll_locked(swim_class: SwimClass, student: Student, *, today=None) -> ClassEnrollment:
    """Capacity/duplicate/eligibility checks against an already locked class."""
    if not swim_class.is_active:
        raise InvalidTransitionError("class", STATUS_INACTIVE, "enroll into")
    if not student.is_active:
        raise ValidationError("Student is inactive", student_id=student.id)

    if any(e.student_id == student.id for e in swim_class.enrollments):
        raise AlreadyEnrolledError(
            "Student is already enrolled in this class",
            class_id=swim_class.id, student_id=student.id,
        )
    if len(swim_class.enrollments) >= swim_class.capacity:
        raise CapacityExceededError(
            "Class is full",
            class_id=swim_class.id, capacity=swim_class.capacity,
        )
    if not swim_class.flexible_age:
        age = age_on(student.birth_date, today or utcnow().date())
        if age < swim_class.min_age or age > swim_class.max_age:
            raise ValidationError(
                f"Student is outside the class age range ({swim_class.min_age}-{swim_class.max_age})",
                student_id=student.id, age=age,
            )

    enrollment = ClassEnrollment(student_id=student.id, enrolled_at=utcnow())
    swim_class.enrollments.append(enrollment)

    # An enrolled student no longer waits for this class
    for entry in list(swim_class.waitlist):
        if entry.student_id == student.id:
            swim_class.waitlist.remove(entry)

    touch(swim_class)
    return enrollment


def enroll(class_id: int, student_id: int, *, today=None) -> ClassEnrollment:
    """
    Enroll a student into a class.

    Raises:
        NotFoundError: class or student does not exist
        CapacityExceededError: class already holds capacity students
        AlreadyEnrolledError: student already on the roster
        InvalidTransitionError: class is closed
        ValidationError: student inactive or outside the age range
    """
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        student = entity_store.get(Student, student_id)
        enrollment = _enroll_locked(swim_class, student, today=today)
        db.session.commit()
        current_app.logger.info("Enrolled student %s in class %s", student_id, class_id)
        return enrollment

    return run_with_retry(_op)


def _unenroll_locked(swim_class: SwimClass, student_id: int) -> UnenrollResult:
    enrollment = next((e for e in swim_class.enrollments if e.student_id == student_id), None)
    if enrollment is None:
        raise NotEnrolledError(
            "Student is not enrolled in this class",
            class_id=swim_class.id, student_id=student_id,
        )
    swim_class.enrollments.remove(enrollment)
    touch(swim_class)
    return UnenrollResult(
        class_id=swim_class.id,
        student_id=student_id,
        next_candidate=select_waitlist_candidate(swim_class.waitlist),
    )


def unenroll(class_id: int, student_id: int) -> UnenrollResult:
    """
    Remove a student from the roster.

    Returns the next waitlist candidate (if any) without touching the
    waitlist; the caller decides whether to call promote_from_waitlist.
    """
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        result = _unenroll_locked(swim_class, student_id)
        db.session.commit()
        current_app.logger.info("Unenrolled student %s from class %s", student_id, class_id)
        return result

    return run_with_retry(_op)


def add_to_waitlist(class_id: int, student_id: int, priority: int = 1, *, now: datetime | None = None) -> WaitlistEntry:
    require_int_range("priority", priority, 1)

    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        entity_store.get(Student, student_id)
        if not swim_class.allow_waitlist:
            raise WaitlistDisabledError("This class does not accept a waitlist", class_id=class_id)
        if any(w.student_id == student_id for w in swim_class.waitlist):
            raise AlreadyWaitlistedError(
                "Student is already on the waitlist",
                class_id=class_id, student_id=student_id,
            )
        if any(e.student_id == student_id for e in swim_class.enrollments):
            raise AlreadyEnrolledError(
                "Student is already enrolled in this class",
                class_id=class_id, student_id=student_id,
            )
        entry = WaitlistEntry(student_id=student_id, priority=priority, joined_at=now or utcnow())
        swim_class.waitlist.append(entry)
        touch(swim_class)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def remove_from_waitlist(class_id: int, student_id: int) -> None:
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        entry = next((w for w in swim_class.waitlist if w.student_id == student_id), None)
        if entry is None:
            raise NotFoundError("Student is not on the waitlist", class_id=class_id, student_id=student_id)
        swim_class.waitlist.remove(entry)
        touch(swim_class)
        db.session.commit()

    run_with_retry(_op)


def next_waitlist_candidate(class_id: int) -> WaitlistCandidate | None:
    return select_waitlist_candidate(entity_store.get(SwimClass, class_id).waitlist)


def promote_from_waitlist(class_id: int, student_id: int | None = None, *, today=None) -> ClassEnrollment:
    """
    Enroll a waitlisted student and drop their waitlist entry atomically.

    With no student_id the head of the waitlist is promoted.
    """
    def _op():
        swim_class = entity_store.get(SwimClass, class_id, for_update=True)
        target = student_id
        if target is None:
            candidate = select_waitlist_candidate(swim_class.waitlist)
            if candidate is None:
                raise NotFoundError("Waitlist is empty", class_id=class_id)
            target = candidate.student_id
        elif not any(w.student_id == target for w in swim_class.waitlist):
            raise NotFoundError("Student is not on the waitlist", class_id=class_id, student_id=target)

        student = entity_store.get(Student, target)
        enrollment = _enroll_locked(swim_class, student, today=today)
        db.session.commit()
        current_app.logger.info("Promoted student %s from waitlist of class %s", target, class_id)
        return enrollment

    return run_with_retry(_op)


def transfer_student(from_class_id: int, to_class_id: int, student_id: int, *, today=None) -> UnenrollResult:
    """Unenroll + enroll in one transaction; both classes locked."""
    if from_class_id == to_class_id:
        raise ValidationError("Source and target class are the same")

    def _op():
        source = entity_store.get(SwimClass, from_class_id, for_update=True)
        target = entity_store.get(SwimClass, to_class_id, for_update=True)
        student = entity_store.get(Student, student_id)
        result = _unenroll_locked(source, student_id)
        _enroll_locked(target, student, today=today)
        db.session.commit()
        current_app.logger.info(
            "Transferred student %s from class %s to class %s", student_id, from_class_id, to_class_id
        )
        return result

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def roster(class_id: int) -> list[Student]:
    return (
        db.session.query(Student)
        .join(ClassEnrollment, ClassEnrollment.student_id == Student.id)
        .filter(ClassEnrollment.class_id == class_id)
        .order_by(Student.name)
        .all()
    )


def classes_for_teacher(teacher_id: int) -> list[SwimClass]:
    """Active classes where the teacher is primary or substitute."""
    return (
        db.session.query(SwimClass)
        .filter(
            SwimClass.is_active.is_(True),
            db.or_(SwimClass.teacher_id == teacher_id, SwimClass.substitute_teacher_id == teacher_id),
        )
        .order_by(SwimClass.name)
        .all()
    )


def classes_with_open_seats() -> list[SwimClass]:
    classes = db.session.query(SwimClass).filter(SwimClass.is_active.is_(True)).order_by(SwimClass.name).all()
    return [c for c in classes if available_seats(roster_snapshot(c)) > 0]


def classes_at(weekday: int, time_value: str) -> list[SwimClass]:
    """Active classes with a slot running at weekday/time (start inclusive, end exclusive)."""
    minutes = parse_hhmm(time_value)
    slots = db.session.query(ClassSchedule).filter(ClassSchedule.weekday == weekday).all()
    class_ids = {
        s.class_id for s in slots
        if parse_hhmm(s.start_time) <= minutes < parse_hhmm(s.end_time)
    }
    if not class_ids:
        return []
    return (
        db.session.query(SwimClass)
        .filter(SwimClass.id.in_(class_ids), SwimClass.is_active.is_(True))
        .order_by(SwimClass.name)
        .all()
    )
