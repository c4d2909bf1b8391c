# Overview: Absence justification, behavioural observations and attendance frequency reports.

from __future__ import annotations

from datetime import datetime

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Attendance, Lesson, Student
from ..time_utils import utcnow
from ..validation import coerce_date, require_choice
from . import entity_store
from .concurrency import run_with_retry, touch
from .lesson_service import ABSENT, EXCUSED, MEDICAL_NOTE, PRESENT, refresh_lesson_stats


JUSTIFICATION_REASONS = ["illness", "travel", "family_commitment", "other"]

BEHAVIOR_LEVELS = ["excellent", "good", "fair", "needs_improvement"]
PARTICIPATION_LEVELS = ["active", "moderate", "passive", "resistant"]
PROGRESS_LEVELS = ["very_good", "good", "fair", "slow"]


def get_attendance(student_id: int, lesson_id: int) -> Attendance:
    record = db.session.query(Attendance).filter_by(student_id=student_id, lesson_id=lesson_id).first()
    if record is None:
        raise NotFoundError(
            "No attendance recorded for this student and lesson",
            student_id=student_id, lesson_id=lesson_id,
        )
    return record


def justify_absence(
    student_id: int,
    lesson_id: int,
    reason: str,
    description: str | None = None,
    *,
    document_url: str | None = None,
    now: datetime | None = None,
) -> Attendance:
    """
    Attach a justification to an absence and flip it to excused.

    A medical_note absence keeps its status. Present marks cannot be justified.
    """
    require_choice("reason", reason, JUSTIFICATION_REASONS)

    def _op():
        lesson = entity_store.get(Lesson, lesson_id, for_update=True)
        record = get_attendance(student_id, lesson_id)
        if record.status == PRESENT:
            raise ValidationError("Cannot justify an attendance marked present", attendance_id=record.id)

        record.justification = {
            "reason": reason,
            "description": description,
            "document_url": document_url,
            "submitted_at": (now or utcnow()).isoformat(),
        }
        if record.status == ABSENT:
            record.status = EXCUSED
            entry = next((r for r in lesson.roster if r.student_id == student_id), None)
            if entry is not None:
                entry.status = EXCUSED
            refresh_lesson_stats(lesson)
            touch(lesson)
        db.session.commit()
        return record

    return run_with_retry(_op)


def record_observations(
    student_id: int,
    lesson_id: int,
    *,
    behavior: str | None = None,
    participation: str | None = None,
    progress: str | None = None,
    notes: str | None = None,
) -> Attendance:
    if behavior is not None:
        require_choice("behavior", behavior, BEHAVIOR_LEVELS)
    if participation is not None:
        require_choice("participation", participation, PARTICIPATION_LEVELS)
    if progress is not None:
        require_choice("progress", progress, PROGRESS_LEVELS)

    record = get_attendance(student_id, lesson_id)
    # JSON columns are replaced, never mutated in place
    observations = dict(record.observations or {})
    for key, value in (("behavior", behavior), ("participation", participation), ("progress", progress), ("notes", notes)):
        if value is not None:
            observations[key] = value
    record.observations = observations
    return entity_store.save(record)


# =============================================================================
# REPORTS
# =============================================================================

def _pct(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def student_frequency(student_id: int, start, end) -> dict:
    start = coerce_date("start", start)
    end = coerce_date("end", end)
    records = entity_store.find(
        Attendance,
        Attendance.lesson_date >= start,
        Attendance.lesson_date <= end,
        student_id=student_id,
    )
    total = len(records)
    present = sum(1 for r in records if r.status == PRESENT)
    return {
        "student_id": student_id,
        "total": total,
        "present": present,
        "absent": sum(1 for r in records if r.status == ABSENT),
        "excused": sum(1 for r in records if r.status == EXCUSED),
        "medical_note": sum(1 for r in records if r.status == MEDICAL_NOTE),
        "frequency_pct": _pct(present, total),
    }


def class_frequency(class_id: int, start, end) -> list[dict]:
    """Per-student frequency for a class, best attendance first."""
    start = coerce_date("start", start)
    end = coerce_date("end", end)
    records = entity_store.find(
        Attendance,
        Attendance.lesson_date >= start,
        Attendance.lesson_date <= end,
        class_id=class_id,
    )
    totals: dict[int, list[int]] = {}
    for r in records:
        counts = totals.setdefault(r.student_id, [0, 0])
        counts[0] += 1
        if r.status == PRESENT:
            counts[1] += 1

    names = {
        s.id: s.name
        for s in db.session.query(Student).filter(Student.id.in_(list(totals))).all()
    } if totals else {}

    rows = [
        {
            "student_id": student_id,
            "name": names.get(student_id),
            "total": total,
            "present": present,
            "frequency_pct": _pct(present, total),
        }
        for student_id, (total, present) in totals.items()
    ]
    return sorted(rows, key=lambda r: (-r["frequency_pct"], r["name"] or ""))
