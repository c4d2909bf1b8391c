# Overview: Service-layer operations for evaluations; scoring and draft -> finalized -> sent lifecycle.

"""
Evaluation Service

SCORING (pure functions, see compute_scores):
- technical average = mean of the technique sub-scores that are set
- behavioral average = mean of the behavior sub-scores that are set
- overall average = mean of the two averages that are set; a group with no
  scores is left out rather than counted as 0, so a student scored only on
  technique gets the technical average as overall
- all averages rounded half-up to 2 decimals
- label from overall: >=9 Excellent, >=8 Very Good, >=7 Good, >=6 Regular,
  >=5 Insufficient, else Inadequate

LIFECYCLE:
    draft -> finalized -> sent_to_guardian

    finalize freezes the averages into columns. Once sent, the evaluation
    can no longer be edited or deleted (LockedForEditingError); only the
    guardian's viewed_at stamp may still change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from flask import current_app

from ..errors import ForbiddenError, InvalidTransitionError, LockedForEditingError, ValidationError
from ..extensions import db
from ..models import Evaluation, Student, SwimClass, Teacher
from ..permissions import can_edit_evaluation
from ..rounding import round_half_up
from ..time_utils import utcnow
from ..validation import coerce_date, require_choice, require_fields, require_score
from . import entity_store
from .concurrency import run_with_retry


# =============================================================================
# CONSTANTS
# =============================================================================

TECHNIQUE_SKILLS = ["breathing", "floating", "propulsion", "coordination", "endurance"]
BEHAVIOR_SKILLS = ["discipline", "participation", "relationships", "dedication"]
STROKES = ["crawl", "backstroke", "breaststroke", "butterfly"]
STROKE_LEVELS = ["cannot_swim", "beginner", "basic", "intermediate", "advanced"]

VALID_PERIODS = ["monthly", "bimonthly", "quarterly", "semiannual", "annual"]

STATUS_DRAFT = "draft"
STATUS_FINALIZED = "finalized"
STATUS_SENT = "sent_to_guardian"

LABEL_THRESHOLDS = [
    (9, "Excellent"),
    (8, "Very Good"),
    (7, "Good"),
    (6, "Regular"),
    (5, "Insufficient"),
]
LABEL_FLOOR = "Inadequate"


@dataclass(frozen=True)
class Scores:
    technical_average: float | None
    behavioral_average: float | None
    overall_average: float | None
    label: str | None


def _mean(values) -> float | None:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return round_half_up(sum(values) / len(values), 2)


def label_for(overall: float | None) -> str | None:
    if overall is None:
        return None
    for threshold, label in LABEL_THRESHOLDS:
        if overall >= threshold:
            return label
    return LABEL_FLOOR


def compute_scores(technique: dict, behavior: dict) -> Scores:
    technical = _mean((technique or {}).get(k) for k in TECHNIQUE_SKILLS)
    behavioral = _mean((behavior or {}).get(k) for k in BEHAVIOR_SKILLS)
    overall = _mean([technical, behavioral])
    return Scores(technical, behavioral, overall, label_for(overall))


# =============================================================================
# VALIDATION
# =============================================================================

def _clean_group(field: str, raw: dict | None, keys: list[str]) -> dict:
    raw = raw or {}
    unknown = set(raw) - set(keys)
    if unknown:
        raise ValidationError(f"Unknown {field} entries: {', '.join(sorted(unknown))}")
    return {k: require_score(f"{field}.{k}", raw[k]) for k in keys if raw.get(k) is not None}


def _clean_strokes(raw: dict | None) -> dict:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValidationError("strokes must map stroke names to entries")
    unknown = set(raw) - set(STROKES)
    if unknown:
        raise ValidationError(f"Unknown strokes: {', '.join(sorted(unknown))}")
    cleaned = {}
    for stroke, data in raw.items():
        if not isinstance(data, dict):
            raise ValidationError(f"strokes.{stroke} must be an object with level and score")
        level = data.get("level", "cannot_swim")
        require_choice(f"strokes.{stroke}.level", level, STROKE_LEVELS)
        cleaned[stroke] = {"level": level, "score": require_score(f"strokes.{stroke}.score", data.get("score"))}
    return cleaned


def _apply_fields(evaluation: Evaluation, data: dict) -> None:
    if "technique" in data:
        evaluation.technique = _clean_group("technique", data["technique"], TECHNIQUE_SKILLS)
    if "behavior" in data:
        evaluation.behavior = _clean_group("behavior", data["behavior"], BEHAVIOR_SKILLS)
    if "strokes" in data:
        evaluation.strokes = _clean_strokes(data["strokes"])
    if "period" in data:
        evaluation.period = require_choice("period", data["period"], VALID_PERIODS)
    if "evaluated_on" in data:
        evaluation.evaluated_on = coerce_date("evaluated_on", data["evaluated_on"])
    for key in ("goals", "recommendations", "comments"):
        if key in data:
            setattr(evaluation, key, data[key])


def _freeze(evaluation: Evaluation) -> Scores:
    scores = compute_scores(evaluation.technique, evaluation.behavior)
    evaluation.technical_average = scores.technical_average
    evaluation.behavioral_average = scores.behavioral_average
    evaluation.overall_average = scores.overall_average
    evaluation.label = scores.label
    return scores


def _require_editor(evaluation: Evaluation, actor) -> None:
    if actor is not None and not can_edit_evaluation(actor, evaluation):
        raise ForbiddenError("Only the authoring teacher may change this evaluation", evaluation_id=evaluation.id)


# =============================================================================
# OPERATIONS
# =============================================================================

_EDITABLE = {"technique", "behavior", "strokes", "period", "evaluated_on", "goals", "recommendations", "comments"}


def create_evaluation(data: dict) -> Evaluation:
    require_fields(data, ["student_id", "teacher_id", "class_id", "period"])
    unknown = set(data) - _EDITABLE - {"student_id", "teacher_id", "class_id"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    entity_store.get(Student, data["student_id"])
    entity_store.get(Teacher, data["teacher_id"])
    entity_store.get(SwimClass, data["class_id"])

    evaluation = Evaluation(
        student_id=data["student_id"],
        teacher_id=data["teacher_id"],
        class_id=data["class_id"],
        status=STATUS_DRAFT,
        evaluated_on=utcnow().date(),
        technique={},
        behavior={},
        strokes={},
    )
    _apply_fields(evaluation, data)
    return entity_store.save(evaluation)


def update_evaluation(evaluation_id: int, changes: dict, *, actor=None) -> Evaluation:
    """
    Edit a draft or finalized evaluation.

    Raises:
        LockedForEditingError: evaluation already sent to the guardian
        ForbiddenError: actor is a teacher editing someone else's evaluation
    """
    unknown = set(changes) - _EDITABLE
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        evaluation = entity_store.get(Evaluation, evaluation_id, for_update=True)
        _require_editor(evaluation, actor)
        if evaluation.status == STATUS_SENT:
            raise LockedForEditingError(
                "Evaluation was already sent to the guardian",
                evaluation_id=evaluation.id,
            )
        _apply_fields(evaluation, changes)
        if evaluation.status == STATUS_FINALIZED:
            _freeze(evaluation)
        db.session.commit()
        return evaluation

    return run_with_retry(_op)


def delete_evaluation(evaluation_id: int, *, actor=None) -> None:
    evaluation = entity_store.get(Evaluation, evaluation_id)
    _require_editor(evaluation, actor)
    if evaluation.status == STATUS_SENT:
        raise LockedForEditingError("Evaluation was already sent to the guardian", evaluation_id=evaluation.id)
    entity_store.delete(Evaluation, evaluation_id)


def _finalize_locked(evaluation: Evaluation, now: datetime) -> None:
    scores = _freeze(evaluation)
    if scores.overall_average is None:
        raise ValidationError("At least one technique or behavior score is required to finalize")
    evaluation.status = STATUS_FINALIZED
    evaluation.finalized_at = now


def finalize(evaluation_id: int, *, actor=None, now: datetime | None = None) -> Evaluation:
    def _op():
        evaluation = entity_store.get(Evaluation, evaluation_id, for_update=True)
        _require_editor(evaluation, actor)
        if evaluation.status == STATUS_SENT:
            raise LockedForEditingError("Evaluation was already sent to the guardian", evaluation_id=evaluation.id)
        _finalize_locked(evaluation, now or utcnow())
        db.session.commit()
        return evaluation

    return run_with_retry(_op)


def send_to_guardian(evaluation_id: int, *, actor=None, now: datetime | None = None) -> Evaluation:
    """Finalize (recomputing averages) and mark as sent."""
    def _op():
        evaluation = entity_store.get(Evaluation, evaluation_id, for_update=True)
        _require_editor(evaluation, actor)
        if evaluation.status == STATUS_SENT:
            raise InvalidTransitionError("evaluation", evaluation.status, "send")
        stamp = now or utcnow()
        _finalize_locked(evaluation, stamp)
        evaluation.status = STATUS_SENT
        evaluation.sent_at = stamp
        db.session.commit()
        current_app.logger.info("Evaluation %s sent to guardian of student %s", evaluation_id, evaluation.student_id)
        return evaluation

    return run_with_retry(_op)


def mark_viewed(evaluation_id: int, *, now: datetime | None = None) -> Evaluation:
    evaluation = entity_store.get(Evaluation, evaluation_id)
    if evaluation.status != STATUS_SENT:
        raise InvalidTransitionError("evaluation", evaluation.status, "mark as viewed")
    if evaluation.viewed_at is None:
        evaluation.viewed_at = now or utcnow()
        entity_store.save(evaluation)
    return evaluation


# =============================================================================
# REPORTS
# =============================================================================

def student_evolution(student_id: int, limit: int = 5) -> list[Evaluation]:
    """Latest evaluations for a student, newest first."""
    return entity_store.find(
        Evaluation,
        order_by=[Evaluation.evaluated_on.desc(), Evaluation.id.desc()],
        page=1,
        per_page=limit,
        student_id=student_id,
    )


def class_statistics(class_id: int, period: str) -> dict:
    """Mean averages over non-draft evaluations of a class for one period."""
    require_choice("period", period, VALID_PERIODS)
    rows = entity_store.find(
        Evaluation,
        Evaluation.status != STATUS_DRAFT,
        class_id=class_id,
        period=period,
    )

    def _avg(attr):
        values = [getattr(r, attr) for r in rows if getattr(r, attr) is not None]
        return round_half_up(sum(values) / len(values), 2) if values else 0.0

    return {
        "class_id": class_id,
        "period": period,
        "total": len(rows),
        "technical_average": _avg("technical_average"),
        "behavioral_average": _avg("behavioral_average"),
        "overall_average": _avg("overall_average"),
    }


def evaluations_for_teacher(teacher_id: int, *, since: date | None = None) -> list[Evaluation]:
    criteria = []
    if since is not None:
        criteria.append(Evaluation.evaluated_on >= since)
    return entity_store.find(Evaluation, *criteria, order_by=Evaluation.evaluated_on.desc(), teacher_id=teacher_id)
