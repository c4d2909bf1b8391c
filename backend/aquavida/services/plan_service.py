# Overview: Service-layer operations for plans; pricing rules and promotion lifecycle.

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..errors import InvalidTransitionError, ValidationError
from ..extensions import db
from ..models import Plan
from ..rounding import round_cents, round_half_up
from ..time_utils import utcnow
from ..validation import (
    coerce_date,
    require_amount_cents,
    require_choice,
    require_fields,
    require_int_range,
    require_percent,
)
from . import entity_store


# =============================================================================
# CONSTANTS
# =============================================================================

PLAN_TYPES = ["monthly", "quarterly", "semiannual", "annual", "single", "package"]
PLAN_CATEGORIES = ["basic", "intermediate", "premium", "vip"]

PROMO_INACTIVE = "inactive"
PROMO_SCHEDULED = "scheduled"
PROMO_EXPIRED = "expired"
PROMO_ACTIVE = "active"

DISCOUNT_PERCENT = "percent"
DISCOUNT_FIXED = "fixed"

WEEKS_PER_MONTH = 4


# =============================================================================
# DERIVED PRICING (pure)
# =============================================================================

def promotion_status(plan: Plan, *, today: date | None = None) -> str:
    if not plan.promo_active:
        return PROMO_INACTIVE
    today = today or utcnow().date()
    if plan.promo_starts_on is not None and today < plan.promo_starts_on:
        return PROMO_SCHEDULED
    if plan.promo_ends_on is not None and today > plan.promo_ends_on:
        return PROMO_EXPIRED
    return PROMO_ACTIVE


def effective_price_cents(plan: Plan, *, today: date | None = None) -> int:
    """Promotional price while the promotion is running, else the list price."""
    if plan.promo_price_cents and promotion_status(plan, today=today) == PROMO_ACTIVE:
        return plan.promo_price_cents
    return plan.price_cents


def sessions_in_term(plan: Plan) -> int:
    return plan.sessions_per_week * WEEKS_PER_MONTH * plan.duration_months


def per_session_price_cents(plan: Plan, *, today: date | None = None) -> int:
    return round_cents(effective_price_cents(plan, today=today) / sessions_in_term(plan))


def discount_pct(plan: Plan) -> float:
    if plan.promo_price_cents and plan.promo_price_cents < plan.price_cents:
        return round_half_up((plan.price_cents - plan.promo_price_cents) / plan.price_cents * 100, 1)
    return 0.0


def monthly_hours(plan: Plan) -> float:
    return round_half_up(plan.sessions_per_week * WEEKS_PER_MONTH * plan.session_minutes / 60, 1)


def is_age_eligible(plan: Plan, age: int) -> bool:
    return plan.min_age <= age <= plan.max_age


def price_with_discount(plan: Plan, kind: str, value, *, today: date | None = None) -> int:
    """Effective price after an ad-hoc discount, never below zero."""
    require_choice("kind", kind, [DISCOUNT_PERCENT, DISCOUNT_FIXED])
    base = effective_price_cents(plan, today=today)
    if kind == DISCOUNT_PERCENT:
        price = round_cents(base * (1 - require_percent("value", value) / 100))
    else:
        price = base - require_amount_cents("value", value)
    return max(0, price)


def pricing_summary(plan: Plan, *, today: date | None = None) -> dict:
    data = plan.to_dict()
    data.update({
        "effective_price_cents": effective_price_cents(plan, today=today),
        "per_session_price_cents": per_session_price_cents(plan, today=today),
        "discount_pct": discount_pct(plan),
        "promotion_status": promotion_status(plan, today=today),
        "monthly_hours": monthly_hours(plan),
    })
    return data


# =============================================================================
# VALIDATION
# =============================================================================

_WRITABLE = {
    "name", "description", "plan_type", "category", "modalities",
    "price_cents", "promo_price_cents", "promo_active", "promo_starts_on",
    "promo_ends_on", "promo_description", "duration_months",
    "sessions_per_week", "session_minutes", "min_age", "max_age",
    "max_students_per_class", "max_absences_per_month", "allows_makeup_lessons",
    "allow_freeze", "max_freeze_days", "allow_cancellation",
    "cancellation_notice_days", "cancellation_fee_cents", "grace_period_days",
    "due_day",
}


def _validate(values: dict) -> None:
    """Validate the merged field set of a plan (existing values + changes)."""
    require_choice("plan_type", values.get("plan_type"), PLAN_TYPES)
    require_choice("category", values.get("category", "basic"), PLAN_CATEGORIES)
    require_amount_cents("price_cents", values.get("price_cents"), allow_zero=False)
    promo = values.get("promo_price_cents")
    if promo is not None:
        require_amount_cents("promo_price_cents", promo, allow_zero=False)
        if promo >= values["price_cents"]:
            raise ValidationError("promo_price_cents must be lower than price_cents")
    require_int_range("duration_months", values.get("duration_months", 1), 1)
    require_int_range("sessions_per_week", values.get("sessions_per_week", 2), 1, 7)
    require_int_range("session_minutes", values.get("session_minutes", 45), 30, 120)
    min_age = require_int_range("min_age", values.get("min_age", 0), 0)
    max_age = require_int_range("max_age", values.get("max_age", 100), 0)
    if max_age < min_age:
        raise ValidationError("max_age must be >= min_age")
    require_int_range("due_day", values.get("due_day", 10), 1, 31)
    require_int_range("max_students_per_class", values.get("max_students_per_class", 15), 1)
    require_amount_cents("cancellation_fee_cents", values.get("cancellation_fee_cents", 0))

    starts = values.get("promo_starts_on")
    ends = values.get("promo_ends_on")
    if values.get("promo_active") and starts is not None and ends is not None and ends <= starts:
        raise ValidationError("promotion end must be after its start")


def _normalize(data: dict) -> dict:
    unknown = set(data) - _WRITABLE
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    cleaned = dict(data)
    for key in ("promo_starts_on", "promo_ends_on"):
        if key in cleaned:
            cleaned[key] = coerce_date(key, cleaned[key])
    return cleaned


def _current_values(plan: Plan) -> dict:
    return {key: getattr(plan, key) for key in _WRITABLE}


def create_plan(data: dict) -> Plan:
    require_fields(data, ["name", "plan_type", "price_cents"])
    cleaned = _normalize(data)
    _validate(cleaned)
    plan = Plan(**cleaned)
    entity_store.save(plan)
    current_app.logger.info("Created plan %s (%s)", plan.id, plan.name)
    return plan


def update_plan(plan_id: int, changes: dict) -> Plan:
    plan = entity_store.get(Plan, plan_id)
    cleaned = _normalize(changes)
    merged = _current_values(plan)
    merged.update(cleaned)
    _validate(merged)
    for key, value in cleaned.items():
        setattr(plan, key, value)
    return entity_store.save(plan)


# =============================================================================
# PROMOTIONS / LIFECYCLE
# =============================================================================

def activate_promotion(
    plan_id: int,
    *,
    promo_price_cents: int | None = None,
    starts_on=None,
    ends_on=None,
    description: str | None = None,
) -> Plan:
    changes = {
        "promo_active": True,
        "promo_starts_on": starts_on,
        "promo_ends_on": ends_on,
        "promo_description": description,
    }
    if promo_price_cents is not None:
        changes["promo_price_cents"] = promo_price_cents
    plan = update_plan(plan_id, changes)
    if plan.promo_price_cents is None:
        plan.promo_active = False
        entity_store.save(plan)
        raise ValidationError("A promotional price is required to activate a promotion", plan_id=plan_id)
    return plan


def deactivate_promotion(plan_id: int) -> Plan:
    plan = entity_store.get(Plan, plan_id)
    plan.promo_active = False
    return entity_store.save(plan)


def discontinue(plan_id: int, reason: str, *, now: datetime | None = None) -> Plan:
    plan = entity_store.get(Plan, plan_id)
    if not plan.is_active:
        raise InvalidTransitionError("plan", "discontinued", "discontinue")
    plan.is_active = False
    plan.discontinued_at = now or utcnow()
    plan.discontinue_reason = reason
    entity_store.save(plan)
    current_app.logger.info("Discontinued plan %s: %s", plan_id, reason)
    return plan


def reactivate(plan_id: int) -> Plan:
    plan = entity_store.get(Plan, plan_id)
    if plan.is_active:
        raise InvalidTransitionError("plan", "active", "reactivate")
    plan.is_active = True
    plan.discontinued_at = None
    plan.discontinue_reason = None
    return entity_store.save(plan)


# =============================================================================
# QUERIES
# =============================================================================

def active_plans() -> list[Plan]:
    return entity_store.find(Plan, order_by=Plan.price_cents, is_active=True)


def plans_for_age(age: int) -> list[Plan]:
    return entity_store.find(
        Plan,
        Plan.min_age <= age,
        Plan.max_age >= age,
        order_by=Plan.price_cents,
        is_active=True,
    )


def plans_in_price_range(min_cents: int, max_cents: int) -> list[Plan]:
    return entity_store.find(
        Plan,
        Plan.price_cents >= min_cents,
        Plan.price_cents <= max_cents,
        order_by=Plan.price_cents,
        is_active=True,
    )


def plans_on_promotion(*, today: date | None = None) -> list[Plan]:
    plans = db.session.query(Plan).filter(Plan.is_active.is_(True), Plan.promo_active.is_(True)).all()
    return [p for p in plans if promotion_status(p, today=today) == PROMO_ACTIVE]
