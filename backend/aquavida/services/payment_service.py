# Overview: Service-layer operations for payments; amount computation, status machine and billing runs.

"""
Payment Service

TOTAL (pure, see compute_total):
    total = original - discount + late_fee + interest

    discount  = discount_cents  or original * discount_pct / 100
    late_fee  = late_fee_cents  or original * late_fee_pct / 100
    interest  = interest_cents  or original * interest_pct / 100 / 30 * days_late

    interest_pct is a monthly rate accrued per day late. days_late is only
    recomputed while the payment is still open (pending / overdue /
    under_review); it freezes once the payment is paid or cancelled.

LIFECYCLE:
    pending      -> paid | overdue | cancelled | under_review
    overdue      -> paid | cancelled | under_review
    under_review -> paid | cancelled
    paid         terminal
    refunded     reserved for an external refund flow; nothing here sets it

Every status-changing or amount-changing call appends a PaymentHistory row.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime

from flask import current_app

from ..errors import AlreadyCancelledError, DuplicateError, InvalidTransitionError, ValidationError
from ..extensions import db
from ..models import Payment, PaymentHistory, Plan, Student
from ..rounding import round_cents
from ..time_utils import days_in_month, utcnow
from ..validation import (
    coerce_date,
    require_amount_cents,
    require_choice,
    require_fields,
    require_int_range,
    require_percent,
)
from . import entity_store
from .concurrency import run_with_retry
from .plan_service import effective_price_cents


# =============================================================================
# STATUS / METHOD (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"
STATUS_UNDER_REVIEW = "under_review"

OPEN_STATUSES = (STATUS_PENDING, STATUS_OVERDUE, STATUS_UNDER_REVIEW)

METHOD_BANK_SLIP = "bank_slip"
METHOD_CREDIT_CARD = "credit_card"
METHOD_DEBIT_CARD = "debit_card"
METHOD_PIX = "pix"
METHOD_CASH = "cash"
METHOD_TRANSFER = "transfer"

VALID_METHODS = [
    METHOD_BANK_SLIP,
    METHOD_CREDIT_CARD,
    METHOD_DEBIT_CARD,
    METHOD_PIX,
    METHOD_CASH,
    METHOD_TRANSFER,
]

# Allowed metadata keys per method, and which of them are mandatory
_METHOD_FIELDS = {
    METHOD_BANK_SLIP: ({"barcode", "digitable_line", "our_number"}, set()),
    METHOD_CREDIT_CARD: ({"brand", "last_four", "installments"}, {"brand", "last_four"}),
    METHOD_DEBIT_CARD: ({"brand", "last_four"}, {"brand", "last_four"}),
    METHOD_PIX: ({"key", "qr_code", "txid"}, set()),
    METHOD_CASH: (set(), set()),
    METHOD_TRANSFER: ({"bank", "branch", "account"}, {"bank"}),
}

LAST_FOUR_RE = re.compile(r"^\d{4}$")
MAX_INSTALLMENTS = 12
DAYS_PER_INTEREST_PERIOD = 30


# =============================================================================
# DERIVED AMOUNTS (pure)
# =============================================================================

@dataclass(frozen=True)
class PaymentSnapshot:
    original_cents: int
    discount_cents: int = 0
    discount_pct: float = 0.0
    late_fee_cents: int = 0
    late_fee_pct: float = 0.0
    interest_cents: int = 0
    interest_pct: float = 0.0
    days_late: int = 0

    @classmethod
    def of(cls, payment: Payment) -> "PaymentSnapshot":
        return cls(
            original_cents=payment.original_cents,
            discount_cents=payment.discount_cents or 0,
            discount_pct=payment.discount_pct or 0.0,
            late_fee_cents=payment.late_fee_cents or 0,
            late_fee_pct=payment.late_fee_pct or 0.0,
            interest_cents=payment.interest_cents or 0,
            interest_pct=payment.interest_pct or 0.0,
            days_late=payment.days_late or 0,
        )


def discount_amount(snap: PaymentSnapshot) -> float:
    if snap.discount_cents:
        return snap.discount_cents
    return snap.original_cents * snap.discount_pct / 100


def late_fee_amount(snap: PaymentSnapshot) -> float:
    if snap.late_fee_cents:
        return snap.late_fee_cents
    return snap.original_cents * snap.late_fee_pct / 100


def interest_amount(snap: PaymentSnapshot) -> float:
    if snap.interest_cents:
        return snap.interest_cents
    return snap.original_cents * snap.interest_pct / 100 / DAYS_PER_INTEREST_PERIOD * snap.days_late


def compute_total(snap: PaymentSnapshot) -> int:
    """Pure function of the snapshot; calling it twice gives the same value."""
    return round_cents(
        snap.original_cents
        - discount_amount(snap)
        + late_fee_amount(snap)
        + interest_amount(snap)
    )


def days_late(due_date: date, today: date) -> int:
    return max(0, (today - due_date).days)


def is_overdue(status: str, due_date: date, today: date) -> bool:
    return status == STATUS_PENDING and today > due_date


def due_date_for(year: int, month: int, due_day: int) -> date:
    """Due day inside the billing period, clamped to the month length."""
    return date(year, month, min(due_day, days_in_month(year, month)))


def _recompute_total(payment: Payment) -> None:
    payment.total_cents = compute_total(PaymentSnapshot.of(payment))


# =============================================================================
# HELPERS
# =============================================================================

def _log(payment: Payment, action: str, *, from_status=None, to_status=None, actor_user_id=None, note=None) -> None:
    payment.history.append(PaymentHistory(
        occurred_at=utcnow(),
        actor_user_id=actor_user_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        note=note,
    ))


def validate_method_details(method: str, details: dict | None) -> dict:
    require_choice("method", method, VALID_METHODS)
    details = dict(details or {})
    allowed, required = _METHOD_FIELDS[method]
    unknown = set(details) - allowed
    if unknown:
        raise ValidationError(
            f"Unexpected details for {method}: {', '.join(sorted(unknown))}",
            method=method,
        )
    missing = [k for k in sorted(required) if not details.get(k)]
    if missing:
        raise ValidationError(f"Missing details for {method}: {', '.join(missing)}", method=method)

    if "last_four" in details and not LAST_FOUR_RE.match(str(details["last_four"])):
        raise ValidationError("last_four must be exactly 4 digits")
    if method == METHOD_CREDIT_CARD:
        details["installments"] = require_int_range(
            "installments", details.get("installments", 1), 1, MAX_INSTALLMENTS,
        )
    return details


def _load_open(payment_id: int, action: str) -> Payment:
    """Lock a payment that may still change amounts (not paid, not cancelled)."""
    payment = entity_store.get(Payment, payment_id, for_update=True)
    if payment.status not in OPEN_STATUSES:
        raise InvalidTransitionError("payment", payment.status, action)
    return payment


# =============================================================================
# OVERDUE REFRESH
# =============================================================================

def refresh_overdue(payment: Payment, *, today: date | None = None) -> bool:
    """
    Bring an open payment up to date with the calendar.

    pending past due -> overdue (with the configured monthly interest when
    no interest terms were set); days_late and total recomputed. Does not
    commit. Returns True if anything changed.
    """
    if payment.status not in OPEN_STATUSES:
        return False
    today = today or utcnow().date()
    before = (payment.status, payment.days_late, payment.interest_pct, payment.total_cents)

    if is_overdue(payment.status, payment.due_date, today):
        payment.status = STATUS_OVERDUE
        _log(payment, "marked_overdue", from_status=STATUS_PENDING, to_status=STATUS_OVERDUE)
    if payment.status == STATUS_OVERDUE and not payment.interest_cents and not payment.interest_pct:
        payment.interest_pct = float(current_app.config["MONTHLY_INTEREST_PCT"])
    payment.days_late = days_late(payment.due_date, today)
    _recompute_total(payment)

    return before != (payment.status, payment.days_late, payment.interest_pct, payment.total_cents)


def load_payment(payment_id: int, *, today: date | None = None) -> Payment:
    """Load a payment, applying the lazy overdue refresh."""
    def _op():
        payment = entity_store.get(Payment, payment_id, for_update=True)
        if refresh_overdue(payment, today=today):
            db.session.commit()
        return payment

    return run_with_retry(_op)


def refresh_all_overdue(*, today: date | None = None) -> int:
    """Bulk refresh of every open payment. Returns how many changed."""
    today = today or utcnow().date()

    def _op():
        rows = entity_store.find(Payment, Payment.status.in_(OPEN_STATUSES))
        changed = sum(1 for p in rows if refresh_overdue(p, today=today))
        db.session.commit()
        return changed

    changed = run_with_retry(_op)
    current_app.logger.info("Overdue refresh for %s updated %s payments", today.isoformat(), changed)
    return changed


# =============================================================================
# CREATION
# =============================================================================

def _existing_charge(student_id: int, month: int, year: int) -> Payment | None:
    return (
        db.session.query(Payment)
        .filter(
            Payment.student_id == student_id,
            Payment.period_month == month,
            Payment.period_year == year,
            Payment.status != STATUS_CANCELLED,
        )
        .first()
    )


def _build_payment(student: Student, plan: Plan, month: int, year: int, *, original_cents=None,
                   due_date=None, description=None, today: date) -> Payment:
    if original_cents is None:
        original_cents = effective_price_cents(plan, today=today)
    original_cents = require_amount_cents("original_cents", original_cents, allow_zero=False)
    if due_date is None:
        due_day = plan.due_day or current_app.config["DEFAULT_DUE_DAY"]
        due_date = due_date_for(year, month, due_day)

    payment = Payment(
        student_id=student.id,
        plan_id=plan.id,
        guardian_user_id=student.guardian_user_id,
        period_month=month,
        period_year=year,
        description=description or f"{plan.name} {month:02d}/{year}",
        original_cents=original_cents,
        discount_cents=0,
        discount_pct=0.0,
        late_fee_cents=0,
        late_fee_pct=0.0,
        interest_cents=0,
        interest_pct=0.0,
        days_late=0,
        due_date=due_date,
        status=STATUS_PENDING,
    )
    _recompute_total(payment)
    _log(payment, "created", to_status=STATUS_PENDING)
    return payment


def create_payment(data: dict, *, actor_user_id: int | None = None, today: date | None = None) -> Payment:
    """
    Create one charge for a student and billing period.

    original_cents defaults to the plan's effective price; due_date defaults
    to the plan's due day within the period.

    Raises:
        DuplicateError: a non-cancelled charge already exists for the period
    """
    require_fields(data, ["student_id", "plan_id", "period_month", "period_year"])
    month = require_int_range("period_month", data["period_month"], 1, 12)
    year = require_int_range("period_year", data["period_year"], 2000, 2100)
    today = today or utcnow().date()

    student = entity_store.get(Student, data["student_id"])
    plan = entity_store.get(Plan, data["plan_id"])
    if _existing_charge(student.id, month, year) is not None:
        raise DuplicateError(
            "Student already has a charge for this period",
            student_id=student.id, period_month=month, period_year=year,
        )

    payment = _build_payment(
        student, plan, month, year,
        original_cents=data.get("original_cents"),
        due_date=coerce_date("due_date", data.get("due_date")),
        description=data.get("description"),
        today=today,
    )
    payment.history[0].actor_user_id = actor_user_id
    entity_store.save(payment)
    current_app.logger.info(
        "Created payment %s for student %s (%02d/%s, %s cents)",
        payment.id, student.id, month, year, payment.total_cents,
    )
    return payment


def generate_bulk_charges(
    month: int,
    year: int,
    plan_id: int,
    student_ids: list[int] | None = None,
    *,
    today: date | None = None,
) -> dict:
    """
    Create the period's charge for many students in one transaction.

    With no student_ids, every active student on the plan is billed.
    Inactive students and students already charged for the period are
    skipped and reported.
    """
    month = require_int_range("month", month, 1, 12)
    year = require_int_range("year", year, 2000, 2100)
    today = today or utcnow().date()
    plan = entity_store.get(Plan, plan_id)

    if student_ids is None:
        students = entity_store.find(Student, is_active=True, plan_id=plan.id)
    else:
        students = [entity_store.get(Student, sid) for sid in student_ids]

    result = {}

    def _op():
        result.update(created=[], skipped_inactive=[], skipped_existing=[])
        created = []
        for student in students:
            if not student.is_active:
                result["skipped_inactive"].append(student.id)
                continue
            if _existing_charge(student.id, month, year) is not None:
                result["skipped_existing"].append(student.id)
                continue
            payment = _build_payment(student, plan, month, year, today=today)
            db.session.add(payment)
            created.append(payment)
        db.session.commit()
        return created

    created = run_with_retry(_op)
    result["created"] = [p.id for p in created]
    current_app.logger.info(
        "Bulk billing %02d/%s plan %s: %s created, %s inactive, %s already charged",
        month, year, plan.id,
        len(result["created"]), len(result["skipped_inactive"]), len(result["skipped_existing"]),
    )
    return result


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def confirm_payment(
    payment_id: int,
    method: str,
    details: dict | None = None,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    pending | overdue | under_review -> paid.

    Interest is settled as of the payment date, then frozen.
    """
    details = validate_method_details(method, details)
    now = now or utcnow()

    def _op():
        payment = _load_open(payment_id, "confirm")
        refresh_overdue(payment, today=now.date())
        previous = payment.status
        payment.status = STATUS_PAID
        payment.paid_at = now
        payment.method = method
        payment.method_details = details
        _recompute_total(payment)
        _log(payment, "paid", from_status=previous, to_status=STATUS_PAID,
             actor_user_id=actor_user_id, note=method)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info("Payment %s confirmed via %s (%s cents)", payment_id, method, payment.total_cents)
    return payment


def cancel(payment_id: int, reason: str, *, actor_user_id: int | None = None) -> Payment:
    """
    Any non-paid state -> cancelled.

    Raises:
        InvalidTransitionError: payment already paid (or refunded)
        AlreadyCancelledError: payment already cancelled
    """
    if not reason:
        raise ValidationError("A cancellation reason is required")

    def _op():
        payment = entity_store.get(Payment, payment_id, for_update=True)
        if payment.status == STATUS_CANCELLED:
            raise AlreadyCancelledError("Payment is already cancelled", payment_id=payment_id)
        if payment.status not in OPEN_STATUSES:
            raise InvalidTransitionError("payment", payment.status, "cancel")
        previous = payment.status
        payment.status = STATUS_CANCELLED
        payment.cancel_reason = reason
        _log(payment, "cancelled", from_status=previous, to_status=STATUS_CANCELLED,
             actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info("Payment %s cancelled: %s", payment_id, reason)
    return payment


def flag_for_review(payment_id: int, note: str, *, actor_user_id: int | None = None) -> Payment:
    """pending | overdue -> under_review."""
    def _op():
        payment = entity_store.get(Payment, payment_id, for_update=True)
        if payment.status not in (STATUS_PENDING, STATUS_OVERDUE):
            raise InvalidTransitionError("payment", payment.status, "flag for review")
        previous = payment.status
        payment.status = STATUS_UNDER_REVIEW
        payment.review_note = note
        _log(payment, "under_review", from_status=previous, to_status=STATUS_UNDER_REVIEW,
             actor_user_id=actor_user_id, note=note)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# AMOUNT ADJUSTMENTS
# =============================================================================

def _adjustment(amount_cents, percent) -> tuple[int, float]:
    if (amount_cents is None) == (percent is None):
        raise ValidationError("Provide exactly one of amount_cents or percent")
    if amount_cents is not None:
        return require_amount_cents("amount_cents", amount_cents, allow_zero=False), 0.0
    return 0, require_percent("percent", percent)


def apply_discount(
    payment_id: int,
    *,
    amount_cents: int | None = None,
    percent: float | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
    today: date | None = None,
) -> Payment:
    """
    Replace the discount (flat or percent) and recompute the total.

    The overdue refresh runs first, so interest and days_late are current.

    Raises:
        InvalidTransitionError: payment is paid or cancelled
    """
    cents, pct = _adjustment(amount_cents, percent)

    def _op():
        payment = _load_open(payment_id, "apply a discount to")
        refresh_overdue(payment, today=today)
        if cents > payment.original_cents:
            raise ValidationError("Discount cannot exceed the original amount", payment_id=payment_id)
        payment.discount_cents = cents
        payment.discount_pct = pct
        payment.discount_reason = reason
        _recompute_total(payment)
        _log(payment, "discount_applied", from_status=payment.status, to_status=payment.status,
             actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def apply_late_fee(
    payment_id: int,
    *,
    amount_cents: int | None = None,
    percent: float | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
    today: date | None = None,
) -> Payment:
    cents, pct = _adjustment(amount_cents, percent)

    def _op():
        payment = _load_open(payment_id, "apply a late fee to")
        refresh_overdue(payment, today=today)
        payment.late_fee_cents = cents
        payment.late_fee_pct = pct
        payment.late_fee_reason = reason
        _recompute_total(payment)
        _log(payment, "late_fee_applied", from_status=payment.status, to_status=payment.status,
             actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# REPORTS
# =============================================================================

def payments_for_student(student_id: int) -> list[Payment]:
    return entity_store.find(
        Payment,
        order_by=[Payment.period_year.desc(), Payment.period_month.desc()],
        student_id=student_id,
    )


def revenue_by_method(payments) -> dict[str, int]:
    totals: dict[str, int] = {}
    for p in payments:
        if p.status == STATUS_PAID:
            totals[p.method] = totals.get(p.method, 0) + p.total_cents
    return totals


def monthly_revenue(month: int, year: int) -> dict:
    """Paid revenue charged against one billing period."""
    rows = entity_store.find(Payment, period_month=month, period_year=year, status=STATUS_PAID)
    return {
        "period": {"month": month, "year": year},
        "count": len(rows),
        "total_cents": sum(p.total_cents for p in rows),
        "by_method": revenue_by_method(rows),
    }


def delinquency(*, today: date | None = None) -> dict:
    """Open charges already past their due date, oldest first."""
    today = today or utcnow().date()
    rows = entity_store.find(
        Payment,
        Payment.status.in_((STATUS_PENDING, STATUS_OVERDUE)),
        Payment.due_date < today,
        order_by=[Payment.due_date, Payment.id],
    )
    for p in rows:
        refresh_overdue(p, today=today)
    db.session.commit()
    return {
        "count": len(rows),
        "students": len({p.student_id for p in rows}),
        "total_cents": sum(p.total_cents for p in rows),
        "payments": [
            {
                "payment_id": p.id,
                "student_id": p.student_id,
                "due_date": p.due_date.isoformat(),
                "days_late": p.days_late,
                "total_cents": p.total_cents,
            }
            for p in rows
        ],
    }


def financial_stats(year: int) -> dict:
    """Per-status counts and amounts across a year's billing periods."""
    rows = entity_store.find(Payment, period_year=year)
    by_status: dict[str, dict] = {}
    for p in rows:
        bucket = by_status.setdefault(p.status, {"count": 0, "total_cents": 0})
        bucket["count"] += 1
        bucket["total_cents"] += p.total_cents
    received = by_status.get(STATUS_PAID, {}).get("total_cents", 0)
    billed = sum(b["total_cents"] for s, b in by_status.items() if s != STATUS_CANCELLED)
    return {
        "year": year,
        "by_status": by_status,
        "billed_cents": billed,
        "received_cents": received,
        "collection_pct": round(received / billed * 100, 1) if billed else 0.0,
    }
