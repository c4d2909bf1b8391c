from datetime import date, datetime

import pytest

from aquavida.errors import AlreadyCancelledError, DuplicateError, InvalidTransitionError, ValidationError
from aquavida.services import payment_service, student_service
from aquavida.services.payment_service import PaymentSnapshot, compute_total, due_date_for, validate_method_details


@pytest.fixture
def charge(make_student, plan):
    student = make_student()
    return payment_service.create_payment(
        {"student_id": student.id, "plan_id": plan.id, "period_month": 3, "period_year": 2025},
        today=date(2025, 3, 1),
    )


# =============================================================================
# PURE AMOUNTS
# =============================================================================

def test_compute_total_examples():
    assert compute_total(PaymentSnapshot(20000)) == 20000
    assert compute_total(PaymentSnapshot(20000, discount_pct=10.0)) == 18000
    assert compute_total(PaymentSnapshot(20000, discount_cents=500, discount_pct=50.0)) == 19500
    assert compute_total(PaymentSnapshot(20000, late_fee_pct=2.0)) == 20400
    # 1% per month accrued over 15 days
    assert compute_total(PaymentSnapshot(20000, interest_pct=1.0, days_late=15)) == 20100


def test_compute_total_rounds_half_up():
    # 101 - 50.5
    assert compute_total(PaymentSnapshot(101, discount_pct=50.0)) == 51


def test_compute_total_is_idempotent():
    snap = PaymentSnapshot(12345, discount_pct=7.5, late_fee_cents=300, interest_pct=1.0, days_late=9)
    assert compute_total(snap) == compute_total(snap)


def test_due_date_is_clamped():
    assert due_date_for(2025, 2, 31) == date(2025, 2, 28)
    assert due_date_for(2024, 2, 30) == date(2024, 2, 29)
    assert due_date_for(2025, 3, 10) == date(2025, 3, 10)


def test_method_details():
    assert validate_method_details("credit_card", {"brand": "visa", "last_four": "4242"})["installments"] == 1
    assert validate_method_details("cash", None) == {}
    with pytest.raises(ValidationError):
        validate_method_details("credit_card", {"brand": "visa"})
    with pytest.raises(ValidationError):
        validate_method_details("credit_card", {"brand": "visa", "last_four": "4242", "installments": 13})
    with pytest.raises(ValidationError):
        validate_method_details("debit_card", {"brand": "visa", "last_four": "42a2"})
    with pytest.raises(ValidationError):
        validate_method_details("cash", {"bank": "001"})
    with pytest.raises(ValidationError):
        validate_method_details("cheque", {})


# =============================================================================
# CREATION
# =============================================================================

def test_create_payment_defaults(charge, plan):
    assert charge.due_date == date(2025, 3, 10)
    assert charge.original_cents == 20000
    assert charge.total_cents == 20000
    assert charge.status == "pending"
    assert charge.description == "Kids 2x 03/2025"
    assert [h.action for h in charge.history] == ["created"]


def test_duplicate_charge_for_period(charge, plan):
    with pytest.raises(DuplicateError):
        payment_service.create_payment(
            {"student_id": charge.student_id, "plan_id": plan.id, "period_month": 3, "period_year": 2025},
        )


def test_cancelled_charge_can_be_reissued(charge, plan):
    payment_service.cancel(charge.id, "wrong amount")
    again = payment_service.create_payment(
        {"student_id": charge.student_id, "plan_id": plan.id, "period_month": 3, "period_year": 2025,
         "original_cents": 18000},
    )
    assert again.total_cents == 18000


def test_create_uses_promotional_price(make_student, plan):
    plan.promo_price_cents = 15000
    plan.promo_active = True
    plan.promo_starts_on = date(2025, 3, 1)
    plan.promo_ends_on = date(2025, 3, 31)
    payment = payment_service.create_payment(
        {"student_id": make_student().id, "plan_id": plan.id, "period_month": 3, "period_year": 2025},
        today=date(2025, 3, 2),
    )
    assert payment.original_cents == 15000


def test_bulk_charges(make_student, plan):
    billed, inactive, charged = make_student(), make_student(), make_student()
    student_service.inactivate(inactive.id, "paused")
    payment_service.create_payment(
        {"student_id": charged.id, "plan_id": plan.id, "period_month": 4, "period_year": 2025},
    )

    result = payment_service.generate_bulk_charges(4, 2025, plan.id, [billed.id, inactive.id, charged.id])

    assert len(result["created"]) == 1
    assert result["skipped_inactive"] == [inactive.id]
    assert result["skipped_existing"] == [charged.id]
    assert [p.period_month for p in payment_service.payments_for_student(billed.id)] == [4]


def test_bulk_charges_default_to_active_students_on_plan(make_student, plan):
    students = [make_student() for _ in range(3)]
    student_service.inactivate(students[2].id, "paused")
    result = payment_service.generate_bulk_charges(5, 2025, plan.id)
    assert len(result["created"]) == 2
    assert result["skipped_inactive"] == []


# =============================================================================
# OVERDUE
# =============================================================================

def test_refresh_overdue(charge):
    payment = payment_service.load_payment(charge.id, today=date(2025, 3, 25))

    assert payment.status == "overdue"
    assert payment.days_late == 15
    assert payment.interest_pct == 1.0
    assert payment.total_cents == 20100
    assert [h.action for h in payment.history] == ["created", "marked_overdue"]


def test_refresh_is_noop_before_due(charge):
    assert payment_service.refresh_overdue(charge, today=date(2025, 3, 10)) is False
    assert charge.status == "pending"


def test_refresh_all_overdue(charge):
    assert payment_service.refresh_all_overdue(today=date(2025, 3, 20)) == 1
    assert charge.status == "overdue"
    assert payment_service.refresh_all_overdue(today=date(2025, 3, 20)) == 0


def test_delinquency(charge):
    report = payment_service.delinquency(today=date(2025, 4, 9))
    assert report["count"] == 1
    assert report["payments"][0]["days_late"] == 30
    assert report["total_cents"] == 20200


# =============================================================================
# TRANSITIONS
# =============================================================================

def test_confirm_settles_interest(charge):
    payment_service.confirm_payment(
        charge.id, "pix", {"txid": "E123"}, now=datetime(2025, 3, 16, 10, 0),
    )
    assert charge.status == "paid"
    assert charge.method == "pix"
    assert charge.days_late == 6
    assert charge.total_cents == 20040
    assert [h.action for h in charge.history] == ["created", "marked_overdue", "paid"]

    # days_late freezes once paid
    payment_service.load_payment(charge.id, today=date(2025, 6, 1))
    assert charge.days_late == 6


def test_paid_is_terminal(charge):
    payment_service.confirm_payment(charge.id, "cash", now=datetime(2025, 3, 5, 9, 0))
    with pytest.raises(InvalidTransitionError):
        payment_service.apply_discount(charge.id, amount_cents=1000, reason="late goodwill")
    with pytest.raises(InvalidTransitionError):
        payment_service.cancel(charge.id, "refund")
    with pytest.raises(InvalidTransitionError):
        payment_service.confirm_payment(charge.id, "cash")
    assert charge.total_cents == 20000


def test_cancel_twice(charge):
    payment_service.cancel(charge.id, "duplicate")
    with pytest.raises(AlreadyCancelledError):
        payment_service.cancel(charge.id, "again")
    with pytest.raises(InvalidTransitionError):
        payment_service.apply_late_fee(charge.id, percent=2.0)


def test_cancel_requires_reason(charge):
    with pytest.raises(ValidationError):
        payment_service.cancel(charge.id, "")


def test_review_then_confirm(charge):
    payment_service.flag_for_review(charge.id, "guardian disputes amount")
    assert charge.status == "under_review"
    with pytest.raises(InvalidTransitionError):
        payment_service.flag_for_review(charge.id, "again")
    payment_service.confirm_payment(charge.id, "transfer", {"bank": "001"}, now=datetime(2025, 3, 8, 9, 0))
    assert charge.status == "paid"


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def test_apply_discount(charge):
    payment_service.apply_discount(charge.id, percent=10, reason="sibling", today=date(2025, 3, 5))
    assert charge.total_cents == 18000
    payment_service.apply_discount(charge.id, amount_cents=2500, reason="sibling", today=date(2025, 3, 5))
    assert charge.discount_pct == 0.0
    assert charge.total_cents == 17500
    assert [h.action for h in charge.history][-2:] == ["discount_applied", "discount_applied"]


def test_discount_needs_exactly_one_kind(charge):
    with pytest.raises(ValidationError):
        payment_service.apply_discount(charge.id)
    with pytest.raises(ValidationError):
        payment_service.apply_discount(charge.id, amount_cents=100, percent=5)


def test_discount_cannot_exceed_original(charge):
    with pytest.raises(ValidationError):
        payment_service.apply_discount(charge.id, amount_cents=20001)


def test_apply_late_fee(charge):
    payment_service.apply_late_fee(charge.id, percent=2.0, reason="contract penalty", today=date(2025, 3, 5))
    assert charge.total_cents == 20400


def test_discount_on_past_due_charge_accrues_interest(charge):
    # due 2025-03-10, 15 days late at 1% per month: 100 cents of interest
    payment_service.apply_discount(charge.id, amount_cents=1000, reason="goodwill", today=date(2025, 3, 25))

    assert charge.status == "overdue"
    assert charge.days_late == 15
    assert charge.total_cents == 19100
    assert [h.action for h in charge.history] == ["created", "marked_overdue", "discount_applied"]
    assert charge.history[-1].from_status == "overdue"


def test_late_fee_on_past_due_charge_accrues_interest(charge):
    payment_service.apply_late_fee(charge.id, percent=2.0, reason="contract penalty", today=date(2025, 3, 25))

    assert charge.status == "overdue"
    assert charge.total_cents == 20500


# =============================================================================
# REPORTS
# =============================================================================

def test_monthly_revenue(make_student, plan):
    ids = []
    for _ in range(3):
        ids.append(payment_service.create_payment(
            {"student_id": make_student().id, "plan_id": plan.id, "period_month": 3, "period_year": 2025},
            today=date(2025, 3, 1),
        ).id)
    payment_service.confirm_payment(ids[0], "pix", now=datetime(2025, 3, 5, 9, 0))
    payment_service.confirm_payment(ids[1], "cash", now=datetime(2025, 3, 6, 9, 0))

    report = payment_service.monthly_revenue(3, 2025)

    assert report["count"] == 2
    assert report["total_cents"] == 40000
    assert report["by_method"] == {"pix": 20000, "cash": 20000}

    stats = payment_service.financial_stats(2025)
    assert stats["by_status"]["paid"]["count"] == 2
    assert stats["billed_cents"] == 60000
    assert stats["collection_pct"] == 66.7
