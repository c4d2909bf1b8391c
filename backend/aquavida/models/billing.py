from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Plan(db.Model):
    """
    Pricing/service template. All money in cents.

    Promotional price applies only while promo_active and today falls
    inside the optional [promo_starts_on, promo_ends_on] window.
    """
    __tablename__ = "plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    plan_type = db.Column(db.String(16), nullable=False)  # monthly, quarterly, semiannual, annual, single, package
    category = db.Column(db.String(16), nullable=False, default="basic")  # basic, intermediate, premium, vip
    modalities = db.Column(db.JSON, nullable=False, default=list)

    price_cents = db.Column(db.Integer, nullable=False)
    promo_price_cents = db.Column(db.Integer, nullable=True)
    promo_active = db.Column(db.Boolean, nullable=False, default=False)
    promo_starts_on = db.Column(db.Date, nullable=True)
    promo_ends_on = db.Column(db.Date, nullable=True)
    promo_description = db.Column(db.String(255), nullable=True)

    duration_months = db.Column(db.Integer, nullable=False, default=1)
    sessions_per_week = db.Column(db.Integer, nullable=False, default=2)
    session_minutes = db.Column(db.Integer, nullable=False, default=45)

    min_age = db.Column(db.Integer, nullable=False, default=0)
    max_age = db.Column(db.Integer, nullable=False, default=100)

    # Limits
    max_students_per_class = db.Column(db.Integer, nullable=False, default=15)
    max_absences_per_month = db.Column(db.Integer, nullable=False, default=4)
    allows_makeup_lessons = db.Column(db.Boolean, nullable=False, default=True)

    # Policies
    allow_freeze = db.Column(db.Boolean, nullable=False, default=True)
    max_freeze_days = db.Column(db.Integer, nullable=False, default=30)
    allow_cancellation = db.Column(db.Boolean, nullable=False, default=True)
    cancellation_notice_days = db.Column(db.Integer, nullable=False, default=30)
    cancellation_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    grace_period_days = db.Column(db.Integer, nullable=False, default=0)

    due_day = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    discontinued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    discontinue_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "plan_type": self.plan_type,
            "category": self.category,
            "modalities": list(self.modalities or []),
            "price_cents": self.price_cents,
            "promo_price_cents": self.promo_price_cents,
            "promo_active": self.promo_active,
            "promo_starts_on": to_iso_date(self.promo_starts_on),
            "promo_ends_on": to_iso_date(self.promo_ends_on),
            "promo_description": self.promo_description,
            "duration_months": self.duration_months,
            "sessions_per_week": self.sessions_per_week,
            "session_minutes": self.session_minutes,
            "min_age": self.min_age,
            "max_age": self.max_age,
            "max_students_per_class": self.max_students_per_class,
            "max_absences_per_month": self.max_absences_per_month,
            "allows_makeup_lessons": self.allows_makeup_lessons,
            "allow_freeze": self.allow_freeze,
            "max_freeze_days": self.max_freeze_days,
            "allow_cancellation": self.allow_cancellation,
            "cancellation_notice_days": self.cancellation_notice_days,
            "cancellation_fee_cents": self.cancellation_fee_cents,
            "grace_period_days": self.grace_period_days,
            "due_day": self.due_day,
            "is_active": self.is_active,
            "discontinued_at": to_utc_z(self.discontinued_at),
            "discontinue_reason": self.discontinue_reason,
        }


class Payment(db.Model):
    """
    One billable charge for a student + plan + billing period.

    LIFECYCLE:
        pending -> paid | overdue | cancelled | under_review
        overdue -> paid | cancelled | under_review
        under_review -> paid | cancelled
        paid: terminal (refunded is reserved for an external refund flow)

    INVARIANT: total_cents == original - discount + late_fee + interest,
    rewritten by every mutating service call.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_student_period", "student_id", "period_year", "period_month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)
    guardian_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    period_month = db.Column(db.Integer, nullable=False)
    period_year = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    original_cents = db.Column(db.Integer, nullable=False)

    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_pct = db.Column(db.Float, nullable=False, default=0.0)
    discount_reason = db.Column(db.String(255), nullable=True)

    late_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    late_fee_pct = db.Column(db.Float, nullable=False, default=0.0)
    late_fee_reason = db.Column(db.String(255), nullable=True)

    interest_cents = db.Column(db.Integer, nullable=False, default=0)
    interest_pct = db.Column(db.Float, nullable=False, default=0.0)  # per month, accrued daily
    days_late = db.Column(db.Integer, nullable=False, default=0)

    total_cents = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.Date, nullable=False, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    method = db.Column(db.String(16), nullable=True)
    method_details = db.Column(db.JSON, nullable=True)

    review_note = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    student = db.relationship("Student", backref=db.backref("payments", lazy=True))
    plan = db.relationship("Plan", backref=db.backref("payments", lazy=True))
    history = db.relationship(
        "PaymentHistory", backref="payment", cascade="all, delete-orphan",
        order_by="PaymentHistory.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "plan_id": self.plan_id,
            "guardian_user_id": self.guardian_user_id,
            "period": {"month": self.period_month, "year": self.period_year},
            "description": self.description,
            "original_cents": self.original_cents,
            "discount": {"cents": self.discount_cents, "pct": self.discount_pct, "reason": self.discount_reason},
            "late_fee": {"cents": self.late_fee_cents, "pct": self.late_fee_pct, "reason": self.late_fee_reason},
            "interest": {"cents": self.interest_cents, "pct": self.interest_pct, "days_late": self.days_late},
            "total_cents": self.total_cents,
            "due_date": to_iso_date(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
            "status": self.status,
            "method": self.method,
            "method_details": self.method_details,
            "review_note": self.review_note,
            "cancel_reason": self.cancel_reason,
            "history": [h.to_dict() for h in self.history],
            "version_id": self.version_id,
        }


class PaymentHistory(db.Model):
    """Append-only audit log of payment status and amount changes."""
    __tablename__ = "payment_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)
    note = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
        }
