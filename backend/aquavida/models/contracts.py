from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Contract(db.Model):
    """
    Digital service agreement between guardian and school.

    LIFECYCLE:
        draft -> awaiting_signature -> signed -> active -> suspended | cancelled | expired
        suspended -> active

    INVARIANTS:
    - status reaches active only when both signature blocks are signed
    - content_hash == sha256(canonical JSON of student, plan, clauses, specific_terms)
    """
    __tablename__ = "contracts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    contract_number = db.Column(db.String(16), nullable=False, unique=True)

    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    guardian_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    contract_type = db.Column(db.String(16), nullable=False, default="enrollment")  # enrollment, renewal, transfer
    term_type = db.Column(db.String(16), nullable=False, default="annual")
    term_months = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True, index=True)

    contracting_party = db.Column(db.JSON, nullable=False, default=dict)  # guardian block
    contracted_party = db.Column(db.JSON, nullable=False, default=dict)   # school block
    clauses = db.Column(db.JSON, nullable=False, default=dict)
    specific_terms = db.Column(db.JSON, nullable=False, default=dict)

    guardian_signature = db.Column(db.JSON, nullable=False, default=dict)
    school_signature = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)
    content_hash = db.Column(db.String(64), nullable=False)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    suspend_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    student = db.relationship("Student", backref=db.backref("contracts", lazy=True))
    plan = db.relationship("Plan", backref=db.backref("contracts", lazy=True))
    history = db.relationship(
        "ContractHistory", backref="contract", cascade="all, delete-orphan",
        order_by="ContractHistory.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contract_number": self.contract_number,
            "student_id": self.student_id,
            "guardian_user_id": self.guardian_user_id,
            "plan_id": self.plan_id,
            "contract_type": self.contract_type,
            "term_type": self.term_type,
            "term_months": self.term_months,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "contracting_party": self.contracting_party,
            "contracted_party": self.contracted_party,
            "clauses": self.clauses,
            "specific_terms": self.specific_terms,
            "guardian_signature": {k: v for k, v in (self.guardian_signature or {}).items() if k != "signature"},
            "school_signature": {k: v for k, v in (self.school_signature or {}).items() if k != "signature"},
            "status": self.status,
            "content_hash": self.content_hash,
            "activated_at": to_utc_z(self.activated_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "suspend_reason": self.suspend_reason,
            "history": [h.to_dict() for h in self.history],
            "version_id": self.version_id,
        }


class ContractHistory(db.Model):
    """Append-only contract audit trail."""
    __tablename__ = "contract_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=True)
    note = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "ip_address": self.ip_address,
        }
