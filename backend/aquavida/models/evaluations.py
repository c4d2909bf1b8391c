from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Evaluation(db.Model):
    """
    Periodic pedagogical assessment of one student by one teacher.

    LIFECYCLE: draft -> finalized -> sent_to_guardian

    The three averages and the label are frozen on finalize. Once sent to
    the guardian the row is read-only (only viewed_at may change).
    """
    __tablename__ = "evaluations"
    __table_args__ = (
        db.Index("ix_evaluations_student_date", "student_id", "evaluated_on"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False, index=True)

    period = db.Column(db.String(16), nullable=False)  # monthly, bimonthly, quarterly, semiannual, annual
    evaluated_on = db.Column(db.Date, nullable=False)

    # Sub-scores 0..10 (None = not assessed)
    technique = db.Column(db.JSON, nullable=False, default=dict)   # breathing, floating, propulsion, coordination, endurance
    strokes = db.Column(db.JSON, nullable=False, default=dict)     # crawl/backstroke/breaststroke/butterfly -> {level, score}
    behavior = db.Column(db.JSON, nullable=False, default=dict)    # discipline, participation, relationships, dedication

    goals = db.Column(db.Text, nullable=True)
    recommendations = db.Column(db.Text, nullable=True)
    comments = db.Column(db.Text, nullable=True)

    technical_average = db.Column(db.Float, nullable=True)
    behavioral_average = db.Column(db.Float, nullable=True)
    overall_average = db.Column(db.Float, nullable=True)
    label = db.Column(db.String(16), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    student = db.relationship("Student", backref=db.backref("evaluations", lazy=True))
    teacher = db.relationship("Teacher", backref=db.backref("evaluations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "teacher_id": self.teacher_id,
            "class_id": self.class_id,
            "period": self.period,
            "evaluated_on": to_iso_date(self.evaluated_on),
            "technique": self.technique,
            "strokes": self.strokes,
            "behavior": self.behavior,
            "goals": self.goals,
            "recommendations": self.recommendations,
            "comments": self.comments,
            "technical_average": self.technical_average,
            "behavioral_average": self.behavioral_average,
            "overall_average": self.overall_average,
            "label": self.label,
            "status": self.status,
            "finalized_at": to_utc_z(self.finalized_at),
            "sent_at": to_utc_z(self.sent_at),
            "viewed_at": to_utc_z(self.viewed_at),
            "version_id": self.version_id,
        }
