from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Lesson(db.Model):
    """
    One dated occurrence of a SwimClass.

    LIFECYCLE:
        scheduled -> in_progress -> completed
        scheduled | in_progress -> cancelled
        scheduled | in_progress -> postponed (reschedule_date set)

    Attendance statistics are frozen into columns whenever the roster
    changes and when the lesson is finished.
    """
    __tablename__ = "lessons"
    __table_args__ = (
        db.Index("ix_lessons_teacher_date", "teacher_id", "lesson_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)

    lesson_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="scheduled", index=True)

    # Lesson plan: objectives, activities, equipment
    content = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    cancellation_reason = db.Column(db.String(32), nullable=True)
    cancellation_description = db.Column(db.Text, nullable=True)
    reschedule_date = db.Column(db.Date, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Frozen attendance statistics
    total_students = db.Column(db.Integer, nullable=False, default=0)
    present_count = db.Column(db.Integer, nullable=False, default=0)
    absent_count = db.Column(db.Integer, nullable=False, default=0)
    attendance_pct = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    swim_class = db.relationship("SwimClass", backref=db.backref("lessons", lazy=True))
    teacher = db.relationship("Teacher", backref=db.backref("lessons", lazy=True))
    roster = db.relationship(
        "LessonRosterEntry", backref="lesson", cascade="all, delete-orphan",
        order_by="LessonRosterEntry.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "class_id": self.class_id,
            "teacher_id": self.teacher_id,
            "lesson_date": to_iso_date(self.lesson_date),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "content": self.content,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "cancellation_description": self.cancellation_description,
            "reschedule_date": to_iso_date(self.reschedule_date),
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "stats": {
                "total_students": self.total_students,
                "present": self.present_count,
                "absent": self.absent_count,
                "attendance_pct": self.attendance_pct,
            },
            "roster": [r.to_dict() for r in self.roster],
            "version_id": self.version_id,
        }


class LessonRosterEntry(db.Model):
    """Per-student attendance line embedded in a lesson."""
    __tablename__ = "lesson_roster"
    __table_args__ = (
        db.UniqueConstraint("lesson_id", "student_id", name="uq_lesson_roster_lesson_student"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey("lessons.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="absent")
    arrival_time = db.Column(db.String(5), nullable=True)
    note = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "status": self.status,
            "arrival_time": self.arrival_time,
            "note": self.note,
        }


class Attendance(db.Model):
    """
    Normalized attendance fact, exactly one per (student, lesson).

    Mirrors the lesson roster for reporting; also carries absence
    justification and behavioural observations.
    """
    __tablename__ = "attendance"
    __table_args__ = (
        db.UniqueConstraint("student_id", "lesson_id", name="uq_attendance_student_lesson"),
        db.Index("ix_attendance_class_date", "class_id", "lesson_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey("lessons.id"), nullable=False, index=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False)
    lesson_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False)
    arrival_time = db.Column(db.String(5), nullable=True)
    note = db.Column(db.Text, nullable=True)

    justification = db.Column(db.JSON, nullable=True)   # reason, description, document_url, submitted_at
    observations = db.Column(db.JSON, nullable=True)    # behavior, participation, progress, notes

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "lesson_id": self.lesson_id,
            "class_id": self.class_id,
            "lesson_date": to_iso_date(self.lesson_date),
            "status": self.status,
            "arrival_time": self.arrival_time,
            "note": self.note,
            "justification": self.justification,
            "observations": self.observations,
            "recorded_by_user_id": self.recorded_by_user_id,
        }
