from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class SwimClass(db.Model):
    """
    Recurring group ("turma") taught by one primary teacher on a weekly schedule.

    INVARIANTS:
    - number of ClassEnrollment rows <= capacity (checked under a row lock,
      version_id bumped on every roster change)
    - every ClassSchedule slot has end_time > start_time

    Closing a class (is_active=False) keeps its roster for history.
    """
    __tablename__ = "swim_classes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    level = db.Column(db.String(16), nullable=False, index=True)
    modality = db.Column(db.String(32), nullable=False, index=True)
    min_age = db.Column(db.Integer, nullable=False)
    max_age = db.Column(db.Integer, nullable=False)

    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)
    substitute_teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=True, index=True)

    capacity = db.Column(db.Integer, nullable=False)
    pool = db.Column(db.String(32), nullable=True)
    lane = db.Column(db.Integer, nullable=True)

    # Configuration flags
    allow_waitlist = db.Column(db.Boolean, nullable=False, default=True)
    notify_guardians = db.Column(db.Boolean, nullable=False, default=True)
    require_medical_certificate = db.Column(db.Boolean, nullable=False, default=False)
    flexible_age = db.Column(db.Boolean, nullable=False, default=False)

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    close_reason = db.Column(db.String(255), nullable=True)

    # Denormalized stats (refreshed by class_service.update_class_stats)
    total_lessons = db.Column(db.Integer, nullable=False, default=0)
    average_attendance = db.Column(db.Float, nullable=False, default=0.0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    teacher = db.relationship("Teacher", foreign_keys=[teacher_id], backref=db.backref("classes", lazy=True))
    substitute_teacher = db.relationship(
        "Teacher", foreign_keys=[substitute_teacher_id],
        backref=db.backref("substitute_classes", lazy=True),
    )
    slots = db.relationship(
        "ClassSchedule", backref="swim_class", cascade="all, delete-orphan",
        order_by="ClassSchedule.id", lazy=True,
    )
    enrollments = db.relationship(
        "ClassEnrollment", backref="swim_class", cascade="all, delete-orphan",
        order_by="ClassEnrollment.id", lazy=True,
    )
    waitlist = db.relationship(
        "WaitlistEntry", backref="swim_class", cascade="all, delete-orphan",
        order_by="WaitlistEntry.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "modality": self.modality,
            "min_age": self.min_age,
            "max_age": self.max_age,
            "teacher_id": self.teacher_id,
            "substitute_teacher_id": self.substitute_teacher_id,
            "capacity": self.capacity,
            "pool": self.pool,
            "lane": self.lane,
            "allow_waitlist": self.allow_waitlist,
            "notify_guardians": self.notify_guardians,
            "require_medical_certificate": self.require_medical_certificate,
            "flexible_age": self.flexible_age,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "is_active": self.is_active,
            "closed_at": to_utc_z(self.closed_at),
            "close_reason": self.close_reason,
            "total_lessons": self.total_lessons,
            "average_attendance": self.average_attendance,
            "slots": [s.to_dict() for s in self.slots],
            "student_ids": [e.student_id for e in self.enrollments],
            "waitlist": [w.to_dict() for w in self.waitlist],
            "version_id": self.version_id,
        }


class ClassSchedule(db.Model):
    """Weekly time slot. weekday: 0=Sunday .. 6=Saturday."""
    __tablename__ = "class_schedules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False, index=True)
    weekday = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # HH:MM
    end_time = db.Column(db.String(5), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "weekday": self.weekday,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
        }


class ClassEnrollment(db.Model):
    __tablename__ = "class_enrollments"
    __table_args__ = (
        db.UniqueConstraint("class_id", "student_id", name="uq_class_enrollments_class_student"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    student = db.relationship("Student", backref=db.backref("enrollments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "class_id": self.class_id,
            "student_id": self.student_id,
            "enrolled_at": to_utc_z(self.enrolled_at),
        }


class WaitlistEntry(db.Model):
    """
    Waitlist seat. Candidate order: priority DESC, joined_at ASC.
    """
    __tablename__ = "class_waitlist"
    __table_args__ = (
        db.UniqueConstraint("class_id", "student_id", name="uq_class_waitlist_class_student"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    priority = db.Column(db.Integer, nullable=False, default=1)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False)

    student = db.relationship("Student", backref=db.backref("waitlist_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "priority": self.priority,
            "joined_at": to_utc_z(self.joined_at),
        }
