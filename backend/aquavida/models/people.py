from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Student(db.Model):
    """
    Enrolled swimmer.

    Age is never stored; see student_service.compute_age.
    The current class is not stored either: it is derived from
    ClassEnrollment, so the student/class link has a single owner.
    """
    __tablename__ = "students"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, index=True)
    birth_date = db.Column(db.Date, nullable=False)
    gender = db.Column(db.String(1), nullable=True)  # M, F
    cpf = db.Column(db.String(14), nullable=True, unique=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.JSON, nullable=True)

    # Guardian: optional login account plus the contact block printed on contracts
    guardian_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    guardian = db.Column(db.JSON, nullable=True)  # name, cpf, phone, email, relationship

    swim_level = db.Column(db.String(16), nullable=False, default="beginner", index=True)
    medical_restrictions = db.Column(db.Text, nullable=True)

    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    inactivation_reason = db.Column(db.String(255), nullable=True)
    inactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    guardian_user = db.relationship("User", backref=db.backref("students", lazy=True))
    plan = db.relationship("Plan", backref=db.backref("students", lazy=True))
    documents = db.relationship(
        "StudentDocument", backref="student", cascade="all, delete-orphan",
        order_by="StudentDocument.id", lazy=True,
    )
    class_history = db.relationship(
        "StudentClassHistory", backref="student", cascade="all, delete-orphan",
        order_by="StudentClassHistory.id", lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "birth_date": to_iso_date(self.birth_date),
            "gender": self.gender,
            "cpf": self.cpf,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "guardian_user_id": self.guardian_user_id,
            "guardian": self.guardian,
            "swim_level": self.swim_level,
            "medical_restrictions": self.medical_restrictions,
            "plan_id": self.plan_id,
            "is_active": self.is_active,
            "inactivation_reason": self.inactivation_reason,
            "inactivated_at": to_utc_z(self.inactivated_at),
            "created_at": to_utc_z(self.created_at),
        }


class StudentDocument(db.Model):
    __tablename__ = "student_documents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    doc_type = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(512), nullable=False)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "doc_type": self.doc_type,
            "name": self.name,
            "url": self.url,
            "uploaded_at": to_utc_z(self.uploaded_at),
        }


class StudentClassHistory(db.Model):
    """Append-only log of class changes."""
    __tablename__ = "student_class_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    from_class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=True)
    to_class_id = db.Column(db.Integer, db.ForeignKey("swim_classes.id"), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "from_class_id": self.from_class_id,
            "to_class_id": self.to_class_id,
            "reason": self.reason,
            "changed_by_user_id": self.changed_by_user_id,
            "changed_at": to_utc_z(self.changed_at),
        }


class Teacher(db.Model):
    """
    Teaching staff: person + employment record.

    Terminated teachers are kept (is_active=False) so historical lessons and
    evaluations keep their author.
    """
    __tablename__ = "teachers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, unique=True)
    name = db.Column(db.String(160), nullable=False)
    cpf = db.Column(db.String(14), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    birth_date = db.Column(db.Date, nullable=True)

    specialties = db.Column(db.JSON, nullable=False, default=list)
    employment_type = db.Column(db.String(16), nullable=False, default="clt")  # clt, pj, freelancer, internship
    hired_on = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    terminated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    termination_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User", backref=db.backref("teacher_profile", uselist=False, lazy=True))
    certifications = db.relationship(
        "TeacherCertification", backref="teacher", cascade="all, delete-orphan",
        order_by="TeacherCertification.id", lazy=True,
    )
    working_hours = db.relationship(
        "TeacherWorkingHours", backref="teacher", cascade="all, delete-orphan",
        order_by="TeacherWorkingHours.weekday", lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "cpf": self.cpf,
            "email": self.email,
            "phone": self.phone,
            "birth_date": to_iso_date(self.birth_date),
            "specialties": list(self.specialties or []),
            "employment_type": self.employment_type,
            "hired_on": to_iso_date(self.hired_on),
            "is_active": self.is_active,
            "terminated_at": to_utc_z(self.terminated_at),
            "termination_reason": self.termination_reason,
            "working_hours": [w.to_dict() for w in self.working_hours],
        }


class TeacherCertification(db.Model):
    __tablename__ = "teacher_certifications"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)
    institution = db.Column(db.String(160), nullable=False)
    obtained_on = db.Column(db.Date, nullable=False)
    expires_on = db.Column(db.Date, nullable=True)
    number = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "name": self.name,
            "institution": self.institution,
            "obtained_on": to_iso_date(self.obtained_on),
            "expires_on": to_iso_date(self.expires_on),
            "number": self.number,
        }


class TeacherWorkingHours(db.Model):
    """One row per weekday (0=Sunday) in the teacher's contracted grid."""
    __tablename__ = "teacher_working_hours"
    __table_args__ = (
        db.UniqueConstraint("teacher_id", "weekday", name="uq_teacher_hours_weekday"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)
    weekday = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    start_time = db.Column(db.String(5), nullable=True)  # HH:MM
    end_time = db.Column(db.String(5), nullable=True)

    def to_dict(self) -> dict:
        return {
            "weekday": self.weekday,
            "is_active": self.is_active,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }
