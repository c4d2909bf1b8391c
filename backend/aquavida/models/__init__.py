# Overview: Model package; re-exports every ORM class so `from aquavida.models import X` works.

from .auth import User, RefreshToken
from .people import (
    Student,
    StudentDocument,
    StudentClassHistory,
    Teacher,
    TeacherCertification,
    TeacherWorkingHours,
)
from .classes import SwimClass, ClassSchedule, ClassEnrollment, WaitlistEntry
from .lessons import Lesson, LessonRosterEntry, Attendance
from .evaluations import Evaluation
from .billing import Plan, Payment, PaymentHistory
from .contracts import Contract, ContractHistory

__all__ = [
    "User",
    "RefreshToken",
    "Student",
    "StudentDocument",
    "StudentClassHistory",
    "Teacher",
    "TeacherCertification",
    "TeacherWorkingHours",
    "SwimClass",
    "ClassSchedule",
    "ClassEnrollment",
    "WaitlistEntry",
    "Lesson",
    "LessonRosterEntry",
    "Attendance",
    "Evaluation",
    "Plan",
    "Payment",
    "PaymentHistory",
    "Contract",
    "ContractHistory",
]
