# Overview: Record-level authorization predicates, one branch per Role.

"""
Record-level access rules.

Role permissions (roles.py) answer "may this role do X at all"; these
predicates answer "may this user do X to this particular record". Every
predicate branches on every Role member and fails closed on anything else.
"""

from __future__ import annotations

from .roles import Role


def _teacher_id_for(user) -> int | None:
    profile = getattr(user, "teacher_profile", None)
    return profile.id if profile is not None else None


def can_access_student(user, student) -> bool:
    role = Role.parse(user.role)
    if role is Role.ADMIN:
        return True
    if role is Role.TEACHER:
        return True
    if role is Role.GUARDIAN:
        return student.guardian_user_id == user.id
    return False


def can_manage_class(user, swim_class) -> bool:
    role = Role.parse(user.role)
    if role is Role.ADMIN:
        return True
    if role is Role.TEACHER:
        teacher_id = _teacher_id_for(user)
        return teacher_id is not None and teacher_id in (
            swim_class.teacher_id,
            swim_class.substitute_teacher_id,
        )
    if role is Role.GUARDIAN:
        return False
    return False


def can_edit_evaluation(user, evaluation) -> bool:
    """Teachers may only edit evaluations they authored."""
    role = Role.parse(user.role)
    if role is Role.ADMIN:
        return True
    if role is Role.TEACHER:
        return _teacher_id_for(user) == evaluation.teacher_id
    if role is Role.GUARDIAN:
        return False
    return False


def can_view_evaluation(user, evaluation) -> bool:
    role = Role.parse(user.role)
    if role is Role.ADMIN:
        return True
    if role is Role.TEACHER:
        return True
    if role is Role.GUARDIAN:
        student = evaluation.student
        return (
            student is not None
            and student.guardian_user_id == user.id
            and evaluation.status == "sent_to_guardian"
        )
    return False


def can_sign_contract_as_guardian(user, contract) -> bool:
    role = Role.parse(user.role)
    if role is Role.ADMIN:
        return False
    if role is Role.TEACHER:
        return False
    if role is Role.GUARDIAN:
        return contract.guardian_user_id == user.id
    return False
