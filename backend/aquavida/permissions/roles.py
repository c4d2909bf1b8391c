# Overview: Closed role set and the default role -> permission table.

from __future__ import annotations

from enum import Enum

from .definitions import PERMISSION_DEFINITIONS


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    GUARDIAN = "guardian"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown role '{value}'. Must be one of: {', '.join(r.value for r in cls)}")


DEFAULT_ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(perm[0] for perm in PERMISSION_DEFINITIONS),
    Role.TEACHER: frozenset({
        "VIEW_STUDENTS",
        "VIEW_CLASSES",
        "VIEW_LESSONS",
        "MANAGE_LESSONS",
        "MARK_ATTENDANCE",
        "VIEW_EVALUATIONS",
        "MANAGE_EVALUATIONS",
    }),
    Role.GUARDIAN: frozenset({
        "VIEW_STUDENTS",
        "VIEW_LESSONS",
        "JUSTIFY_ABSENCE",
        "VIEW_EVALUATIONS",
        "VIEW_PAYMENTS",
        "VIEW_CONTRACTS",
        "SIGN_AS_GUARDIAN",
    }),
}


def _check_role_table() -> None:
    known = {perm[0] for perm in PERMISSION_DEFINITIONS}
    missing_roles = set(Role) - set(DEFAULT_ROLE_PERMISSIONS)
    if missing_roles:
        raise RuntimeError(f"Roles without a permission set: {sorted(r.value for r in missing_roles)}")
    for role, codes in DEFAULT_ROLE_PERMISSIONS.items():
        unknown = codes - known
        if unknown:
            raise RuntimeError(f"Role {role.value} references unknown permissions: {sorted(unknown)}")


_check_role_table()


def has_permission(role, code: str) -> bool:
    return code in DEFAULT_ROLE_PERMISSIONS[Role.parse(role)]
