# Overview: Permission lookups used by the CLI and decorators.

from .definitions import PERMISSION_DEFINITIONS
from .roles import DEFAULT_ROLE_PERMISSIONS, Role


_BY_CODE = {perm[0]: perm for perm in PERMISSION_DEFINITIONS}


def get_all_permission_codes() -> list[str]:
    return list(_BY_CODE)


def get_permissions_by_category(category) -> list[tuple]:
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code: str) -> dict | None:
    perm = _BY_CODE.get(code)
    if perm is None:
        return None
    code, name, description, category = perm
    return {"code": code, "name": name, "description": description, "category": category}


def validate_permission_code(code: str) -> bool:
    return code in _BY_CODE


def describe_role(role) -> list[dict]:
    """Permission definitions granted to a role, sorted by category then code."""
    codes = DEFAULT_ROLE_PERMISSIONS[Role.parse(role)]
    rows = [get_permission_definition(code) for code in codes]
    return sorted(rows, key=lambda r: (r["category"], r["code"]))
