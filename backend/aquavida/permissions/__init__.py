# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    STUDENT_PERMISSIONS,
    CLASS_PERMISSIONS,
    LESSON_PERMISSIONS,
    EVALUATION_PERMISSIONS,
    FINANCIAL_PERMISSIONS,
    CONTRACT_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import Role, DEFAULT_ROLE_PERMISSIONS, has_permission
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_code,
    describe_role,
)
from .policies import (
    can_access_student,
    can_manage_class,
    can_edit_evaluation,
    can_view_evaluation,
    can_sign_contract_as_guardian,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "STUDENT_PERMISSIONS",
    "CLASS_PERMISSIONS",
    "LESSON_PERMISSIONS",
    "EVALUATION_PERMISSIONS",
    "FINANCIAL_PERMISSIONS",
    "CONTRACT_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "Role",
    "DEFAULT_ROLE_PERMISSIONS",
    "has_permission",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_code",
    "describe_role",
    "can_access_student",
    "can_manage_class",
    "can_edit_evaluation",
    "can_view_evaluation",
    "can_sign_contract_as_guardian",
]
