# Overview: Role and permission decorators for callers exposing the services over HTTP.

from functools import wraps
from flask import g, jsonify

from .permissions import Role, has_permission


def _current_role() -> Role | None:
    user = getattr(g, "current_user", None)
    if user is None or not user.is_active:
        return None
    return Role.parse(user.role)


def require_role(*roles):
    """
    Require the authenticated user (g.current_user) to hold one of roles.

    Authentication itself happens upstream; this only reads g.current_user.
    Returns 401 with no user and 403 with the wrong role.
    """
    allowed = {Role.parse(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = _current_role()
            if role is None:
                return jsonify({"error": "Authentication required"}), 401
            if role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(r.value for r in allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def require_permission(permission_code: str):
    """Require the current user's role to grant permission_code."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = _current_role()
            if role is None:
                return jsonify({"error": "Authentication required"}), 401
            if not has_permission(role, permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
