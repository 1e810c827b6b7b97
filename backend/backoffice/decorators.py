# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.auth_service import ROLE_RANK, has_min_role


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user (the authenticated User) and g.session_token
    (the plaintext token, for logout).

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "UNAUTHENTICATED", "message": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "UNAUTHENTICATED", "message": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(min_role: str):
    """
    Require the authenticated user to hold min_role or a higher one.

    Role order: CUSTOMER < STAFF < ADMIN < SUPERADMIN.
    """
    if min_role not in ROLE_RANK:
        raise ValueError(f"Unknown role: {min_role}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not hasattr(g, "current_user"):
                return jsonify({"error": "UNAUTHENTICATED", "message": "Authentication required"}), 401

            if not has_min_role(g.current_user, min_role):
                return jsonify({
                    "error": "FORBIDDEN",
                    "message": f"Requires role {min_role} or higher",
                    "required_role": min_role,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
