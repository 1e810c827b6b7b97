# Overview: Flask API routes for user administration; parses input and returns JSON responses.

# backend/backoffice/routes/users.py
"""
User administration routes.

SECURITY: every route requires ADMIN or higher. SUPERADMIN accounts can
only be created or changed by a SUPERADMIN, and no one can deactivate or
re-role their own account.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import DomainError
from ..services import auth_service
from ..decorators import require_auth, require_role

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role("ADMIN")
def list_users_route():
    """
    List user accounts.

    Query params:
    - include_inactive: "true" to include deactivated users
    - role: SUPERADMIN | ADMIN | STAFF | CUSTOMER (optional)
    """
    try:
        users = auth_service.list_users(
            include_inactive=request.args.get("include_inactive", "").lower() == "true",
            role=request.args.get("role"),
        )
    except DomainError as e:
        return e.to_response()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@users_bp.post("")
@require_auth
@require_role("ADMIN")
def create_user_route():
    """
    Register a new account.

    Request body:
    - email: str (required)
    - name: str (required)
    - password: str (required)
    - role: str (optional, default STAFF)
    """
    try:
        user = auth_service.register_user(request.get_json(silent=True) or {}, actor=g.current_user)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"user": user.to_dict(), "message": "User created successfully"}), 201


@users_bp.get("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def get_user_route(user_id: int):
    try:
        user = auth_service.get_user(user_id)
    except DomainError as e:
        return e.to_response()
    return jsonify({"user": user.to_dict()}), 200


@users_bp.patch("/<int:user_id>/role")
@require_auth
@require_role("ADMIN")
def assign_role_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.assign_role(user_id, data.get("role"), actor=g.current_user)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to change user role")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"user": user.to_dict()}), 200


def _set_active(user_id: int, active: bool):
    try:
        user = auth_service.set_user_active(user_id, active, actor=g.current_user)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to %s user", "activate" if active else "deactivate")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"user": user.to_dict()}), 200


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_role("ADMIN")
def deactivate_user_route(user_id: int):
    """Deactivate the account and revoke all of its sessions."""
    return _set_active(user_id, False)


@users_bp.post("/<int:user_id>/activate")
@require_auth
@require_role("ADMIN")
def activate_user_route(user_id: int):
    return _set_active(user_id, True)
