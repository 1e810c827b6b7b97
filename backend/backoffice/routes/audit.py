# Overview: Flask API routes for the audit trail; read-only, admin access.

# backend/backoffice/routes/audit.py
from flask import Blueprint, jsonify, request

from ..errors import DomainError
from ..services import audit_service
from ..decorators import require_auth, require_role


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_role("ADMIN")
def list_audit_logs_route():
    """Newest first. Filters: user_id, action, resource, resource_id, limit (max 500)."""
    logs = audit_service.list_audit_logs(
        user_id=request.args.get("user_id", type=int),
        action=request.args.get("action") or None,
        resource=request.args.get("resource") or None,
        resource_id=request.args.get("resource_id") or None,
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"items": [entry.to_dict() for entry in logs], "count": len(logs)}), 200


@audit_bp.get("/<int:log_id>")
@require_auth
@require_role("ADMIN")
def get_audit_log_route(log_id: int):
    try:
        entry = audit_service.get_audit_log(log_id)
    except DomainError as e:
        return e.to_response()
    return jsonify({"audit_log": entry.to_dict()}), 200
