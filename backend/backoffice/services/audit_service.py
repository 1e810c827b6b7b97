# Overview: Service-layer operations for the audit trail; best-effort, post-commit.

from __future__ import annotations

from flask import current_app, has_request_context, request

from ..errors import NotFoundError
from ..extensions import db
from ..models import AuditLog


def record_audit(
    user_id: int | None,
    action: str,
    description: str,
    resource: str | None = None,
    resource_id: int | str | None = None,
    old_data: dict | None = None,
    new_data: dict | None = None,
) -> AuditLog | None:
    """
    Append an audit row in its own transaction.

    Called only after the business transaction has committed. A failure here
    is rolled back and logged; it never reaches the caller, so the action it
    describes stands.

    action examples:
    - PRODUCT_CREATE
    - STOCK_IN / STOCK_OUT / STOCK_ADJUST / STOCK_DAMAGE
    - SALE_CREATE
    - SALE_STATUS_UPDATE
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            description=description,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            old_data=old_data,
            new_data=new_data,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Audit log write failed for %s", action, exc_info=True)
        return None


def list_audit_logs(
    *,
    user_id: int | None = None,
    action: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    q = db.session.query(AuditLog)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if resource:
        q = q.filter(AuditLog.resource == resource)
    if resource_id is not None:
        q = q.filter(AuditLog.resource_id == str(resource_id))
    return q.order_by(AuditLog.id.desc()).limit(min(500, max(1, limit))).all()


def get_audit_log(log_id: int) -> AuditLog:
    entry = db.session.get(AuditLog, log_id)
    if entry is None:
        raise NotFoundError("Audit log not found")
    return entry
