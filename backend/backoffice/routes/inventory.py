# backend/backoffice/routes/inventory.py
"""
Inventory ledger routes.

SECURITY: All routes require authentication.
- Stock in / stock out / damage require STAFF or higher
- Adjustments and ledger verification require ADMIN or higher

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive.
"""
from flask import Blueprint, current_app, g, request

from ..errors import DomainError, ValidationError
from ..services import inventory_service
from ..validation import parse_int, parse_optional_datetime, parse_optional_int
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_MOVE_FIELDS = {"product_id", "quantity", "reason"}


def _movement_payload(allowed: set[str]) -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for k in payload:
        if k not in allowed:
            raise ValidationError(f"Field not allowed: {k}")
    missing = [f for f in ("product_id", "quantity") if payload.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    payload["product_id"] = parse_int(payload["product_id"], "product_id")
    reason = payload.get("reason")
    payload["reason"] = str(reason).strip()[:255] if reason else None
    return payload


def _log_filters() -> dict:
    return {
        "product_id": parse_optional_int(request.args.get("product_id"), "product_id"),
        "movement_type": request.args.get("type") or None,
        "performed_by_id": parse_optional_int(request.args.get("performed_by_id"), "performed_by_id"),
        "sale_id": parse_optional_int(request.args.get("sale_id"), "sale_id"),
        "start": parse_optional_datetime(request.args.get("start"), "start"),
        "end": parse_optional_datetime(request.args.get("end"), "end"),
    }


@inventory_bp.post("/stock-in")
@require_auth
@require_role("STAFF")
def stock_in_route():
    """
    Receive stock.

    Body: {product_id, quantity, reason?, cost_price?}
    """
    try:
        payload = _movement_payload(STOCK_MOVE_FIELDS | {"cost_price"})
        result = inventory_service.stock_in(
            payload["product_id"],
            payload["quantity"],
            performed_by_id=g.current_user.id,
            reason=payload["reason"],
            cost_price=payload.get("cost_price"),
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to record stock in")
        return {"error": "Internal server error"}, 500
    return result.to_dict(), 200


@inventory_bp.post("/stock-out")
@require_auth
@require_role("STAFF")
def stock_out_route():
    try:
        payload = _movement_payload(STOCK_MOVE_FIELDS)
        result = inventory_service.stock_out(
            payload["product_id"],
            payload["quantity"],
            performed_by_id=g.current_user.id,
            reason=payload["reason"],
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to record stock out")
        return {"error": "Internal server error"}, 500
    return result.to_dict(), 200


@inventory_bp.post("/damage")
@require_auth
@require_role("STAFF")
def damage_route():
    try:
        payload = _movement_payload(STOCK_MOVE_FIELDS)
        result = inventory_service.record_damage(
            payload["product_id"],
            payload["quantity"],
            performed_by_id=g.current_user.id,
            reason=payload["reason"],
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to record damage")
        return {"error": "Internal server error"}, 500
    return result.to_dict(), 200


@inventory_bp.post("/adjust")
@require_auth
@require_role("ADMIN")
def adjust_route():
    """
    Set stock to a counted value.

    Body: {product_id, quantity (the target on-hand count), reason?}
    """
    try:
        payload = _movement_payload(STOCK_MOVE_FIELDS)
        result = inventory_service.adjust_stock(
            payload["product_id"],
            payload["quantity"],
            performed_by_id=g.current_user.id,
            reason=payload["reason"],
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500
    return result.to_dict(), 200


@inventory_bp.get("/logs")
@require_auth
@require_role("STAFF")
def list_logs_route():
    """
    Query params: product_id, type, performed_by_id, sale_id, start, end, page, per_page
    """
    try:
        return inventory_service.list_inventory_logs(
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
            **_log_filters(),
        )
    except DomainError as e:
        return e.to_response()


@inventory_bp.get("/logs/<int:log_id>")
@require_auth
@require_role("STAFF")
def get_log_route(log_id: int):
    try:
        log = inventory_service.get_inventory_log(log_id)
    except DomainError as e:
        return e.to_response()
    return {"log": log.to_dict(include_product=True)}


@inventory_bp.get("/summary")
@require_auth
@require_role("STAFF")
def summary_route():
    try:
        return {"summary": inventory_service.movement_summary(**_log_filters())}
    except DomainError as e:
        return e.to_response()


@inventory_bp.get("/low-stock")
@require_auth
@require_role("STAFF")
def low_stock_route():
    products = inventory_service.low_stock_products()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@inventory_bp.get("/verify")
@require_auth
@require_role("ADMIN")
def verify_route():
    try:
        product_id = parse_optional_int(request.args.get("product_id"), "product_id")
    except DomainError as e:
        return e.to_response()
    problems = inventory_service.verify_ledger(product_id)
    return {"ok": not problems, "problems": problems}
