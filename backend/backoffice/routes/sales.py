# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/backoffice/routes/sales.py
"""Sales API routes with role enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import DomainError
from ..services import sales_service
from ..services import sale_lifecycle_service
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_detail(sale) -> dict:
    data = sale.to_dict()
    data["inventory_logs"] = [log.to_dict() for log in sale.inventory_logs]
    return data


@sales_bp.post("")
@require_auth
@require_role("STAFF")
def create_sale_route():
    """
    Create a completed sale and deduct its stock.

    Body: {
        items: [{product_id, quantity, unit_price?}],
        payment_method, customer_id?, tax_amount?, discount?, notes?
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.create_sale(
            staff_id=g.current_user.id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            customer_id=data.get("customer_id"),
            tax_amount=data.get("tax_amount"),
            discount=data.get("discount"),
            notes=data.get("notes"),
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": _sale_detail(sale)}), 201


@sales_bp.get("")
@require_auth
@require_role("STAFF")
def list_sales_route():
    try:
        result = sales_service.list_sales(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            staff_id=request.args.get("staff_id", type=int),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_role("STAFF")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"sale": _sale_detail(sale)}), 200


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
@require_role("STAFF")
def update_status_route(sale_id: int):
    """
    Move a sale along its lifecycle.

    Body: {status, reason?}
    CANCELLED and REFUNDED restock every deducted line item.
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sale_lifecycle_service.update_sale_status(
            sale_id,
            data.get("status"),
            performed_by_id=g.current_user.id,
            reason=data.get("reason"),
        )
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update sale status")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": _sale_detail(sale)}), 200
