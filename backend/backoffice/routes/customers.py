# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..errors import DomainError
from ..services import customers_service
from ..decorators import require_auth, require_role

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_role("STAFF")
def list_customers():
    customers = customers_service.list_customers(search=request.args.get("search"))
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.post("")
@require_auth
@require_role("STAFF")
def create_customer():
    payload = request.get_json(silent=True) or {}
    try:
        customer = customers_service.create_customer(payload)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return {"error": "Internal server error"}, 500
    return {"customer": customer.to_dict()}, 201


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_role("STAFF")
def get_customer(customer_id: int):
    try:
        customer = customers_service.get_customer(customer_id)
    except DomainError as e:
        return e.to_response()
    return {"customer": customer.to_dict()}


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_role("STAFF")
def update_customer(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        customer = customers_service.update_customer(customer_id, payload)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return {"error": "Internal server error"}, 500
    return {"customer": customer.to_dict()}
