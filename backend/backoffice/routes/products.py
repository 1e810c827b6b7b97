# Overview: Flask API routes for products and categories; parses input and returns JSON responses.

# backend/backoffice/routes/products.py
"""
Product and category management routes.

SECURITY: All routes require authentication.
- Read operations require STAFF or higher
- Write operations require ADMIN or higher
"""
from flask import Blueprint, current_app, g, request

from ..errors import DomainError
from ..services import products_service
from ..decorators import require_auth, require_role

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@products_bp.get("")
@require_auth
@require_role("STAFF")
def list_products():
    """
    List products with optional pagination.

    Query params:
    - category_id: int (optional)
    - search: str (optional) - matches name, SKU or barcode
    - include_inactive: "true" to include deactivated products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        category_id=request.args.get("category_id", type=int),
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@require_auth
@require_role("ADMIN")
def create_product():
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.create_product(payload, created_by_id=g.current_user.id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500
    return {"product": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
@require_role("STAFF")
def get_product(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except DomainError as e:
        return e.to_response()
    return {"product": product.to_dict()}


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role("ADMIN")
def update_product(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.update_product(product_id, payload)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500
    return {"product": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("ADMIN")
def deactivate_product(product_id: int):
    """Soft delete: the product stays in the ledger and on past sales."""
    try:
        product = products_service.deactivate_product(product_id, performed_by_id=g.current_user.id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return {"error": "Internal server error"}, 500
    return {"product": product.to_dict()}


@categories_bp.get("")
@require_auth
@require_role("STAFF")
def list_categories():
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    categories = products_service.list_categories(include_inactive=include_inactive)
    return {"items": [c.to_dict() for c in categories], "count": len(categories)}


@categories_bp.post("")
@require_auth
@require_role("ADMIN")
def create_category():
    payload = request.get_json(silent=True) or {}
    try:
        category = products_service.create_category(payload, created_by_id=g.current_user.id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create category")
        return {"error": "Internal server error"}, 500
    return {"category": category.to_dict()}, 201


@categories_bp.get("/<int:category_id>")
@require_auth
@require_role("STAFF")
def get_category(category_id: int):
    try:
        category = products_service.get_category(category_id)
    except DomainError as e:
        return e.to_response()
    return {"category": category.to_dict()}


@categories_bp.patch("/<int:category_id>")
@require_auth
@require_role("ADMIN")
def update_category(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        category = products_service.update_category(category_id, payload, performed_by_id=g.current_user.id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update category")
        return {"error": "Internal server error"}, 500
    return {"category": category.to_dict()}


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role("ADMIN")
def deactivate_category(category_id: int):
    """Soft delete; 409 while the category still holds active products."""
    try:
        category = products_service.deactivate_category(category_id, performed_by_id=g.current_user.id)
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to deactivate category")
        return {"error": "Internal server error"}, 500
    return {"category": category.to_dict()}
