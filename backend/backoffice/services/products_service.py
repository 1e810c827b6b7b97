# backend/backoffice/services/products_service.py
"""
Catalog Service: categories and products.

Product.quantity is never patched here. A new product's opening stock is
recorded through inventory_service.record_initial_stock() in the same
transaction as the product insert, so the ledger replays to the stock
record from the very first row.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Category, Product, Sale, SaleItem, SaleStatus
from ..validation import (
    CATEGORY_POLICY,
    PRODUCT_POLICY,
    PRODUCT_UPDATE_POLICY,
    enforce_rules_product,
    validate_payload,
)
from .audit_service import record_audit
from .concurrency import lock_for_update, run_with_retry, write_transaction
from .inventory_service import record_initial_stock

PRODUCT_MUTABLE_FIELDS = PRODUCT_UPDATE_POLICY.writable_fields


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


# --- categories -------------------------------------------------------------

def create_category(payload: dict, *, created_by_id: int) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)

    existing = db.session.query(Category).filter(func.lower(Category.name) == patch["name"].lower()).first()
    if existing:
        raise ConflictError("Category with this name already exists")

    category = Category(created_by_id=created_by_id, **patch)
    db.session.add(category)
    db.session.commit()
    return category


def list_categories(*, include_inactive: bool = False) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    return q.order_by(Category.name.asc()).all()


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _lock_category(category_id: int) -> Category:
    category = lock_for_update(
        db.session.query(Category).filter_by(id=category_id).populate_existing()
    ).first()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def update_category(category_id: int, payload: dict, *, performed_by_id: int) -> Category:
    """
    Rename or re-describe a category.

    Raises:
        ValidationError: unknown field, blank name
        NotFoundError: no such category
        ConflictError: another category already has this name (case-insensitive)
    """
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    before = {}

    def _op():
        with write_transaction():
            category = _lock_category(category_id)
            if "name" in patch:
                clash = (
                    db.session.query(Category.id)
                    .filter(func.lower(Category.name) == patch["name"].lower(), Category.id != category.id)
                    .first()
                )
                if clash:
                    raise ConflictError("Category with this name already exists")
            before.clear()
            before.update({k: getattr(category, k) for k in patch})
            for k, v in patch.items():
                setattr(category, k, v)
        return category.id

    category = db.session.get(Category, run_with_retry(_op))
    if patch:
        record_audit(
            user_id=performed_by_id,
            action="CATEGORY_UPDATE",
            description=f"Updated category {category.name}",
            resource="Category",
            resource_id=category.id,
            old_data=before,
            new_data=patch,
        )
    return category


def deactivate_category(category_id: int, *, performed_by_id: int) -> Category:
    """
    Soft-delete a category.

    Refused while any active product still belongs to it; deactivate or
    move those products first.
    """
    def _op():
        with write_transaction():
            category = _lock_category(category_id)
            if not category.is_active:
                return category.id

            active_product = (
                db.session.query(Product.id)
                .filter(Product.category_id == category.id, Product.is_active.is_(True))
                .first()
            )
            if active_product:
                raise ConflictError(
                    "Cannot deactivate a category that still has active products",
                    details={"product_id": active_product[0]},
                )
            category.is_active = False
        return category.id

    category = db.session.get(Category, run_with_retry(_op))
    record_audit(
        user_id=performed_by_id,
        action="CATEGORY_DEACTIVATE",
        description=f"Deactivated category {category.name}",
        resource="Category",
        resource_id=category.id,
        old_data={"is_active": True},
        new_data={"is_active": False},
    )
    return category


def _require_active_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None or not category.is_active:
        raise NotFoundError("Category not found or inactive")
    return category


# --- products ---------------------------------------------------------------

def _check_unique(sku: str | None, barcode: str | None, *, exclude_id: int | None = None) -> None:
    if sku:
        q = db.session.query(Product.id).filter(Product.sku == sku)
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if q.first():
            raise ConflictError("Product with this SKU already exists")
    if barcode:
        q = db.session.query(Product.id).filter(Product.barcode == barcode)
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if q.first():
            raise ConflictError("Product with this barcode already exists")


def create_product(payload: dict, *, created_by_id: int) -> Product:
    """
    Create a product; a positive `quantity` becomes an "Initial stock" STOCK_IN entry.

    Raises:
        ValidationError: payload fails column or business rules
        NotFoundError: category missing or inactive
        ConflictError: duplicate SKU or barcode
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    if "barcode" in patch and not patch["barcode"]:
        patch["barcode"] = None

    patch.setdefault("min_stock", current_app.config["DEFAULT_MIN_STOCK"])
    patch.setdefault("max_stock", current_app.config["DEFAULT_MAX_STOCK"])
    enforce_rules_product({"min_stock": patch["min_stock"], "max_stock": patch["max_stock"]})
    initial_quantity = patch.pop("quantity", None) or 0
    _require_active_category(patch["category_id"])
    _check_unique(patch.get("sku"), patch.get("barcode"))

    def _op():
        with write_transaction():
            product = Product(created_by_id=created_by_id, quantity=0, **patch)
            db.session.add(product)
            db.session.flush()
            record_initial_stock(product, initial_quantity, performed_by_id=created_by_id)
            product_id = product.id
        return product_id

    product = db.session.get(Product, run_with_retry(_op))
    record_audit(
        user_id=created_by_id,
        action="PRODUCT_CREATE",
        description=f"Created product {product.name} ({product.sku})",
        resource="Product",
        resource_id=product.id,
        new_data={"sku": product.sku, "price": str(product.price), "quantity": product.quantity},
    )
    return product


def get_product(product_id: int, *, include_inactive: bool = True) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not include_inactive and not product.is_active):
        raise NotFoundError("Product not found")
    return product


def list_products(
    *,
    category_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    q = q.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = q.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    page = max(1, page)
    per_page = min(100, max(1, per_page or 20))
    total = q.count()
    products = q.offset((page - 1) * per_page).limit(per_page).all()
    total_pages = (total + per_page - 1) // per_page
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def update_product(product_id: int, payload: dict) -> Product:
    """Patch product master data. `quantity` is rejected by the update policy."""
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)
    if "barcode" in patch and not patch["barcode"]:
        patch["barcode"] = None

    def _op():
        with write_transaction():
            product = lock_for_update(
                db.session.query(Product).filter_by(id=product_id).populate_existing()
            ).first()
            if product is None:
                raise NotFoundError("Product not found")

            if "category_id" in patch:
                _require_active_category(patch["category_id"])
            _check_unique(patch.get("sku"), patch.get("barcode"), exclude_id=product.id)

            min_stock = patch.get("min_stock", product.min_stock)
            max_stock = patch.get("max_stock", product.max_stock)
            enforce_rules_product({"min_stock": min_stock, "max_stock": max_stock})

            apply_product_patch(product, patch)
        return product.id

    return db.session.get(Product, run_with_retry(_op))


def deactivate_product(product_id: int, *, performed_by_id: int) -> Product:
    """
    Soft-delete a product.

    Refused while the product is on a PENDING or COMPLETED sale: those sales
    can still be completed or refunded, and both touch this product's stock.
    """
    def _op():
        with write_transaction():
            product = lock_for_update(
                db.session.query(Product).filter_by(id=product_id).populate_existing()
            ).first()
            if product is None:
                raise NotFoundError("Product not found")
            if not product.is_active:
                return product.id

            open_sale = (
                db.session.query(Sale.id)
                .join(SaleItem, SaleItem.sale_id == Sale.id)
                .filter(
                    SaleItem.product_id == product.id,
                    Sale.status.in_([SaleStatus.PENDING, SaleStatus.COMPLETED]),
                )
                .first()
            )
            if open_sale:
                raise ConflictError(
                    "Cannot deactivate a product that appears on pending or completed sales",
                    details={"sale_id": open_sale[0]},
                )
            product.is_active = False
        return product.id

    product = db.session.get(Product, run_with_retry(_op))
    record_audit(
        user_id=performed_by_id,
        action="PRODUCT_DEACTIVATE",
        description=f"Deactivated product {product.name} ({product.sku})",
        resource="Product",
        resource_id=product.id,
        old_data={"is_active": True},
        new_data={"is_active": False},
    )
    return product
