"""
Sale Transaction Engine

Creates a multi-item sale atomically: stock validation, the sale and its
line items, and one SALE ledger entry per line item commit together or not
at all. Stock effects go through inventory_service.apply_sale_movement();
this module never writes Product.quantity.
"""

from __future__ import annotations

import secrets
import time
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, MovementType, PaymentMethod, Sale, SaleItem, SaleStatus
from ..money import CENT, MAX_AMOUNT, ZERO, to_decimal
from ..validation import parse_int
from .audit_service import record_audit
from .concurrency import run_with_retry, write_transaction
from .inventory_service import apply_sale_movement, get_product_for_update

SALE_NUMBER_ATTEMPTS = 3


def generate_sale_number() -> str:
    """SALE-<epoch millis>-<6 hex chars>; the unique constraint is the real guarantee."""
    return f"SALE-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def parse_payment_method(value) -> PaymentMethod:
    if value is None or value == "":
        raise ValidationError("payment_method is required")
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid payment method '{value}'. "
            f"Must be one of: {', '.join(m.value for m in PaymentMethod)}"
        )


def _normalize_items(items) -> list[dict]:
    """Validate raw line input; returns [{product_id, quantity, unit_price|None}] in input order."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must contain at least one item")

    normalized = []
    seen: set[int] = set()
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")

        if raw.get("product_id") is None:
            raise ValidationError(f"items[{index}].product_id is required")
        product_id = parse_int(raw.get("product_id"), f"items[{index}].product_id")

        if raw.get("quantity") is None:
            raise ValidationError(f"items[{index}].quantity is required")
        quantity = parse_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be greater than 0")

        unit_price = None
        if raw.get("unit_price") is not None:
            unit_price = to_decimal(raw["unit_price"], f"items[{index}].unit_price")
            if unit_price < 0:
                raise ValidationError(f"items[{index}].unit_price cannot be negative")

        if product_id in seen:
            raise ValidationError(
                f"Product {product_id} appears more than once; combine the quantities into one item"
            )
        seen.add(product_id)

        normalized.append({"product_id": product_id, "quantity": quantity, "unit_price": unit_price})
    return normalized


def _non_negative_amount(value, field: str) -> Decimal:
    if value is None:
        return ZERO
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def _check_column_size(amount: Decimal, field: str) -> None:
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(
            f"{field} {amount} exceeds the largest storable amount ({MAX_AMOUNT})",
            details={"field": field, "limit": str(MAX_AMOUNT)},
        )


def _insert_sale(
    *,
    sale_number: str,
    staff_id: int,
    customer_id: int | None,
    items: list[dict],
    payment_method: PaymentMethod,
    tax_amount: Decimal,
    discount: Decimal,
    notes: str | None,
) -> int:
    with write_transaction():
        subtotal = ZERO
        lines: list[SaleItem] = []
        for item in items:
            product = get_product_for_update(item["product_id"])
            if item["quantity"] > product.quantity:
                raise InsufficientStockError(
                    product_id=product.id,
                    product_name=product.name,
                    available=product.quantity,
                    requested=item["quantity"],
                )

            unit_price = item["unit_price"] if item["unit_price"] is not None else product.price
            line_total = (unit_price * item["quantity"]).quantize(CENT)
            _check_column_size(line_total, f"Line total for product {product.id}")
            subtotal += line_total
            lines.append(SaleItem(
                product_id=product.id,
                quantity=item["quantity"],
                unit_price=unit_price,
                total_price=line_total,
            ))

        _check_column_size(subtotal, "total_amount")
        final_amount = subtotal + tax_amount - discount
        _check_column_size(final_amount, "final_amount")
        if final_amount < 0:
            raise ValidationError(
                "Discount exceeds sale total",
                details={"total_amount": str(subtotal + tax_amount), "discount": str(discount)},
            )

        sale = Sale(
            sale_number=sale_number,
            total_amount=subtotal,
            tax_amount=tax_amount,
            discount=discount,
            final_amount=final_amount,
            payment_method=payment_method,
            status=SaleStatus.COMPLETED,
            notes=notes,
            staff_id=staff_id,
            customer_id=customer_id,
            items=lines,
        )
        db.session.add(sale)
        db.session.flush()

        for line in lines:
            apply_sale_movement(
                line.product_id,
                line.quantity,
                sale_id=sale.id,
                performed_by_id=staff_id,
                direction=MovementType.SALE,
                commit=False,
            )
        sale_id = sale.id
    return sale_id


def _sale_number_taken(sale_number: str) -> bool:
    return db.session.query(Sale.id).filter_by(sale_number=sale_number).first() is not None


def create_sale(
    *,
    staff_id: int,
    items,
    payment_method,
    customer_id=None,
    tax_amount=None,
    discount=None,
    notes: str | None = None,
) -> Sale:
    """
    Create a COMPLETED sale and deduct its stock in one transaction.

    Raises:
        ValidationError: empty/malformed items, bad payment method or amounts,
            duplicate product lines, discount larger than the total
        NotFoundError: customer or product missing (or product inactive)
        InsufficientStockError: any line exceeds on-hand stock (nothing is written)
        ConflictError: no unique sale number after SALE_NUMBER_ATTEMPTS tries
    """
    normalized = _normalize_items(items)
    method = parse_payment_method(payment_method)
    tax = _non_negative_amount(tax_amount, "tax_amount")
    disc = _non_negative_amount(discount, "discount")
    if notes is not None:
        notes = str(notes).strip() or None

    if customer_id is not None:
        customer_id = parse_int(customer_id, "customer_id")
        if db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found")

    sale_id = None
    for _attempt in range(SALE_NUMBER_ATTEMPTS):
        sale_number = generate_sale_number()
        try:
            sale_id = run_with_retry(lambda: _insert_sale(
                sale_number=sale_number,
                staff_id=staff_id,
                customer_id=customer_id,
                items=normalized,
                payment_method=method,
                tax_amount=tax,
                discount=disc,
                notes=notes,
            ))
            break
        except IntegrityError:
            if not _sale_number_taken(sale_number):
                raise
            current_app.logger.warning("Sale number collision on %s; retrying", sale_number)

    if sale_id is None:
        raise ConflictError("Could not allocate a unique sale number")

    sale = get_sale(sale_id)
    record_audit(
        user_id=staff_id,
        action="SALE_CREATE",
        description=f"Created sale {sale.sale_number} for {sale.final_amount}",
        resource="Sale",
        resource_id=sale.id,
        new_data={
            "sale_number": sale.sale_number,
            "final_amount": str(sale.final_amount),
            "items": [
                {"product_id": i.product_id, "quantity": i.quantity, "unit_price": str(i.unit_price)}
                for i in sale.items
            ],
        },
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    status=None,
    customer_id: int | None = None,
    staff_id: int | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    page = max(1, page)
    per_page = min(100, max(1, per_page))

    q = db.session.query(Sale)
    if status:
        try:
            q = q.filter(Sale.status == SaleStatus(str(status).upper()))
        except ValueError:
            raise ValidationError(f"Invalid status '{status}'")
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if staff_id is not None:
        q = q.filter(Sale.staff_id == staff_id)

    total = q.count()
    rows = q.order_by(Sale.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [s.to_dict(include_items=False) for s in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }
