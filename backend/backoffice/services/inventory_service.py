# Overview: Service-layer operations for inventory; the only write path for Product.quantity.

# backend/backoffice/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryLog, MovementType, Product
from ..money import to_decimal
from ..validation import parse_int
from .audit_service import record_audit
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry, write_transaction
"""
Inventory Ledger Invariants (authoritative)

Stock record:
- Product.quantity is the on-hand count and is never negative.
- Product.quantity is written ONLY by _apply_movement() in this module.

Ledger:
- Every quantity change appends exactly one InventoryLog row in the same
  DB transaction as the Product UPDATE.
- new_stock == previous_stock + sign(type) * quantity; quantity > 0.
- Log rows are never updated or deleted. Returns/cancellations append
  RETURN rows; they do not edit the SALE rows they compensate.

Concurrency:
- The current quantity is read inside the write transaction, after the
  row lock (SELECT ... FOR UPDATE, or BEGIN IMMEDIATE on SQLite). Any read
  made before that point is advisory only.
- No in-process locks. Lock timeouts and optimistic-version conflicts are
  retried by run_with_retry(); the retry re-reads the quantity.
"""

SALE_DIRECTIONS = (MovementType.SALE, MovementType.RETURN)


@dataclass
class StockMovementResult:
    product: Product
    log: InventoryLog | None
    adjustment: dict | None = None

    def to_dict(self) -> dict:
        data = {
            "product": self.product.to_dict(),
            "log": self.log.to_dict(include_product=True) if self.log else None,
        }
        if self.adjustment is not None:
            data["adjustment"] = self.adjustment
        return data


def _require_positive_quantity(quantity, field: str = "quantity") -> int:
    value = parse_int(quantity, field)
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return value


def get_product_for_update(product_id: int, *, require_active: bool = True) -> Product:
    """
    Load a product row under the write lock, refreshing any cached copy.

    populate_existing() matters: the identity map may hold a Product loaded
    earlier in the request, and its quantity must not be trusted.
    """
    query = db.session.query(Product).filter_by(id=product_id).populate_existing()
    product = lock_for_update(query).first()
    if product is None:
        raise NotFoundError("Product not found or inactive", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise NotFoundError("Product not found or inactive", details={"product_id": product_id})
    return product


def _apply_movement(
    product: Product,
    movement_type: MovementType,
    quantity: int,
    *,
    performed_by_id: int,
    reason: str | None,
    sale_id: int | None = None,
) -> InventoryLog:
    """Apply one signed delta to a locked product and append its log row. No commit."""
    previous_stock = product.quantity
    new_stock = movement_type.apply(previous_stock, quantity)
    if new_stock < 0:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=previous_stock,
            requested=quantity,
        )

    product.quantity = new_stock

    log = InventoryLog(
        type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        product_id=product.id,
        performed_by_id=performed_by_id,
        sale_id=sale_id,
    )
    db.session.add(log)
    db.session.flush()
    return log


def _audit_movement(action: str, result: StockMovementResult, performed_by_id: int) -> None:
    log = result.log
    if log is None:
        return
    record_audit(
        user_id=performed_by_id,
        action=action,
        description=(
            f"{log.type.value} {log.quantity} x {result.product.name} "
            f"({log.previous_stock} -> {log.new_stock})"
        ),
        resource="Product",
        resource_id=result.product.id,
        old_data={"quantity": log.previous_stock},
        new_data={"quantity": log.new_stock, "log_id": log.id},
    )


def stock_in(
    product_id: int,
    quantity,
    *,
    performed_by_id: int,
    reason: str | None = None,
    cost_price=None,
) -> StockMovementResult:
    """Receive stock; optionally overwrite the product's unit cost."""
    quantity = _require_positive_quantity(quantity)
    new_cost = None
    if cost_price is not None:
        new_cost = to_decimal(cost_price, "cost_price")
        if new_cost <= 0:
            raise ValidationError("cost_price must be greater than 0")

    def _op():
        with write_transaction():
            product = get_product_for_update(product_id)
            if new_cost is not None:
                product.cost_price = new_cost
            log = _apply_movement(
                product,
                MovementType.STOCK_IN,
                quantity,
                performed_by_id=performed_by_id,
                reason=reason or "Stock in",
            )
        return StockMovementResult(product=product, log=log)

    result = run_with_retry(_op)
    _audit_movement("STOCK_IN", result, performed_by_id)
    return result


def stock_out(
    product_id: int,
    quantity,
    *,
    performed_by_id: int,
    reason: str | None = None,
) -> StockMovementResult:
    quantity = _require_positive_quantity(quantity)

    def _op():
        with write_transaction():
            product = get_product_for_update(product_id)
            log = _apply_movement(
                product,
                MovementType.STOCK_OUT,
                quantity,
                performed_by_id=performed_by_id,
                reason=reason or "Stock out",
            )
        return StockMovementResult(product=product, log=log)

    result = run_with_retry(_op)
    _audit_movement("STOCK_OUT", result, performed_by_id)
    return result


def record_damage(
    product_id: int,
    quantity,
    *,
    performed_by_id: int,
    reason: str | None = None,
) -> StockMovementResult:
    """Write off damaged units. Same failure surface as stock_out."""
    quantity = _require_positive_quantity(quantity)

    def _op():
        with write_transaction():
            product = get_product_for_update(product_id)
            log = _apply_movement(
                product,
                MovementType.DAMAGE,
                quantity,
                performed_by_id=performed_by_id,
                reason=reason or "Damaged stock",
            )
        return StockMovementResult(product=product, log=log)

    result = run_with_retry(_op)
    _audit_movement("STOCK_DAMAGE", result, performed_by_id)
    return result


def adjust_stock(
    product_id: int,
    target_quantity,
    *,
    performed_by_id: int,
    reason: str | None = None,
) -> StockMovementResult:
    """
    Set on-hand quantity to an exact counted value.

    Logged as STOCK_IN (target above current) or STOCK_OUT (target below)
    with quantity = |target - current|. A target equal to the current
    quantity writes nothing and returns log=None.
    """
    target = parse_int(target_quantity, "quantity")
    if target < 0:
        raise ValidationError("Quantity cannot be negative")

    def _op():
        with write_transaction():
            product = get_product_for_update(product_id)
            current = product.quantity
            if target == current:
                return StockMovementResult(
                    product=product,
                    log=None,
                    adjustment={"type": None, "quantity": 0},
                )

            movement_type = MovementType.STOCK_IN if target > current else MovementType.STOCK_OUT
            delta = abs(target - current)
            log = _apply_movement(
                product,
                movement_type,
                delta,
                performed_by_id=performed_by_id,
                reason=reason or "Stock adjustment",
            )
        return StockMovementResult(
            product=product,
            log=log,
            adjustment={"type": movement_type.value, "quantity": delta},
        )

    result = run_with_retry(_op)
    _audit_movement("STOCK_ADJUST", result, performed_by_id)
    return result


def apply_sale_movement(
    product_id: int,
    quantity: int,
    *,
    sale_id: int,
    performed_by_id: int,
    direction: MovementType,
    commit: bool = True,
) -> InventoryLog:
    """
    Create a SALE (stock out) or RETURN (stock in) entry stamped with a sale.

    Entry point for the sale engine and the sale status machine.

    commit=False joins the caller's open write transaction (the sale insert
    or status change) so the sale rows and their stock effects commit or
    roll back together.
    """
    if direction not in SALE_DIRECTIONS:
        raise ValidationError(f"direction must be one of: {', '.join(d.value for d in SALE_DIRECTIONS)}")
    quantity = _require_positive_quantity(quantity)

    def _apply() -> InventoryLog:
        # Restocking a since-deactivated product is still allowed
        product = get_product_for_update(
            product_id,
            require_active=direction is MovementType.SALE,
        )
        return _apply_movement(
            product,
            direction,
            quantity,
            performed_by_id=performed_by_id,
            reason="Sale" if direction is MovementType.SALE else "Product return",
            sale_id=sale_id,
        )

    if not commit:
        begin_write_transaction()
        return _apply()

    def _op():
        with write_transaction():
            return _apply()

    return run_with_retry(_op)


def record_initial_stock(product: Product, quantity: int, *, performed_by_id: int) -> InventoryLog | None:
    """
    Seed a newly inserted product's stock inside the caller's transaction.

    The product row is created with quantity 0; the opening balance goes
    through the ledger like any other movement.
    """
    if quantity <= 0:
        return None
    return _apply_movement(
        product,
        MovementType.STOCK_IN,
        quantity,
        performed_by_id=performed_by_id,
        reason="Initial stock",
    )


def _filtered_logs(
    *,
    product_id: int | None = None,
    movement_type: MovementType | str | None = None,
    performed_by_id: int | None = None,
    sale_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    q = db.session.query(InventoryLog)
    if product_id is not None:
        q = q.filter(InventoryLog.product_id == product_id)
    if movement_type is not None:
        q = q.filter(InventoryLog.type == parse_movement_type(movement_type))
    if performed_by_id is not None:
        q = q.filter(InventoryLog.performed_by_id == performed_by_id)
    if sale_id is not None:
        q = q.filter(InventoryLog.sale_id == sale_id)
    if start is not None:
        q = q.filter(InventoryLog.created_at >= start)
    if end is not None:
        q = q.filter(InventoryLog.created_at <= end)
    return q


def parse_movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid inventory log type '{value}'. "
            f"Must be one of: {', '.join(m.value for m in MovementType)}"
        )


def list_inventory_logs(*, page: int = 1, per_page: int = 20, **filters) -> dict:
    """Newest-first page of log entries plus pagination metadata."""
    page = max(1, page)
    per_page = min(100, max(1, per_page))

    q = _filtered_logs(**filters)
    total = q.count()
    rows = (
        q.order_by(InventoryLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    total_pages = (total + per_page - 1) // per_page
    return {
        "items": [r.to_dict(include_product=True) for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_inventory_log(log_id: int) -> InventoryLog:
    log = db.session.get(InventoryLog, log_id)
    if log is None:
        raise NotFoundError("Inventory log not found")
    return log


def movement_summary(**filters) -> dict:
    """Per-type totals for the filtered log entries."""
    rows = (
        _filtered_logs(**filters)
        .with_entities(
            InventoryLog.type,
            func.coalesce(func.sum(InventoryLog.quantity), 0),
            func.count(InventoryLog.id),
        )
        .group_by(InventoryLog.type)
        .all()
    )
    totals = {m: 0 for m in MovementType}
    log_count = 0
    for movement_type, qty, count in rows:
        totals[movement_type] = int(qty)
        log_count += int(count)

    return {
        "total_stock_in": totals[MovementType.STOCK_IN],
        "total_stock_out": totals[MovementType.STOCK_OUT],
        "total_sales": totals[MovementType.SALE],
        "total_returns": totals[MovementType.RETURN],
        "total_damage": totals[MovementType.DAMAGE],
        "net_change": sum(m.sign * totals[m] for m in MovementType),
        "log_count": log_count,
    }


def low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.quantity <= Product.min_stock)
        .order_by(Product.quantity.asc(), Product.id.asc())
        .all()
    )


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Replay the log per product and report every broken invariant.

    Checks, in id order per product:
    - each entry's new_stock == previous_stock + sign * quantity
    - each entry's previous_stock == the prior entry's new_stock
    - the last entry's new_stock == Product.quantity (0 if no entries)
    """
    products_q = db.session.query(Product)
    if product_id is not None:
        products_q = products_q.filter(Product.id == product_id)

    problems: list[dict] = []
    for product in products_q.order_by(Product.id).all():
        expected = 0
        logs = (
            db.session.query(InventoryLog)
            .filter(InventoryLog.product_id == product.id)
            .order_by(InventoryLog.id.asc())
            .all()
        )
        for log in logs:
            if log.previous_stock != expected:
                problems.append({
                    "product_id": product.id,
                    "log_id": log.id,
                    "problem": "chain_break",
                    "expected_previous_stock": expected,
                    "actual_previous_stock": log.previous_stock,
                })
            if log.type.sign == 0 or log.new_stock != log.previous_stock + log.type.sign * log.quantity:
                problems.append({
                    "product_id": product.id,
                    "log_id": log.id,
                    "problem": "delta_mismatch",
                    "type": log.type.value,
                    "quantity": log.quantity,
                    "previous_stock": log.previous_stock,
                    "new_stock": log.new_stock,
                })
            expected = log.new_stock

        if expected != product.quantity:
            problems.append({
                "product_id": product.id,
                "log_id": None,
                "problem": "quantity_mismatch",
                "ledger_quantity": expected,
                "product_quantity": product.quantity,
            })
    return problems
