# Overview: Service-layer operations for sale status; transition table and compensating stock entries.

from __future__ import annotations

from sqlalchemy import case, func

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryLog, MovementType, Sale, SaleStatus
from .audit_service import record_audit
from .concurrency import lock_for_update, run_with_retry, write_transaction
from .inventory_service import apply_sale_movement

ALLOWED_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.PENDING: frozenset({SaleStatus.COMPLETED, SaleStatus.CANCELLED}),
    SaleStatus.COMPLETED: frozenset({SaleStatus.REFUNDED}),
    SaleStatus.CANCELLED: frozenset(),
    SaleStatus.REFUNDED: frozenset(),
}

# Terminal states reached from a sale that may have deducted stock
RESTOCKING_STATUSES = frozenset({SaleStatus.CANCELLED, SaleStatus.REFUNDED})


def parse_status(value) -> SaleStatus:
    if isinstance(value, SaleStatus):
        return value
    if value is None or str(value).strip() == "":
        raise ValidationError("status is required")
    try:
        return SaleStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: {', '.join(s.value for s in SaleStatus)}"
        )


def can_transition(from_status: SaleStatus, to_status: SaleStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def net_sold_quantities(sale_id: int) -> dict[int, int]:
    """Per product: SALE quantity minus RETURN quantity already logged against this sale."""
    signed = case(
        (InventoryLog.type == MovementType.SALE, InventoryLog.quantity),
        (InventoryLog.type == MovementType.RETURN, -InventoryLog.quantity),
        else_=0,
    )
    rows = (
        db.session.query(InventoryLog.product_id, func.coalesce(func.sum(signed), 0))
        .filter(InventoryLog.sale_id == sale_id)
        .group_by(InventoryLog.product_id)
        .all()
    )
    return {product_id: int(qty) for product_id, qty in rows}


def update_sale_status(
    sale_id: int,
    new_status,
    *,
    performed_by_id: int,
    reason: str | None = None,
) -> Sale:
    """
    Move a sale along the transition table.

    CANCELLED/REFUNDED append RETURN entries for whatever the sale still has
    deducted; PENDING -> COMPLETED appends SALE entries for lines not yet
    deducted. Status, updated_at and every ledger entry share one transaction.
    """
    target = parse_status(new_status)

    def _op():
        with write_transaction():
            query = db.session.query(Sale).filter_by(id=sale_id).populate_existing()
            sale = lock_for_update(query).first()
            if sale is None:
                raise NotFoundError("Sale not found")

            previous = sale.status
            if not can_transition(previous, target):
                raise InvalidTransitionError(previous.value, target.value)

            sale.status = target
            db.session.flush()

            outstanding = net_sold_quantities(sale.id)
            movements = []
            for item in sale.items:
                deducted = outstanding.get(item.product_id, 0)
                if target in RESTOCKING_STATUSES and deducted > 0:
                    movements.append((item.product_id, min(deducted, item.quantity), MovementType.RETURN))
                elif target is SaleStatus.COMPLETED and deducted <= 0:
                    movements.append((item.product_id, item.quantity, MovementType.SALE))

            for product_id, quantity, direction in movements:
                apply_sale_movement(
                    product_id,
                    quantity,
                    sale_id=sale.id,
                    performed_by_id=performed_by_id,
                    direction=direction,
                    commit=False,
                )
        return previous

    previous = run_with_retry(_op)
    sale = db.session.get(Sale, sale_id)

    record_audit(
        user_id=performed_by_id,
        action="SALE_STATUS_UPDATE",
        description=(
            f"Sale {sale.sale_number} status {previous.value} -> {target.value}"
            + (f": {reason}" if reason else "")
        ),
        resource="Sale",
        resource_id=sale.id,
        old_data={"status": previous.value},
        new_data={"status": target.value, "reason": reason},
    )
    return sale
