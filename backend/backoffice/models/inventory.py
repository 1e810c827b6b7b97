from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z


class MovementType(str, enum.Enum):
    """
    Stock movement kinds recorded in the inventory log.

    Every member has an entry in _DIRECTION; adding a member without one
    fails at import time. ADJUSTMENT carries no fixed direction: adjustments
    are written as STOCK_IN or STOCK_OUT depending on the delta.
    """
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    SALE = "SALE"
    RETURN = "RETURN"
    DAMAGE = "DAMAGE"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def sign(self) -> int:
        return _DIRECTION[self][0]

    @property
    def compensated_by(self) -> "MovementType | None":
        return _DIRECTION[self][1]

    @property
    def is_inbound(self) -> bool:
        return self.sign > 0

    @property
    def is_outbound(self) -> bool:
        return self.sign < 0

    def apply(self, previous_stock: int, quantity: int) -> int:
        if self.sign == 0:
            raise ValueError(f"{self.value} has no fixed direction")
        return previous_stock + self.sign * quantity


# (sign, compensating movement)
_DIRECTION: dict[MovementType, tuple[int, MovementType | None]] = {
    MovementType.STOCK_IN: (1, MovementType.STOCK_OUT),
    MovementType.STOCK_OUT: (-1, MovementType.STOCK_IN),
    MovementType.SALE: (-1, MovementType.RETURN),
    MovementType.RETURN: (1, MovementType.SALE),
    MovementType.DAMAGE: (-1, None),
    MovementType.ADJUSTMENT: (0, None),
}

_missing = set(MovementType) - set(_DIRECTION)
if _missing:
    raise RuntimeError(f"MovementType members without direction: {sorted(m.value for m in _missing)}")


class InventoryLog(db.Model):
    """
    Append-only stock movement log.

    Invariants:
    - new_stock == previous_stock + sign(type) * quantity
    - quantity > 0 (magnitude only; direction comes from type)
    - written in the same transaction as the Product.quantity change
    - never updated or deleted (enforced by the mapper events below)
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_logs_quantity_positive"),
        db.CheckConstraint("previous_stock >= 0", name="ck_inventory_logs_previous_non_negative"),
        db.CheckConstraint("new_stock >= 0", name="ck_inventory_logs_new_non_negative"),
        db.Index("ix_inventory_logs_product_id_id", "product_id", "id"),
        db.Index("ix_inventory_logs_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(
        db.Enum(MovementType, name="inventory_log_type", native_enum=False, length=16),
        nullable=False,
    )
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("inventory_logs", lazy="dynamic"))
    performed_by = db.relationship("User")
    sale = db.relationship("Sale", backref=db.backref("inventory_logs", lazy=True, order_by="InventoryLog.id"))

    def __repr__(self) -> str:
        return (
            f"<InventoryLog id={self.id} type={self.type.value} qty={self.quantity} "
            f"{self.previous_stock}->{self.new_stock} product_id={self.product_id}>"
        )

    @property
    def signed_quantity(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self, *, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "type": self.type.value,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "product_id": self.product_id,
            "performed_by_id": self.performed_by_id,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_product and self.product is not None:
            data["product"] = self.product.to_summary()
        if self.performed_by is not None:
            data["performed_by"] = self.performed_by.to_summary()
        return data


@event.listens_for(InventoryLog, "before_update")
def _reject_log_update(mapper, connection, target):
    raise RuntimeError(f"InventoryLog {target.id} is append-only and cannot be updated")


@event.listens_for(InventoryLog, "before_delete")
def _reject_log_delete(mapper, connection, target):
    raise RuntimeError(f"InventoryLog {target.id} is append-only and cannot be deleted")
