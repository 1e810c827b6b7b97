from __future__ import annotations

import enum

from sqlalchemy import event, inspect

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class SaleStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"


class Sale(db.Model):
    """
    Sale document.

    final_amount == total_amount + tax_amount - discount at creation.
    Amounts are frozen once written; only status (and updated_at) may change,
    and only along the transitions in services/sale_lifecycle_service.py.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable sale number (e.g., "SALE-1730000000000-1A2B3C")
    sale_number = db.Column(db.String(64), nullable=False)

    total_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)

    payment_method = db.Column(
        db.Enum(PaymentMethod, name="payment_method", native_enum=False, length=16),
        nullable=False,
    )
    status = db.Column(
        db.Enum(SaleStatus, name="sale_status", native_enum=False, length=16),
        nullable=False,
        default=SaleStatus.COMPLETED,
        index=True,
    )
    notes = db.Column(db.Text, nullable=True)

    staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    staff = db.relationship("User")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status.value}>"

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "total_amount": money_str(self.total_amount),
            "tax_amount": money_str(self.tax_amount),
            "discount": money_str(self.discount),
            "final_amount": money_str(self.final_amount),
            "payment_method": self.payment_method.value,
            "status": self.status.value,
            "notes": self.notes,
            "staff_id": self.staff_id,
            "customer_id": self.customer_id,
            "staff": self.staff.to_summary() if self.staff else None,
            "customer": self.customer.to_summary() if self.customer else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Sale line item.

    unit_price is a snapshot taken when the sale was created; later product
    price changes never touch it.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    total_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "total_price": money_str(self.total_price),
            "created_at": to_utc_z(self.created_at),
        }


FROZEN_SALE_FIELDS = ("sale_number", "total_amount", "tax_amount", "discount", "final_amount", "payment_method", "staff_id", "customer_id")


@event.listens_for(Sale, "before_update")
def _reject_amount_change(mapper, connection, target):
    state = inspect(target)
    changed = [name for name in FROZEN_SALE_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise RuntimeError(f"Sale {target.id} fields are immutable after creation: {', '.join(changed)}")


@event.listens_for(SaleItem, "before_update")
def _reject_item_update(mapper, connection, target):
    raise RuntimeError(f"SaleItem {target.id} is immutable after creation")
