"""
Sale status machine tests.
"""

import pytest

from backoffice.errors import InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError
from backoffice.extensions import db
from backoffice.models import (
    InventoryLog,
    MovementType,
    PaymentMethod,
    Product,
    Sale,
    SaleItem,
    SaleStatus,
)
from backoffice.money import ZERO
from backoffice.services import sales_service
from backoffice.services.sale_lifecycle_service import (
    ALLOWED_TRANSITIONS,
    can_transition,
    update_sale_status,
)


@pytest.fixture
def completed_sale(make_product, staff_user):
    a = make_product(quantity=10, price="3.00")
    b = make_product(quantity=10, price="5.00")
    return sales_service.create_sale(
        staff_id=staff_user.id,
        items=[
            {"product_id": a.id, "quantity": 2},
            {"product_id": b.id, "quantity": 4},
        ],
        payment_method="CASH",
    )


@pytest.fixture
def pending_sale(make_product, staff_user):
    """A PENDING sale: line items exist but no stock has been deducted."""
    product = make_product(quantity=10, price="3.00")
    sale = Sale(
        sale_number="SALE-0-PENDNG",
        total_amount=product.price * 3,
        tax_amount=ZERO,
        discount=ZERO,
        final_amount=product.price * 3,
        payment_method=PaymentMethod.CASH,
        status=SaleStatus.PENDING,
        staff_id=staff_user.id,
        items=[SaleItem(product_id=product.id, quantity=3, unit_price=product.price, total_price=product.price * 3)],
    )
    db.session.add(sale)
    db.session.commit()
    return sale


def _returns(sale_id):
    return (
        db.session.query(InventoryLog)
        .filter_by(sale_id=sale_id, type=MovementType.RETURN)
        .order_by(InventoryLog.id)
        .all()
    )


class TestTransitionTable:
    def test_terminal_states(self):
        assert ALLOWED_TRANSITIONS[SaleStatus.CANCELLED] == frozenset()
        assert ALLOWED_TRANSITIONS[SaleStatus.REFUNDED] == frozenset()

    @pytest.mark.parametrize(
        "src,dst,ok",
        [
            (SaleStatus.PENDING, SaleStatus.COMPLETED, True),
            (SaleStatus.PENDING, SaleStatus.CANCELLED, True),
            (SaleStatus.COMPLETED, SaleStatus.REFUNDED, True),
            (SaleStatus.COMPLETED, SaleStatus.CANCELLED, False),
            (SaleStatus.COMPLETED, SaleStatus.COMPLETED, False),
            (SaleStatus.REFUNDED, SaleStatus.COMPLETED, False),
        ],
    )
    def test_can_transition(self, src, dst, ok):
        assert can_transition(src, dst) is ok


class TestRefund:
    def test_refund_restocks_each_line(self, completed_sale, admin_user):
        quantities = {i.product_id: i.quantity for i in completed_sale.items}
        before = {pid: db.session.get(Product, pid).quantity for pid in quantities}

        sale = update_sale_status(completed_sale.id, "REFUNDED", performed_by_id=admin_user.id, reason="Damaged box")

        assert sale.status is SaleStatus.REFUNDED
        returns = _returns(sale.id)
        assert len(returns) == len(quantities)
        for log in returns:
            assert log.quantity == quantities[log.product_id]
            assert log.sale_id == sale.id
        for pid, qty in quantities.items():
            assert db.session.get(Product, pid).quantity == before[pid] + qty

    def test_refund_leaves_sale_entries_untouched(self, completed_sale, admin_user):
        sale_logs_before = [
            (log.id, log.quantity, log.previous_stock, log.new_stock)
            for log in completed_sale.inventory_logs
        ]

        update_sale_status(completed_sale.id, SaleStatus.REFUNDED, performed_by_id=admin_user.id)

        sale_logs_after = [
            (log.id, log.quantity, log.previous_stock, log.new_stock)
            for log in db.session.query(InventoryLog)
            .filter_by(sale_id=completed_sale.id, type=MovementType.SALE)
            .order_by(InventoryLog.id)
        ]
        assert sale_logs_after == sale_logs_before

    def test_refunded_is_terminal(self, completed_sale, admin_user):
        update_sale_status(completed_sale.id, "REFUNDED", performed_by_id=admin_user.id)

        with pytest.raises(InvalidTransitionError) as exc:
            update_sale_status(completed_sale.id, "REFUNDED", performed_by_id=admin_user.id)

        assert "REFUNDED" in exc.value.message
        assert len(_returns(completed_sale.id)) == 2

    def test_completed_cannot_be_cancelled(self, completed_sale, admin_user):
        with pytest.raises(InvalidTransitionError) as exc:
            update_sale_status(completed_sale.id, "CANCELLED", performed_by_id=admin_user.id)

        assert exc.value.message == "Invalid status transition from COMPLETED to CANCELLED"
        assert db.session.get(Sale, completed_sale.id).status is SaleStatus.COMPLETED


class TestPending:
    def test_cancel_pending_restocks_nothing(self, pending_sale, admin_user):
        product_id = pending_sale.items[0].product_id

        sale = update_sale_status(pending_sale.id, "CANCELLED", performed_by_id=admin_user.id)

        assert sale.status is SaleStatus.CANCELLED
        assert _returns(sale.id) == []
        assert db.session.get(Product, product_id).quantity == 10

    @pytest.mark.parametrize("target", ["PENDING", "COMPLETED", "REFUNDED"])
    def test_cancelled_is_terminal(self, pending_sale, admin_user, target):
        update_sale_status(pending_sale.id, "CANCELLED", performed_by_id=admin_user.id)

        with pytest.raises(InvalidTransitionError):
            update_sale_status(pending_sale.id, target, performed_by_id=admin_user.id)

    def test_complete_pending_deducts_stock(self, pending_sale, admin_user):
        product_id = pending_sale.items[0].product_id

        sale = update_sale_status(pending_sale.id, "COMPLETED", performed_by_id=admin_user.id)

        assert sale.status is SaleStatus.COMPLETED
        assert db.session.get(Product, product_id).quantity == 7
        sale_logs = [log for log in sale.inventory_logs if log.type is MovementType.SALE]
        assert [log.quantity for log in sale_logs] == [3]

    def test_complete_pending_without_stock_fails(self, pending_sale, admin_user, staff_user):
        from backoffice.services import inventory_service

        product_id = pending_sale.items[0].product_id
        inventory_service.stock_out(product_id, 9, performed_by_id=staff_user.id)

        with pytest.raises(InsufficientStockError):
            update_sale_status(pending_sale.id, "COMPLETED", performed_by_id=admin_user.id)

        assert db.session.get(Sale, pending_sale.id).status is SaleStatus.PENDING
        assert db.session.get(Product, product_id).quantity == 1


class TestInputs:
    def test_unknown_status(self, completed_sale, admin_user):
        with pytest.raises(ValidationError):
            update_sale_status(completed_sale.id, "LOST", performed_by_id=admin_user.id)

    def test_missing_sale(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            update_sale_status(55_555, "REFUNDED", performed_by_id=admin_user.id)
