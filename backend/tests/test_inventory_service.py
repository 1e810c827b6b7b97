"""
Inventory ledger tests.

Covers every stock movement, the ledger invariants and the read-side helpers.
"""

from decimal import Decimal

import pytest
from sqlalchemy import text

from backoffice.errors import InsufficientStockError, NotFoundError, ValidationError
from backoffice.extensions import db
from backoffice.models import InventoryLog, MovementType, Product
from backoffice.services import inventory_service


def _logs(product_id):
    return (
        db.session.query(InventoryLog)
        .filter_by(product_id=product_id)
        .order_by(InventoryLog.id)
        .all()
    )


class TestMovementType:
    def test_signs(self):
        assert MovementType.STOCK_IN.sign == 1
        assert MovementType.RETURN.sign == 1
        assert MovementType.STOCK_OUT.sign == -1
        assert MovementType.SALE.sign == -1
        assert MovementType.DAMAGE.sign == -1
        assert MovementType.ADJUSTMENT.sign == 0

    def test_compensation_pairs(self):
        assert MovementType.SALE.compensated_by is MovementType.RETURN
        assert MovementType.STOCK_IN.compensated_by is MovementType.STOCK_OUT
        assert MovementType.DAMAGE.compensated_by is None

    def test_adjustment_has_no_direction(self):
        with pytest.raises(ValueError):
            MovementType.ADJUSTMENT.apply(10, 1)


class TestInitialStock:
    def test_create_product_logs_initial_stock(self, make_product):
        product = make_product(quantity=12)

        assert product.quantity == 12
        logs = _logs(product.id)
        assert len(logs) == 1
        assert logs[0].type is MovementType.STOCK_IN
        assert logs[0].previous_stock == 0
        assert logs[0].new_stock == 12
        assert logs[0].reason == "Initial stock"

    def test_zero_initial_stock_writes_no_log(self, make_product):
        product = make_product(quantity=0)
        assert product.quantity == 0
        assert _logs(product.id) == []


class TestStockIn:
    def test_increments_and_logs(self, make_product, staff_user):
        product = make_product(quantity=10)

        result = inventory_service.stock_in(product.id, 5, performed_by_id=staff_user.id, reason="Delivery")

        assert result.product.quantity == 15
        assert result.log.type is MovementType.STOCK_IN
        assert result.log.quantity == 5
        assert result.log.previous_stock == 10
        assert result.log.new_stock == 15
        assert result.log.reason == "Delivery"
        assert result.log.performed_by_id == staff_user.id

    def test_cost_price_override(self, make_product, staff_user):
        product = make_product(quantity=1, cost_price="8.00")

        inventory_service.stock_in(product.id, 1, performed_by_id=staff_user.id, cost_price="7.255")

        assert db.session.get(Product, product.id).cost_price == Decimal("7.26")

    def test_non_positive_cost_price_rejected(self, make_product, staff_user):
        product = make_product(quantity=1)
        with pytest.raises(ValidationError):
            inventory_service.stock_in(product.id, 1, performed_by_id=staff_user.id, cost_price="0")

    @pytest.mark.parametrize("qty", [0, -3, 1.5, True, "abc", None])
    def test_invalid_quantity_rejected(self, make_product, staff_user, qty):
        product = make_product(quantity=4)

        with pytest.raises(ValidationError):
            inventory_service.stock_in(product.id, qty, performed_by_id=staff_user.id)

        assert db.session.get(Product, product.id).quantity == 4
        assert len(_logs(product.id)) == 1

    def test_unknown_product(self, db_session, staff_user):
        with pytest.raises(NotFoundError):
            inventory_service.stock_in(999_999, 1, performed_by_id=staff_user.id)


class TestStockOut:
    def test_stock_out_to_zero(self, make_product, staff_user):
        product = make_product(quantity=50, min_stock=10)

        result = inventory_service.stock_out(product.id, 50, performed_by_id=staff_user.id)

        assert result.product.quantity == 0
        assert result.log.type is MovementType.STOCK_OUT
        assert result.log.previous_stock == 50
        assert result.log.new_stock == 0

    def test_insufficient_stock_changes_nothing(self, make_product, staff_user):
        product = make_product(quantity=3)

        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.stock_out(product.id, 4, performed_by_id=staff_user.id)

        err = exc.value
        assert err.available == 3
        assert err.requested == 4
        assert product.name in err.message
        assert "Available: 3, Requested: 4" in err.message
        assert db.session.get(Product, product.id).quantity == 3
        assert len(_logs(product.id)) == 1

    def test_inactive_product_is_not_found(self, make_product, staff_user):
        product = make_product(quantity=5)
        product.is_active = False
        db.session.commit()

        with pytest.raises(NotFoundError):
            inventory_service.stock_out(product.id, 1, performed_by_id=staff_user.id)


class TestDamage:
    def test_damage_is_outbound(self, make_product, staff_user):
        product = make_product(quantity=6)

        result = inventory_service.record_damage(product.id, 2, performed_by_id=staff_user.id)

        assert result.product.quantity == 4
        assert result.log.type is MovementType.DAMAGE
        assert result.log.reason == "Damaged stock"

    def test_damage_beyond_stock(self, make_product, staff_user):
        product = make_product(quantity=1)
        with pytest.raises(InsufficientStockError):
            inventory_service.record_damage(product.id, 2, performed_by_id=staff_user.id)


class TestAdjustStock:
    def test_adjust_up_logs_stock_in(self, make_product, admin_user):
        product = make_product(quantity=15)

        result = inventory_service.adjust_stock(product.id, 20, performed_by_id=admin_user.id)

        assert result.log.type is MovementType.STOCK_IN
        assert result.log.quantity == 5
        assert result.log.new_stock == 20
        assert result.adjustment == {"type": "STOCK_IN", "quantity": 5}

    def test_adjust_down(self, make_product, admin_user):
        product = make_product(quantity=15)

        result = inventory_service.adjust_stock(product.id, 0, performed_by_id=admin_user.id)

        assert result.product.quantity == 0
        assert result.log.type is MovementType.STOCK_OUT
        assert result.adjustment == {"type": "STOCK_OUT", "quantity": 15}

    def test_adjust_to_current_is_noop(self, make_product, admin_user):
        product = make_product(quantity=7)

        result = inventory_service.adjust_stock(product.id, 7, performed_by_id=admin_user.id)

        assert result.log is None
        assert result.adjustment == {"type": None, "quantity": 0}
        assert len(_logs(product.id)) == 1

    def test_negative_target_rejected(self, make_product, admin_user):
        product = make_product(quantity=7)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product.id, -1, performed_by_id=admin_user.id)


class TestSaleMovement:
    def test_direction_must_be_sale_or_return(self, make_product, staff_user):
        product = make_product(quantity=5)
        with pytest.raises(ValidationError):
            inventory_service.apply_sale_movement(
                product.id, 1, sale_id=1, performed_by_id=staff_user.id,
                direction=MovementType.DAMAGE,
            )


class TestLedgerInvariants:
    def test_log_rows_are_append_only(self, make_product):
        product = make_product(quantity=5)
        log = _logs(product.id)[0]

        log.reason = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()

        db.session.delete(db.session.get(InventoryLog, log.id))
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()

    def test_chain_replays_to_quantity(self, make_product, staff_user, admin_user):
        product = make_product(quantity=10)
        inventory_service.stock_in(product.id, 5, performed_by_id=staff_user.id)
        inventory_service.stock_out(product.id, 12, performed_by_id=staff_user.id)
        inventory_service.record_damage(product.id, 1, performed_by_id=staff_user.id)
        inventory_service.adjust_stock(product.id, 9, performed_by_id=admin_user.id)

        logs = _logs(product.id)
        previous = 0
        for log in logs:
            assert log.previous_stock == previous
            assert log.new_stock == log.previous_stock + log.type.sign * log.quantity
            assert log.new_stock >= 0
            previous = log.new_stock
        assert previous == db.session.get(Product, product.id).quantity == 9
        assert inventory_service.verify_ledger(product.id) == []

    def test_verify_detects_out_of_band_write(self, make_product):
        product = make_product(quantity=10)
        db.session.execute(text("UPDATE products SET quantity = 4 WHERE id = :id"), {"id": product.id})
        db.session.commit()

        problems = inventory_service.verify_ledger(product.id)

        assert len(problems) == 1
        assert problems[0]["problem"] == "quantity_mismatch"
        assert problems[0]["ledger_quantity"] == 10
        assert problems[0]["product_quantity"] == 4


class TestReads:
    def test_summary_net_change(self, make_product, staff_user):
        product = make_product(quantity=10)
        inventory_service.stock_in(product.id, 5, performed_by_id=staff_user.id)
        inventory_service.stock_out(product.id, 3, performed_by_id=staff_user.id)
        inventory_service.record_damage(product.id, 2, performed_by_id=staff_user.id)

        summary = inventory_service.movement_summary(product_id=product.id)

        assert summary["total_stock_in"] == 15
        assert summary["total_stock_out"] == 3
        assert summary["total_damage"] == 2
        assert summary["net_change"] == 10
        assert summary["log_count"] == 4

    def test_list_logs_filters_and_paginates(self, make_product, staff_user):
        product = make_product(quantity=10)
        for _ in range(3):
            inventory_service.stock_out(product.id, 1, performed_by_id=staff_user.id)

        page = inventory_service.list_inventory_logs(
            product_id=product.id, movement_type="stock_out", page=1, per_page=2,
        )

        assert page["pagination"]["total"] == 3
        assert page["pagination"]["has_next"] is True
        assert [row["type"] for row in page["items"]] == ["STOCK_OUT", "STOCK_OUT"]
        assert page["items"][0]["id"] > page["items"][1]["id"]

    def test_unknown_log_type_filter(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.list_inventory_logs(movement_type="TELEPORT")

    def test_get_missing_log(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.get_inventory_log(123_456)

    def test_low_stock(self, make_product):
        low = make_product(quantity=2, min_stock=5)
        make_product(quantity=50, min_stock=5)

        ids = [p.id for p in inventory_service.low_stock_products()]

        assert ids == [low.id]
