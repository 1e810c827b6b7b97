"""
Catalog and customer record tests.
"""

from decimal import Decimal

import pytest

from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.extensions import db
from backoffice.models import Category, Product
from backoffice.services import customers_service, products_service, sales_service
from backoffice.services.sale_lifecycle_service import update_sale_status


class TestCreateProduct:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"price": "0"},
            {"cost_price": "-1.00"},
            {"quantity": -1},
            {"min_stock": 50, "max_stock": 10},
        ],
    )
    def test_business_rules(self, make_product, overrides):
        with pytest.raises(ValidationError):
            make_product(**overrides)

    def test_missing_required(self, db_session, category, admin_user):
        with pytest.raises(ValidationError):
            products_service.create_product({"name": "No SKU", "category_id": category.id}, created_by_id=admin_user.id)

    def test_defaults_from_config(self, make_product, app):
        product = make_product()
        assert product.min_stock == app.config["DEFAULT_MIN_STOCK"]
        assert product.max_stock == app.config["DEFAULT_MAX_STOCK"]

    def test_duplicate_barcode(self, make_product):
        make_product(barcode="4006381333931")
        with pytest.raises(ConflictError):
            make_product(barcode="4006381333931")

    def test_blank_barcodes_do_not_collide(self, make_product):
        make_product(barcode="")
        assert make_product(barcode="").barcode is None

    def test_unknown_category(self, make_product):
        with pytest.raises(NotFoundError):
            make_product(category_id=777)


class TestUpdateProduct:
    def test_quantity_is_not_writable(self, make_product):
        product = make_product(quantity=3)
        with pytest.raises(ValidationError):
            products_service.update_product(product.id, {"quantity": 30})
        assert db.session.get(Product, product.id).quantity == 3

    def test_price_change(self, make_product):
        product = make_product(price="2.00")
        updated = products_service.update_product(product.id, {"price": 2.5, "name": "Renamed"})
        assert updated.price == Decimal("2.50")
        assert updated.name == "Renamed"

    def test_min_stock_above_existing_max(self, make_product):
        product = make_product(min_stock=1, max_stock=5)
        with pytest.raises(ValidationError):
            products_service.update_product(product.id, {"min_stock": 6})

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            products_service.update_product(404, {"name": "Ghost"})


class TestDeactivateProduct:
    def test_soft_delete_keeps_ledger(self, make_product, admin_user):
        product = make_product(quantity=4)

        products_service.deactivate_product(product.id, performed_by_id=admin_user.id)

        stored = db.session.get(Product, product.id)
        assert stored.is_active is False
        assert stored.inventory_logs.count() == 1
        assert products_service.list_products()["count"] == 0

    def test_refused_while_on_completed_sale(self, make_product, staff_user, admin_user):
        product = make_product(quantity=4)
        sale = sales_service.create_sale(
            staff_id=staff_user.id,
            items=[{"product_id": product.id, "quantity": 1}],
            payment_method="CASH",
        )

        with pytest.raises(ConflictError):
            products_service.deactivate_product(product.id, performed_by_id=admin_user.id)

        update_sale_status(sale.id, "REFUNDED", performed_by_id=admin_user.id)
        products_service.deactivate_product(product.id, performed_by_id=admin_user.id)
        assert db.session.get(Product, product.id).is_active is False


class TestCategories:
    def test_duplicate_name_case_insensitive(self, category, admin_user):
        with pytest.raises(ConflictError):
            products_service.create_category({"name": "beverages"}, created_by_id=admin_user.id)

    def test_name_required(self, db_session, admin_user):
        with pytest.raises(ValidationError):
            products_service.create_category({"description": "nameless"}, created_by_id=admin_user.id)

    def test_rename(self, category, admin_user):
        updated = products_service.update_category(
            category.id, {"name": "Drinks", "description": "Cold and hot"}, performed_by_id=admin_user.id,
        )
        assert updated.name == "Drinks"
        assert updated.description == "Cold and hot"

    def test_rename_keeps_own_name_in_other_case(self, category, admin_user):
        updated = products_service.update_category(
            category.id, {"name": "BEVERAGES"}, performed_by_id=admin_user.id,
        )
        assert updated.name == "BEVERAGES"

    def test_rename_onto_existing_name(self, category, admin_user):
        snacks = products_service.create_category({"name": "Snacks"}, created_by_id=admin_user.id)
        with pytest.raises(ConflictError):
            products_service.update_category(snacks.id, {"name": "beverages"}, performed_by_id=admin_user.id)
        assert db.session.get(Category, snacks.id).name == "Snacks"

    @pytest.mark.parametrize("payload", [{"name": ""}, {"name": None}, {"is_active": False}])
    def test_bad_update(self, category, admin_user, payload):
        with pytest.raises(ValidationError):
            products_service.update_category(category.id, payload, performed_by_id=admin_user.id)

    def test_update_missing(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            products_service.update_category(555, {"name": "Ghost"}, performed_by_id=admin_user.id)

    def test_deactivate_refused_while_products_active(self, make_product, category, admin_user):
        product = make_product(quantity=2)

        with pytest.raises(ConflictError) as exc:
            products_service.deactivate_category(category.id, performed_by_id=admin_user.id)
        assert exc.value.details["product_id"] == product.id
        assert db.session.get(Category, category.id).is_active is True

        products_service.deactivate_product(product.id, performed_by_id=admin_user.id)
        products_service.deactivate_category(category.id, performed_by_id=admin_user.id)

        assert db.session.get(Category, category.id).is_active is False
        assert products_service.list_categories() == []
        assert [c.id for c in products_service.list_categories(include_inactive=True)] == [category.id]

    def test_inactive_category_takes_no_new_products(self, make_product, category, admin_user):
        products_service.deactivate_category(category.id, performed_by_id=admin_user.id)
        with pytest.raises(NotFoundError):
            make_product(quantity=1)

    def test_deactivate_twice_is_noop(self, category, admin_user):
        products_service.deactivate_category(category.id, performed_by_id=admin_user.id)
        again = products_service.deactivate_category(category.id, performed_by_id=admin_user.id)
        assert again.is_active is False

    def test_deactivate_missing(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            products_service.deactivate_category(555, performed_by_id=admin_user.id)


class TestCustomers:
    def test_create_normalizes_email(self, db_session):
        customer = customers_service.create_customer({"name": "Ada", "email": " Ada@Example.COM "})
        assert customer.email == "ada@example.com"

    def test_duplicate_email(self, customer):
        with pytest.raises(ConflictError):
            customers_service.create_customer({"name": "Other Jane", "email": "JANE@example.com"})

    def test_update_and_search(self, customer):
        customers_service.update_customer(customer.id, {"phone": "555-0100"})
        found = customers_service.list_customers(search="0100")
        assert [c.id for c in found] == [customer.id]

    def test_missing(self, db_session):
        with pytest.raises(NotFoundError):
            customers_service.get_customer(999)
