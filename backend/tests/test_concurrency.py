"""
Concurrent writers against an on-disk SQLite database.

The shared in-memory test database hands every thread the same connection,
so these tests build their own app on a temporary file.
"""

import threading

import pytest

from backoffice import create_app
from backoffice.errors import InsufficientStockError
from backoffice.extensions import db
from backoffice.models import InventoryLog, MovementType, Product
from backoffice.services import inventory_service, products_service, sales_service
from backoffice.services.auth_service import create_user


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()
        user = create_user(email="clerk@test.local", name="Clerk", password="Password123!", role="ADMIN")
        category = products_service.create_category({"name": "Hardware"}, created_by_id=user.id)
        product = products_service.create_product(
            {
                "sku": "CONCUR-1",
                "name": "Concurrent Product",
                "price": "10.00",
                "cost_price": "4.00",
                "quantity": 10,
                "category_id": category.id,
            },
            created_by_id=user.id,
        )
        app.config["TEST_USER_ID"] = user.id
        app.config["TEST_PRODUCT_ID"] = product.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_parallel(app, worker, count):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def _target():
        with app.app_context():
            try:
                barrier.wait()
                value = worker()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_target) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_stock_out_never_oversells(file_app):
    user_id = file_app.config["TEST_USER_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    results = _run_parallel(
        file_app,
        lambda: inventory_service.stock_out(product_id, 7, performed_by_id=user_id).log.new_stock,
        2,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert successes == [3]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStockError)

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity == 3
        outs = db.session.query(InventoryLog).filter_by(product_id=product_id, type=MovementType.STOCK_OUT).all()
        assert len(outs) == 1
        assert inventory_service.verify_ledger(product_id) == []


def test_concurrent_sales_get_unique_numbers(file_app):
    user_id = file_app.config["TEST_USER_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    def _sell():
        sale = sales_service.create_sale(
            staff_id=user_id,
            items=[{"product_id": product_id, "quantity": 1}],
            payment_method="CASH",
        )
        return sale.sale_number

    results = _run_parallel(file_app, _sell, 5)

    assert not [r for r in results if isinstance(r, Exception)]
    assert len(set(results)) == 5

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity == 5
        assert inventory_service.verify_ledger(product_id) == []
