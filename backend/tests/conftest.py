"""
Pytest fixtures for backoffice backend tests.

Provides test database setup, users with each role, catalog factories and
an authenticated test client helper.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Customer
from backoffice.services import products_service
from backoffice.services import session_service
from backoffice.services.auth_service import create_user

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def admin_user(db_session):
    return create_user(email="admin@test.local", name="Admin", password=TEST_PASSWORD, role="ADMIN")


@pytest.fixture
def staff_user(db_session):
    return create_user(email="staff@test.local", name="Staff", password=TEST_PASSWORD, role="STAFF")


@pytest.fixture
def customer_user(db_session):
    return create_user(email="shopper@test.local", name="Shopper", password=TEST_PASSWORD, role="CUSTOMER")


@pytest.fixture
def category(db_session, admin_user):
    return products_service.create_category({"name": "Beverages"}, created_by_id=admin_user.id)


@pytest.fixture
def make_product(db_session, admin_user, category):
    """Factory: make_product(quantity=10, price="15.00", ...) through the catalog service."""
    counter = {"n": 0}

    def _make(quantity=10, price="15.00", cost_price="8.00", **overrides):
        counter["n"] += 1
        payload = {
            "sku": f"SKU-{counter['n']:04d}",
            "name": f"Product {counter['n']}",
            "price": price,
            "cost_price": cost_price,
            "quantity": quantity,
            "category_id": category.id,
        }
        payload.update(overrides)
        return products_service.create_product(payload, created_by_id=admin_user.id)

    return _make


@pytest.fixture
def customer(db_session):
    c = Customer(name="Jane Buyer", email="jane@example.com")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def auth_headers(db_session):
    """auth_headers(user) -> Authorization header for a fresh session."""
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
