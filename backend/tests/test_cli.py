"""
Flask CLI command tests.
"""

from sqlalchemy import text

from backoffice.extensions import db
from backoffice.models import User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0
    assert "Created superadmin" in first.output
    assert "already exists" in second.output
    assert db.session.query(User).filter_by(role="SUPERADMIN").count() == 1


def test_users_create_and_deactivate(app, db_session):
    runner = app.test_cli_runner()

    created = runner.invoke(args=[
        "users", "create",
        "--email", "clerk@shop.local",
        "--name", "Clerk",
        "--password", "Password123!",
        "--role", "STAFF",
    ])
    assert created.exit_code == 0

    listed = runner.invoke(args=["users", "list"])
    assert "clerk@shop.local" in listed.output

    deactivated = runner.invoke(args=["users", "deactivate", "--email", "clerk@shop.local"])
    assert deactivated.exit_code == 0
    assert db.session.query(User).filter_by(email="clerk@shop.local").one().is_active is False


def test_users_create_rejects_weak_password(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        "users", "create", "--email", "weak@shop.local", "--name", "Weak", "--password", "short",
    ])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_inventory_verify(app, make_product):
    product = make_product(quantity=6)
    runner = app.test_cli_runner()

    clean = runner.invoke(args=["inventory", "verify"])
    assert clean.exit_code == 0
    assert "consistent" in clean.output

    db.session.execute(text("UPDATE products SET quantity = 99 WHERE id = :id"), {"id": product.id})
    db.session.commit()

    broken = runner.invoke(args=["inventory", "verify", "--product-id", str(product.id)])
    assert broken.exit_code == 1
    assert "quantity_mismatch" in broken.output
