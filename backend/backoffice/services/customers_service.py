# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import func

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer
from ..validation import CUSTOMER_POLICY, validate_payload


def _normalize(patch: dict) -> dict:
    if "email" in patch:
        email = (patch["email"] or "").strip().lower() or None
        if email is not None and "@" not in email:
            raise ValidationError("email must be a valid email address")
        patch["email"] = email
    return patch


def _check_email_free(email: str | None, *, exclude_id: int | None = None) -> None:
    if not email:
        return
    q = db.session.query(Customer.id).filter(func.lower(Customer.email) == email)
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    if q.first():
        raise ConflictError("Customer with this email already exists")


def create_customer(payload: dict) -> Customer:
    patch = _normalize(validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False))
    _check_email_free(patch.get("email"))

    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, payload: dict) -> Customer:
    customer = get_customer(customer_id)
    patch = _normalize(validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True))
    _check_email_free(patch.get("email"), exclude_id=customer.id)

    for k, v in patch.items():
        setattr(customer, k, v)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def list_customers(search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.phone.ilike(like)))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()
