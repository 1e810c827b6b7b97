# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors raised by the service layer.

Every error carries a stable `kind` (what went wrong, for clients) and an
HTTP status (how routes surface it). Services raise; routes translate via
`to_response()`. Raising any of these inside a write transaction rolls
back the whole operation.
"""

from __future__ import annotations

from flask import jsonify


class DomainError(Exception):
    """Base class for classified, user-facing failures."""

    kind = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def to_response(self):
        return jsonify(self.to_dict()), self.status_code


class NotFoundError(DomainError):
    """Referenced entity is missing or inactive."""

    kind = "NOT_FOUND"
    status_code = 404


class ValidationError(DomainError, ValueError):
    """400-level input problem (malformed or out-of-range argument)."""

    kind = "INVALID_ARGUMENT"
    status_code = 400


class InsufficientStockError(DomainError):
    """A stock-out would drive on-hand quantity below zero."""

    kind = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str,
        available: int,
        requested: int,
    ):
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InvalidTransitionError(DomainError):
    """Sale status change not permitted by the transition table."""

    kind = "INVALID_TRANSITION"
    status_code = 400

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class ConflictError(DomainError, ValueError):
    """409-level uniqueness or business rule conflict (e.g., duplicate SKU)."""

    kind = "CONFLICT"
    status_code = 409


class ForbiddenError(DomainError):
    """Caller's role is too low for this particular target (e.g., granting SUPERADMIN)."""

    kind = "FORBIDDEN"
    status_code = 403
