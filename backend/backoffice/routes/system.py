# backend/backoffice/routes/system.py
"""
Liveness and database health.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import InventoryLog, Product, Sale
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Round-trip a trivial query and count the core tables."""
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        counts = {
            "products": db.session.query(Product).count(),
            "sales": db.session.query(Sale).count(),
            "inventory_logs": db.session.query(InventoryLog).count(),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": "Database error",
        }

    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": counts,
    }


@system_bp.get("/health")
def health():
    """200 while the database answers, 503 otherwise."""
    database = check_database_health()
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, 200 if database["status"] == "healthy" else 503
