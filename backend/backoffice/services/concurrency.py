# Overview: Service-layer operations for concurrency; transaction boundaries for stock writes.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock there instead.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Open the write transaction before the authoritative stock read.

    On SQLite, BEGIN IMMEDIATE takes the RESERVED lock up front so two
    writers serialize at the read, not at the later UPDATE. If the session
    already holds a write transaction (nested call inside a sale), this is
    a no-op and the caller joins it.
    """
    if db.engine.dialect.name != "sqlite":
        return

    dbapi_conn = db.session.connection().connection.dbapi_connection
    if dbapi_conn.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls back and
    propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


@contextmanager
def write_transaction():
    """
    Run a block as one atomic stock-write unit.

    Commits on success; on any exception rolls back every write of the block
    (product quantity, log entries, sale rows) and re-raises.
    """
    begin_write_transaction()
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
