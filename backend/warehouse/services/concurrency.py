# Overview: Row locking and retry helpers shared by the mutating services.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Mutations that rely on these locks call begin_write() first.
    """
    return query.with_for_update()


def begin_write():
    """
    Take the database write lock before the first read of a mutation.

    SQLite has no row locks, so the whole transaction is opened with
    BEGIN IMMEDIATE and concurrent writers queue on the busy timeout.
    Other dialects rely on lock_for_update() and this is a no-op.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=DEFAULT_RETRY_ON):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, serialization failures, lock
    timeouts) and StaleDataError by default. The session is rolled back
    before every retry and before any other exception propagates, so a
    failed operation never leaves partial writes pending.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency conflict (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
