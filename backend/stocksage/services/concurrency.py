# Overview: Row-locking and retry helpers for contended read-modify-write work.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id check on
    the UPDATE is what catches a concurrent writer.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of DB work with retry on concurrency-related failures.

    func must be safe to re-run from scratch: on OperationalError (deadlocks,
    lock timeouts) or StaleDataError (optimistic version conflict) the session
    is rolled back and func is called again after an exponential backoff.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))

