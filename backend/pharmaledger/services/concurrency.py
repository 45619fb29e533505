# Overview: Row locking and bounded retry for ledger units of work.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from .errors import ContentionTimeout

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id_col on the locked models still turns a lost
    update into StaleDataError, which run_with_retry handles.
    """
    return query.with_for_update()


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1, operation: str = "ledger"):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry so func() re-reads fresh rows. When every attempt fails the last
    error is wrapped in ContentionTimeout.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                logger.error(
                    "%s: contention persisted after %d attempts: %s", operation, attempts, exc
                )
                raise ContentionTimeout(
                    f"{operation} could not complete due to contention; safe to retry",
                    details={"attempts": attempts, "cause": type(exc).__name__},
                ) from exc
            delay = backoff_base * (2 ** attempt)
            logger.warning(
                "%s: concurrency conflict (%s), retrying in %.3fs (attempt %d/%d)",
                operation, type(exc).__name__, delay, attempt + 1, attempts,
            )
            if delay > 0:
                time.sleep(delay)
