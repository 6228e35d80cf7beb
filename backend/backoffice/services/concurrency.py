# Overview: Transaction boundary and retry helpers shared by the lottery services.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import AppError, UnexpectedError
from ..extensions import db

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite serializes writers with its database lock instead.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    Run a block as one database transaction.

    Commits when the block finishes, rolls back on any exception. Raw
    SQLAlchemy failures are re-raised as UnexpectedError so callers never
    see storage-engine details.
    """
    try:
        yield db.session
        db.session.commit()
    except AppError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Transaction rolled back")
        raise UnexpectedError("Database operation failed") from exc
    except Exception:
        db.session.rollback()
        raise


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RETRYABLE_ERRORS):
        return True
    return isinstance(exc, UnexpectedError) and isinstance(exc.__cause__, RETRYABLE_ERRORS)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts), whether raw or wrapped by atomic().
    Business errors are never retried.
    """
    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            if not _is_retryable(exc):
                raise
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
