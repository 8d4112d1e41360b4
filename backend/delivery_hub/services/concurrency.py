# Overview: Service-layer storage gateway; row locking, retry, scoped transactions and error classification.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, DeliveryHubError, InternalError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)
    return max(1, attempts), backoff_base


def invalidate_on_disconnect(exc: Exception) -> bool:
    """
    Dispose the engine pool when the driver reports a dead connection.

    Returns True when the pool was reset, so the next checkout reconnects.
    """
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        current_app.logger.warning("Database connection lost; resetting connection pool")
        db.session.remove()
        db.engine.dispose()
        return True
    return False


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, dropped connections) and
    StaleDataError (optimistic locking conflicts). Business errors raised by
    func roll back and propagate untouched.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            invalidate_on_disconnect(exc)
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
def transaction():
    """
    Scoped unit of work on the request session.

    Commits when the block exits cleanly; rolls back on any exception
    (business or storage) and re-raises it. The session stays usable for the
    next operation either way.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def atomic(func, *, integrity_error=None):
    """
    Run func inside a transaction with retry, mapping storage failures.

    - DeliveryHubError from func propagates as-is (after rollback)
    - IntegrityError is passed to integrity_error(exc) when given, which
      must return the ConflictError to raise; otherwise a generic conflict
    - OperationalError / StaleDataError that survive retries, and any other
      DBAPIError, become InternalError
    """
    def _op():
        with transaction():
            return func()

    try:
        return run_with_retry(_op)
    except DeliveryHubError:
        raise
    except IntegrityError as exc:
        if integrity_error is not None:
            raise integrity_error(exc) from exc
        raise ConflictError("Conflicting change; reload and try again") from exc
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.error("Storage operation failed after retries: %s", exc)
        raise InternalError("Storage temporarily unavailable", transient=True) from exc
    except DBAPIError as exc:
        invalidate_on_disconnect(exc)
        current_app.logger.exception("Storage operation failed")
        raise InternalError() from exc


def constraint_name(exc: IntegrityError) -> str:
    """Lower-cased driver message, used to tell which uniqueness was violated."""
    return str(getattr(exc, "orig", exc)).lower()
