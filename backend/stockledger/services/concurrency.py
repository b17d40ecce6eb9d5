# Overview: Service-layer helpers for row locking, serialized units of work and deadlines.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConsistencyError,
    EngineError,
    OperationTimeoutError,
    PersistenceFailure,
)
from ..extensions import db


# Driver messages that mean "gave up waiting", not "broken"
_TIMEOUT_MARKERS = (
    "database is locked",
    "lock timeout",
    "lock wait timeout",
    "canceling statement due to statement timeout",
    "statement timeout",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; serialized_unit_of_work()
    takes the database write lock up front there instead.
    """
    return query.with_for_update()


class Deadline:
    """Wall-clock time limit for one engine operation."""

    def __init__(self, seconds: float, operation: str):
        self.seconds = seconds
        self.operation = operation
        self._expires_at = time.monotonic() + seconds

    @property
    def remaining(self) -> float:
        return self._expires_at - time.monotonic()

    def check(self) -> None:
        if self.remaining <= 0:
            raise OperationTimeoutError(
                f"{self.operation} exceeded its {self.seconds:g}s deadline",
                details={"operation": self.operation, "timeout_seconds": self.seconds},
            )


def _is_timeout(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def _begin_serialized(deadline: Deadline) -> None:
    conn = db.session.connection()
    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        # Take the write lock before the first read so concurrent sales of the
        # same product queue up instead of both passing the stock check.
        raw = conn.connection.dbapi_connection
        if not raw.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        timeout_ms = max(1, int(deadline.remaining * 1000))
        conn.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


@contextmanager
def serialized_unit_of_work(operation: str):
    """
    Run one mutating operation as a single transaction.

    - Commits when the block exits cleanly.
    - Rolls back on any exception; nothing the block wrote survives.
    - Engine errors pass through unchanged.
    - OperationalError lock/statement waits -> OperationTimeoutError
    - StaleDataError (version_id mismatch) -> ConsistencyError
    - any other SQLAlchemyError -> PersistenceFailure
    - a failed rollback after partial mutation -> ConsistencyError

    Yields the Deadline so long-running blocks can check it between steps.
    """
    deadline = Deadline(current_app.config.get("OPERATION_TIMEOUT_SECONDS", 30), operation)
    try:
        _begin_serialized(deadline)
        yield deadline
        deadline.check()
        db.session.commit()
    except Exception as exc:
        _rollback_or_escalate(operation, exc)
        if isinstance(exc, EngineError):
            raise
        if isinstance(exc, StaleDataError):
            raise ConsistencyError(
                f"{operation} lost a concurrent update race",
                details={"operation": operation},
            ) from exc
        if isinstance(exc, OperationalError) and _is_timeout(exc):
            raise OperationTimeoutError(
                f"{operation} timed out waiting for the datastore",
                details={"operation": operation},
            ) from exc
        if isinstance(exc, SQLAlchemyError):
            current_app.logger.exception("%s failed; unit of work rolled back", operation)
            raise PersistenceFailure(
                f"{operation} failed to persist",
                details={"operation": operation},
            ) from exc
        raise


def _rollback_or_escalate(operation: str, original: Exception) -> None:
    try:
        db.session.rollback()
    except SQLAlchemyError as rollback_exc:
        current_app.logger.exception("Rollback failed after %s error", operation)
        raise ConsistencyError(
            f"{operation} partially applied and could not be rolled back",
            details={"operation": operation, "original_error": str(original)},
        ) from rollback_exc


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute an engine operation with retry on lock contention.

    Only OperationTimeoutError / ConsistencyError (lock waits and optimistic
    locking conflicts) are retried; business errors never are. attempts
    defaults to LOCK_RETRY_ATTEMPTS, which is 1 (no retry) unless configured.
    """
    if attempts is None:
        attempts = int(current_app.config.get("LOCK_RETRY_ATTEMPTS", 1))
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationTimeoutError, ConsistencyError):
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
