"""Retried read-then-write transactions."""

from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from homeserve.logging_config import get_logger
from homeserve.storage.db import Database

logger = get_logger(__name__)

T = TypeVar("T")

# SQLSTATEs for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


class StoreUnavailableError(Exception):
    """The database could not be used; nothing was committed."""


class TransactionConflictError(Exception):
    """Write conflicts persisted past the retry bound.

    Transient: retrying the whole operation later is safe.
    """

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} conflicted {attempts} times")


class _WriteConflict(Exception):
    """A concurrent writer touched our read or write set."""


def is_write_conflict(exc: DBAPIError) -> bool:
    """Whether a database error means "retry", not "broken"."""
    if isinstance(exc, IntegrityError):
        return True
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    message = str(orig or exc).lower()
    return "database is locked" in message or "deadlock" in message


def default_wait():
    return wait_random_exponential(multiplier=0.05, max=1.0)


def run_transaction(
    database: Database,
    work: Callable[[Session], T],
    *,
    operation: str,
    max_attempts: int,
    wait=None,
    isolation_level: str | None = None,
    **log_context,
) -> T:
    """Run ``work`` in a transaction, retrying the whole of it on conflict.

    ``work`` must perform all of its reads through the session it is
    given, so every attempt decides on fresh data. Unique-constraint
    violations, serialization failures, deadlocks and SQLite lock
    timeouts count as conflicts; any other database error is fatal.

    Args:
        database: Database to run against
        work: Callable doing the reads and writes; its result is returned
        operation: Name used in logs and errors
        max_attempts: Total attempts before giving up
        wait: tenacity wait strategy between attempts
        isolation_level: Optional isolation level for each attempt

    Returns:
        Result of the committed attempt

    Raises:
        TransactionConflictError: Every attempt conflicted
        StoreUnavailableError: A non-conflict database error occurred
    """

    def attempt_once() -> T:
        try:
            with database.session(isolation_level=isolation_level) as session:
                result = work(session)
            return result
        except OperationalError as e:
            if is_write_conflict(e):
                raise _WriteConflict() from e
            logger.error(f"{operation}_store_unavailable", error=str(e.orig), **log_context)
            raise StoreUnavailableError(str(e.orig)) from e
        except DBAPIError as e:
            if is_write_conflict(e):
                logger.info(f"{operation}_write_conflict", error=str(e.orig), **log_context)
                raise _WriteConflict() from e
            logger.error(f"{operation}_store_error", error=str(e.orig), **log_context)
            raise StoreUnavailableError(str(e.orig)) from e

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait if wait is not None else default_wait(),
        retry=retry_if_exception_type(_WriteConflict),
        before_sleep=lambda state: logger.info(
            f"{operation}_conflict_retry",
            attempt=state.attempt_number,
            **log_context,
        ),
    )

    try:
        for attempt in retrying:
            with attempt:
                return attempt_once()
    except RetryError as e:
        logger.error(f"{operation}_conflicts_exhausted", attempts=max_attempts, **log_context)
        raise TransactionConflictError(operation, max_attempts) from e.last_attempt.exception()
