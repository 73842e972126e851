"""
Concurrency Control: Optimistic and Pessimistic Locking

Pessimistic: check-then-write sequences lock the device row
(SELECT ... FOR UPDATE) for the rest of the transaction.
Optimistic: mapped rows carry a version column; a stale write raises
StaleDataError. Both kinds of conflict are classified here so the unit of
work can retry them.
"""

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_write_conflict(exc: BaseException) -> bool:
    """
    Check whether an exception is a retryable write conflict.

    Args:
        exc: Exception raised inside or at the end of a transaction

    Returns:
        True for stale versioned rows, serialization failures, deadlocks
        and SQLite lock timeouts
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate(exc) in RETRYABLE_SQLSTATES:
            return True
        return "database is locked" in str(exc.orig)
    return False
