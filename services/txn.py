# services/txn.py
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from models.base import session_scope
from services.errors import ConcurrencyConflictError

_CONTENTION_MARKERS = ("database is locked", "deadlock detected",
                       "could not serialize", "lock not available")


def is_contention(exc: OperationalError) -> bool:
    msg = str(getattr(exc, "orig", exc)).lower()
    return any(m in msg for m in _CONTENTION_MARKERS)


@contextmanager
def ledger_scope():
    """session_scope() that reports lock/version contention as ConcurrencyConflictError."""
    try:
        with session_scope() as s:
            yield s
    except StaleDataError as exc:
        raise ConcurrencyConflictError(
            "record was modified by a concurrent transaction") from exc
    except OperationalError as exc:
        if is_contention(exc):
            raise ConcurrencyConflictError(
                "storage lock contention, retry") from exc
        raise
