"""
Error taxonomy for the data-access layer.

Every failure the repository layer surfaces to callers derives from
RepositoryError. Store-level exceptions raised by SQLAlchemy or the DBAPI
driver are translated at the seam where statements are executed:

- StaleDataError (version counter mismatch) -> OptimisticConflict
- DBAPIError caused by lock contention -> LockTimeout
- DetachedInstanceError (lazy load outside a scope) -> DetachedAccess

None of these are retried here. Retry policy belongs to the application.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import DetachedInstanceError, StaleDataError


class RepositoryError(Exception):
    """Base class for all data-access failures."""


class InvalidSpecification(RepositoryError):
    """Raised when a predicate or path references an unknown attribute."""


class UnresolvableIntent(RepositoryError):
    """Raised when a lookup pattern, declared query or parameter cannot be resolved."""


class UnsupportedProjection(RepositoryError):
    """Raised when no projection descriptor is registered for a requested type."""


class DetachedAccess(RepositoryError):
    """Raised when an unloaded association is accessed after its scope ended."""


class LockTimeout(RepositoryError):
    """Raised when a lock could not be acquired before the store timed out."""


class OptimisticConflict(RepositoryError):
    """Raised at flush/commit when a row's version counter no longer matches."""


class NotFound(RepositoryError):
    """Raised when a single-result lookup demanding exactly one row found none."""


class NonUniqueResult(RepositoryError):
    """Raised when a single-result lookup matched more than one row."""


# Message fragments / SQLSTATE codes that identify lock contention
_LOCK_MESSAGES = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock wait timeout",
    "could not obtain lock",
    "deadlock detected",
)
_LOCK_SQLSTATES = {"55P03", "40P01"}


def is_lock_failure(exc: DBAPIError) -> bool:
    """
    Decide whether a driver error was caused by lock contention.

    Args:
        exc: SQLAlchemy-wrapped DBAPI error

    Returns:
        True if the error reports a lock timeout or deadlock
    """
    message = str(exc.orig if exc.orig is not None else exc).lower()
    if any(fragment in message for fragment in _LOCK_MESSAGES):
        return True

    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code in _LOCK_SQLSTATES


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """
    Translate store exceptions raised inside the block into the taxonomy.

    Example:
        with translate_store_errors():
            await session.flush()
    """
    try:
        yield
    except StaleDataError as exc:
        raise OptimisticConflict(str(exc)) from exc
    except DetachedInstanceError as exc:
        raise DetachedAccess(str(exc)) from exc
    except DBAPIError as exc:
        if is_lock_failure(exc):
            raise LockTimeout(str(exc.orig or exc)) from exc
        raise
