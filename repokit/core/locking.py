"""
Locking mediator.

Translates a requested lock mode and query hints into SQLAlchemy
statement options, and asks the store for a bounded lock wait where the
dialect supports it.

Lock modes:
- NONE: plain read
- PESSIMISTIC_READ: shared row lock (FOR SHARE)
- PESSIMISTIC_WRITE: exclusive row lock (FOR UPDATE), blocks until the
  holder commits or the store's lock timeout fires (LockTimeout)
- OPTIMISTIC: no blocking; a conflicting concurrent commit fails at
  flush/commit with OptimisticConflict via the entity's version counter

SQLite has no row locks: the dialect omits FOR UPDATE and writers are
serialized by the database lock, bounded by the busy timeout configured
on the engine.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import Select, text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class LockMode(str, Enum):
    """Lock requested for the rows a query reads."""

    NONE = "none"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"
    OPTIMISTIC = "optimistic"

    @property
    def pessimistic(self) -> bool:
        return self in (LockMode.PESSIMISTIC_READ, LockMode.PESSIMISTIC_WRITE)


@dataclass(frozen=True)
class QueryHints:
    """
    Per-query execution hints.

    Attributes:
        read_only: Detach loaded entities so changes are never flushed
        populate_existing: Overwrite identity-map instances with fresh row state
        lock_timeout_ms: Override the configured pessimistic lock wait
    """
    read_only: bool = False
    populate_existing: bool = False
    lock_timeout_ms: Optional[int] = None


def apply_lock(statement: Select, mode: LockMode) -> Select:
    """
    Add the row-lock clause for a lock mode to a SELECT.

    Args:
        statement: SELECT to lock
        mode: Requested lock mode

    Returns:
        The statement with FOR SHARE / FOR UPDATE applied when pessimistic
    """
    if mode is LockMode.PESSIMISTIC_WRITE:
        return statement.with_for_update()
    if mode is LockMode.PESSIMISTIC_READ:
        return statement.with_for_update(read=True)
    return statement


async def acquire_lock(session: AsyncSession, mode: LockMode, timeout_ms: Optional[int]) -> None:
    """
    Bound how long the next locking statement of this transaction may wait.

    Only dialects with a per-transaction lock timeout are configured here;
    elsewhere the engine-level timeout applies.

    Args:
        session: Session whose transaction will take the lock
        mode: Requested lock mode
        timeout_ms: Maximum wait in milliseconds (None keeps the store default)
    """
    if not mode.pessimistic or timeout_ms is None:
        return

    dialect = session.bind.dialect.name if session.bind is not None else None
    if dialect == "postgresql":
        # SET LOCAL does not accept bind parameters
        await session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))
    elif dialect == "mysql":
        seconds = max(1, int(timeout_ms) // 1000)
        await session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))
    else:
        logger.debug(
            "Dialect has no per-transaction lock timeout; engine timeout applies",
            extra={"dialect": dialect, "lock_mode": mode.value}
        )
