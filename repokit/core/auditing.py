"""
Auditing interceptor.

Stamps audit columns on every flush through a SQLAlchemy ``before_flush``
listener:

- new instances: created_at, created_by and, unless the policy says a
  creation is not a modification, updated_at and updated_by
- modified persistent instances: updated_at, updated_by
- created_at / created_by are restored if caller code changed them

The actor and clock come from the AuditContext stored in the session's
``info`` dict by the persistence scope. Bulk statements never pass
through a flush and are therefore not audited.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, attributes

from repokit.core.config import settings
from repokit.models.base import utc_now

logger = logging.getLogger(__name__)

AUDIT_CONTEXT_KEY = "repokit.audit"

CREATION_FIELDS = ("created_at", "created_by")


@dataclass(frozen=True)
class AuditPolicy:
    """
    Attributes:
        modify_on_create: Stamp updated_at/by on the creating write too
    """
    modify_on_create: bool = True


@dataclass(frozen=True)
class AuditContext:
    """
    Per-scope auditing input.

    Attributes:
        auditor: Actor recorded in created_by / updated_by
        policy: Audit policy
        clock: Returns the current (naive UTC) time
    """
    auditor: str
    policy: AuditPolicy = field(default_factory=AuditPolicy)
    clock: Callable[[], datetime] = utc_now


def default_context() -> AuditContext:
    """Context used by sessions that were not opened through a scope."""
    return AuditContext(
        auditor=settings.auditor,
        policy=AuditPolicy(modify_on_create=settings.audit_modify_on_create),
    )


def _set(instance: Any, name: str, value: Any) -> None:
    if hasattr(type(instance), name):
        setattr(instance, name, value)


def stamp_creation(instance: Any, context: AuditContext, now: datetime) -> None:
    _set(instance, "created_at", now)
    _set(instance, "created_by", context.auditor)
    if context.policy.modify_on_create:
        stamp_modification(instance, context, now)


def stamp_modification(instance: Any, context: AuditContext, now: datetime) -> None:
    _set(instance, "updated_at", now)
    _set(instance, "updated_by", context.auditor)


def restore_creation(instance: Any) -> None:
    """Undo caller changes to creation metadata of a persistent instance."""
    for name in CREATION_FIELDS:
        if not hasattr(type(instance), name):
            continue
        history = attributes.get_history(instance, name)
        if history.has_changes() and history.deleted:
            attributes.set_committed_value(instance, name, history.deleted[0])


def _before_flush(session: Session, flush_context, instances) -> None:  # noqa: ANN001
    context: AuditContext = session.info.get(AUDIT_CONTEXT_KEY) or default_context()
    now = context.clock()

    created = 0
    for instance in session.new:
        stamp_creation(instance, context, now)
        created += 1

    modified = 0
    for instance in session.dirty:
        if not session.is_modified(instance, include_collections=False):
            continue
        restore_creation(instance)
        stamp_modification(instance, context, now)
        modified += 1

    if created or modified:
        logger.debug(
            "Audit metadata stamped",
            extra={"auditor": context.auditor, "created": created, "modified": modified}
        )


def install_audit_listener() -> None:
    """Register the before_flush listener on all sessions (idempotent)."""
    if not event.contains(Session, "before_flush", _before_flush):
        event.listen(Session, "before_flush", _before_flush)


def uninstall_audit_listener() -> None:
    if event.contains(Session, "before_flush", _before_flush):
        event.remove(Session, "before_flush", _before_flush)
