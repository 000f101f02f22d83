"""
Base models and mixins for SQLAlchemy ORM.

Provides the declarative base, audit mixins whose columns are written
exclusively by the auditing interceptor, and common model utilities.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, String
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import declarative_base


# SQLAlchemy declarative base for all ORM models
Base = declarative_base()


def utc_now() -> datetime:
    """
    Get the current UTC time as a naive datetime.

    Returns:
        Naive datetime in UTC (e.g., datetime(2025, 1, 15, 10, 30, 45, 123456))

    Note:
        SQLite drops tzinfo on round trip, so audit timestamps are stored
        naive and always mean UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CreationTimestampMixin:
    """
    Mixin that adds an immutable created_at column.

    The value is stamped on the first flush of the instance and never
    changes afterwards.

    Attributes:
        created_at: UTC timestamp when record was first written
    """

    created_at = Column(
        DateTime,
        nullable=False,
        doc="UTC timestamp when record was created"
    )


class AuditMixin(CreationTimestampMixin):
    """
    Mixin that adds full audit metadata columns.

    Attributes:
        created_at: UTC timestamp when record was first written
        created_by: Actor that created the record
        updated_at: UTC timestamp of the last audited modification
        updated_by: Actor of the last audited modification
    """

    created_by = Column(
        String(255),
        nullable=True,
        doc="Actor that created the record"
    )

    updated_at = Column(
        DateTime,
        nullable=True,
        doc="UTC timestamp when record was last modified"
    )

    updated_by = Column(
        String(255),
        nullable=True,
        doc="Actor that last modified the record"
    )


class ModelMixin:
    """Column snapshot and a short repr keyed on identity."""

    def to_dict(self) -> dict[str, Any]:
        """
        Snapshot of mapped column attributes, keyed by attribute name.

        Associations are not included.
        """
        return {
            attribute.key: getattr(self, attribute.key)
            for attribute in sa_inspect(type(self)).column_attrs
        }

    def __repr__(self) -> str:
        state = sa_inspect(self)
        identity = state.identity or ("transient",)
        label = getattr(self, "name", None) if "name" not in state.unloaded else None
        suffix = f" {label!r}" if label is not None else ""
        return f"<{type(self).__name__} {identity[0]!r}{suffix}>"
