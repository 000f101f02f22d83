"""
Director model.

Directors use caller-assigned string identities, so "new or existing"
cannot be read off a missing primary key. The creation timestamp decides.
"""

from sqlalchemy import Column, String

from repokit.models.base import Base, CreationTimestampMixin, ModelMixin


class Director(Base, CreationTimestampMixin, ModelMixin):
    """
    Director with a caller-assigned identifier.

    Attributes:
        id: Caller-assigned primary key
        name: Display name
        created_at: Stamped on first write; None means never persisted
    """

    __tablename__ = "directors"

    id = Column(
        String(64),
        primary_key=True,
        doc="Caller-assigned primary key"
    )

    name = Column(
        String(100),
        nullable=True,
        doc="Display name"
    )

    def is_new(self) -> bool:
        """A director is new until the auditing interceptor stamped it."""
        return self.created_at is None
