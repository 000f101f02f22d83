"""
Team model.

A team owns no foreign keys; its players reference it. The one-to-many
side is the inverse of Player.team.
"""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from repokit.models.base import Base, AuditMixin, ModelMixin


class Team(Base, AuditMixin, ModelMixin):
    """
    Team a player can belong to.

    Attributes:
        id: Store-generated integer primary key
        name: Team name
        players: Players whose team_id points at this team
    """

    __tablename__ = "teams"

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        doc="Store-generated primary key"
    )

    name = Column(
        String(100),
        nullable=False,
        doc="Team name"
    )

    # Relationships
    players = relationship("Player", back_populates="team")
