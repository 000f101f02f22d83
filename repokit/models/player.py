"""
Player model.

Players carry scalar body measurements, an optional many-to-one team
reference, a version counter for optimistic locking and full audit
metadata.
"""

from typing import Optional

from sqlalchemy import Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from repokit.models.base import Base, AuditMixin, ModelMixin
from repokit.models.team import Team


class Player(Base, AuditMixin, ModelMixin):
    """
    Player registered with at most one team.

    Attributes:
        id: Store-generated integer primary key
        name: Player name
        height: Height in centimetres (0 when unknown)
        weight: Weight in kilograms (0 when unknown)
        team_id: Foreign key to Team (owning side of the association)
        version: Optimistic-locking counter maintained by the ORM
        team: Team the player belongs to (lazy unless fetched)
    """

    __tablename__ = "players"

    # Declared-text lookups referenced by name from repositories
    __named_queries__ = {
        "find_by_name": "SELECT * FROM players WHERE name = :name",
        "find_by_height_greater_than": "SELECT * FROM players WHERE height > :height",
    }

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        doc="Store-generated primary key"
    )

    name = Column(
        String(100),
        nullable=True,
        doc="Player name"
    )

    height = Column(
        Integer,
        nullable=False,
        default=0,
        doc="Height in centimetres"
    )

    weight = Column(
        Integer,
        nullable=False,
        default=0,
        doc="Weight in kilograms"
    )

    team_id = Column(
        Integer,
        ForeignKey("teams.id"),
        nullable=True,
        doc="Foreign key to Team"
    )

    version = Column(
        Integer,
        nullable=False,
        doc="Optimistic-locking version counter"
    )

    # Relationships
    team = relationship("Team", back_populates="players")

    __table_args__ = (
        Index("idx_players_name", "name"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(
        self,
        name: Optional[str] = None,
        height: int = 0,
        weight: int = 0,
        team: Optional[Team] = None,
    ):
        self.name = name
        self.height = height
        self.weight = weight
        if team is not None:
            self.change_team(team)

    def change_team(self, team: Team) -> None:
        """Move the player to another team; the back-reference follows."""
        self.team = team
