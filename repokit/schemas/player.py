"""
Player projections.

Read-only output shapes selected per call with ``projection=``.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict

from repokit.models.player import Player
from repokit.models.team import Team
from repokit.query.projection import closed_view, dto, open_view


@closed_view(Player)
class PlayerSummary(BaseModel):
    """Name-only view of a player."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None


@open_view(Player, body_spec="height: {height}, weight: {weight}")
class BodySpec(BaseModel):
    """Body measurements rendered as one line."""

    model_config = ConfigDict(frozen=True)

    body_spec: str


@closed_view(Team)
class TeamInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None


@closed_view(Player, nested={"team": TeamInfo})
class PlayerWithTeam(BaseModel):
    """Player measurements with the name of their team."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    height: int = 0
    weight: int = 0
    team: TeamInfo


@dto(Player, "name", "height", "weight")
@dataclass(frozen=True)
class PlayerResponse:
    """Player without its identity."""

    name: Optional[str]
    height: int
    weight: int

    @classmethod
    def of(cls, player: Player) -> "PlayerResponse":
        return cls(player.name, player.height, player.weight)


@dto(Player, "id", "name", "height", "weight")
@dataclass(frozen=True)
class PlayerRow:
    """Player including its identity, built from raw rows."""

    id: int
    name: Optional[str]
    height: int
    weight: int
