"""
Projection types of the demonstration models.
"""

from repokit.schemas.player import (
    BodySpec,
    PlayerResponse,
    PlayerRow,
    PlayerSummary,
    PlayerWithTeam,
    TeamInfo,
)

__all__ = [
    "BodySpec",
    "PlayerResponse",
    "PlayerRow",
    "PlayerSummary",
    "PlayerWithTeam",
    "TeamInfo",
]
