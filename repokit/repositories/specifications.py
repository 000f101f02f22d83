"""
Reusable player predicates.

Each function returns None for blank input so callers can combine them
freely: ``team_name(None) & greater_height(170)`` filters on height only.
"""

from typing import Optional

from repokit.models.player import Player
from repokit.query.specification import Specification, Specifications

players = Specifications(Player)


def team_name(name: Optional[str]) -> Optional[Specification]:
    return players.equal("team.name", name)


def greater_height(height: Optional[int]) -> Optional[Specification]:
    return players.greater_than("height", height)


def greater_weight(weight: Optional[int]) -> Optional[Specification]:
    return players.greater_than("weight", weight)
