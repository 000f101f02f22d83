"""
Repositories.

The generic Repository base, its declared-lookup builders and the
repositories of the demonstration models.
"""

from repokit.repositories.base import (
    DeclaredTextQuery,
    DerivedQuery,
    NamedQuery,
    QueryMethod,
    Repository,
    declared_query,
    derived_query,
    named_query,
)
from repokit.repositories.director import DirectorRepository
from repokit.repositories.player import PlayerRepository
from repokit.repositories.team import TeamRepository

__all__ = [
    "DeclaredTextQuery",
    "DerivedQuery",
    "NamedQuery",
    "QueryMethod",
    "Repository",
    "declared_query",
    "derived_query",
    "named_query",
    "DirectorRepository",
    "PlayerRepository",
    "TeamRepository",
]
