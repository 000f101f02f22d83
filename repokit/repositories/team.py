"""
Team repository.
"""

from repokit.models.team import Team
from repokit.repositories.base import Repository, derived_query


class TeamRepository(Repository[Team]):
    """Data access for teams."""

    entity = Team

    find_one_by_name = derived_query()
    find_all_with_players = derived_query(fetch=("players",))
