"""
Player repository.

Shows every lookup strategy side by side: derived from the method name,
declared text with positional or named parameters, named queries,
paging and slicing, fetch paths, hints and locks.
"""

from typing import List

from sqlalchemy import select

from repokit.core.errors import translate_store_errors
from repokit.core.locking import LockMode, QueryHints
from repokit.models.player import Player
from repokit.query.plan import ResultKind
from repokit.repositories.base import Repository, declared_query, derived_query, named_query
from repokit.schemas.player import PlayerRow


class PlayerRepository(Repository[Player]):
    """Data access for players."""

    entity = Player

    # Derived from the name
    find_by_name = derived_query()
    find_by_name_and_height_greater_than = derived_query()
    find_by_name_and_height_greater_than_and_weight_less_than = derived_query()
    find_one_by_name = derived_query()
    find_optional_one_by_name = derived_query()
    find_page_by_name_is_not_null = derived_query()
    find_slice_by_name_is_not_null = derived_query()
    find_by_team_name = derived_query()
    count_by_height_greater_than = derived_query()
    exists_by_name = derived_query()
    delete_by_name = derived_query()

    # Named queries declared on Player
    find_by_name_using_named_query = named_query("find_by_name")
    find_by_height_greater_than_using_named_query = named_query("find_by_height_greater_than")

    # Declared text
    find_all_using_declared_query = declared_query("SELECT * FROM players")
    find_rows_using_declared_query = declared_query(
        "SELECT id, name, height, weight FROM players",
        rows=True,
        projection=PlayerRow,
    )
    find_by_name_and_height_with_position_binding = declared_query(
        "SELECT * FROM players WHERE name = ?1 AND height > ?2"
    )
    find_by_name_and_height_with_name_binding = declared_query(
        "SELECT * FROM players WHERE name = :name AND height > :height"
    )
    find_by_id_in = declared_query("SELECT * FROM players WHERE id IN :ids")
    find_custom_page_by_name_is_not_null = declared_query(
        "SELECT players.* FROM players LEFT JOIN teams ON teams.id = players.team_id "
        "WHERE players.name IS NOT NULL",
        count_sql="SELECT count(*) FROM players",
        result=ResultKind.PAGE,
    )
    add_weight_above_height = declared_query(
        "UPDATE players SET weight = weight + 10 WHERE height > :height",
        modifying=True,
    )

    # Fetch paths, hints and locks
    find_all_with_team = derived_query(fetch=("team",))
    find_all_by_name = derived_query(fetch=("team",))
    find_all_using_declared_fetch = declared_query("SELECT * FROM players", fetch=("team",))
    find_read_only_by_name = derived_query(hints=QueryHints(read_only=True))
    find_locked_by_name = derived_query(lock=LockMode.PESSIMISTIC_WRITE)

    async def find_custom_by_name(self, name: str) -> List[Player]:
        """Hand-written lookup using the session directly."""
        with translate_store_errors():
            result = await self.session.execute(select(Player).where(Player.name == name))
        return list(result.scalars().all())
