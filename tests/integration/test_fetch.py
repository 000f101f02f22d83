"""
Integration tests for fetch paths.

Associations listed as fetch paths are loaded with their owner, so they
stay readable after the scope ends without touching the store again.
"""

import pytest
from sqlalchemy.orm.exc import DetachedInstanceError

from repokit.core.errors import DetachedAccess, InvalidSpecification, RepositoryError
from repokit.query.fetch import association, is_materialized
from repokit.repositories import PlayerRepository, TeamRepository


class TestFetchPaths:
    """Tests for association materialization."""

    @pytest.mark.asyncio
    async def test_fetched_team_readable_after_scope(self, scopes, seeded, statement_counter):
        """
        Test a fetched association needs no further round trip.

        Arrange: Players loaded with fetch=("team",)
        Act: Read every team name after the scope ended
        Assert: Names are available and no statement runs
        """
        # Arrange
        async with scopes() as scope:
            found = await scope.repository(PlayerRepository).find_all_with_team()

        # Act
        statement_counter.reset()
        teams = {player.name: association(player, "team") for player in found}

        # Assert
        assert statement_counter.count == 0
        assert teams["Roy"].name == "Lakers"
        assert teams["Sally"].name == "Bulls"
        assert teams["Mambo"] is None
        assert all(is_materialized(player, "team") for player in found)

    @pytest.mark.asyncio
    async def test_fetch_in_one_round_trip(self, scopes, seeded, statement_counter):
        async with scopes() as scope:
            players = scope.repository(PlayerRepository)
            statement_counter.reset()

            await players.find_all_by_name("Roy")

            assert statement_counter.count == 1

    @pytest.mark.asyncio
    async def test_unfetched_association_after_scope(self, scopes, seeded):
        async with scopes() as scope:
            roy = await scope.repository(PlayerRepository).get_by_id(seeded["Roy"])

        assert not is_materialized(roy, "team")
        with pytest.raises(DetachedAccess):
            association(roy, "team")

    @pytest.mark.asyncio
    async def test_plain_attribute_access_is_the_orm_error(self, scopes, seeded):
        """
        Test only association() reports an unfetched path as DetachedAccess.

        Arrange: Load a player without fetching its team, end the scope
        Act: Read the team as a plain attribute and through association()
        Assert: The ORM error for the attribute; DetachedAccess for association()
        """
        async with scopes() as scope:
            roy = await scope.repository(PlayerRepository).get_by_id(seeded["Roy"])

        with pytest.raises(DetachedInstanceError):
            roy.team
        with pytest.raises(DetachedAccess):
            association(roy, "team")

    @pytest.mark.asyncio
    async def test_unfetched_association_inside_scope(self, scopes, seeded):
        async with scopes() as scope:
            roy = await scope.repository(PlayerRepository).get_by_id(seeded["Roy"])

            with pytest.raises(RepositoryError):
                association(roy, "team")
            assert (await scope.load(roy, "team")).name == "Lakers"
            assert association(roy, "team").name == "Lakers"

    @pytest.mark.asyncio
    async def test_declared_query_with_fetch(self, scopes, seeded):
        async with scopes() as scope:
            found = await scope.repository(PlayerRepository).find_all_using_declared_fetch()

        assert len(found) == 5
        assert all(is_materialized(player, "team") for player in found)
        by_name = {player.name: player for player in found}
        assert by_name["Perry"].team.name == "Lakers"

    @pytest.mark.asyncio
    async def test_find_by_id_with_fetch(self, scopes, seeded):
        async with scopes() as scope:
            dice = await scope.repository(PlayerRepository).find_by_id(
                seeded["Dice"], fetch=("team",)
            )

        assert association(dice, "team").name == "Bulls"

    @pytest.mark.asyncio
    async def test_nested_fetch_path(self, scopes, seeded):
        async with scopes() as scope:
            found = await scope.repository(PlayerRepository).find_all(fetch=("team.players",))

        roy = next(player for player in found if player.name == "Roy")
        assert is_materialized(roy, "team.players")
        assert sorted(mate.name for mate in association(roy, "team.players")) == ["Perry", "Roy"]

    @pytest.mark.asyncio
    async def test_collection_fetch(self, scopes, seeded):
        async with scopes() as scope:
            lakers = await scope.repository(TeamRepository).find_one_by_name("Lakers")

        assert not is_materialized(lakers, "players")
        with pytest.raises(DetachedAccess):
            association(lakers, "players")

    @pytest.mark.asyncio
    async def test_scalar_fetch_path_rejected(self, scopes, seeded):
        async with scopes() as scope:
            with pytest.raises(InvalidSpecification):
                await scope.repository(PlayerRepository).find_all(fetch=("name",))
