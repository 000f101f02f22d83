"""
Integration tests for pages and slices.
"""

import pytest

from repokit.core.errors import UnresolvableIntent
from repokit.models import Player
from repokit.query.paging import Page, PageRequest, Slice
from repokit.query.plan import Order, Sort
from repokit.repositories import PlayerRepository, Repository, derived_query
from repokit.repositories.specifications import greater_height
from repokit.schemas import PlayerResponse


BY_NAME = Sort.by("name")


class TestPages:
    """Tests for Page results and their count query."""

    @pytest.mark.asyncio
    async def test_first_page(self, scopes, seeded):
        """
        Test page 0 of size 3 over five players.

        Arrange: Five seeded players
        Act: Request page 0, size 3, sorted by name
        Assert: Three rows, five in total, two pages, more to come
        """
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_page_by_name_is_not_null(
                PageRequest.of(0, 3, BY_NAME)
            )

        assert isinstance(page, Page)
        assert [player.name for player in page] == ["Dice", "Mambo", "Perry"]
        assert page.total_elements == 5
        assert page.total_pages == 2
        assert page.is_first
        assert page.has_next
        assert not page.is_last

    @pytest.mark.asyncio
    async def test_last_page(self, scopes, seeded):
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_page_by_name_is_not_null(
                PageRequest.of(1, 3, BY_NAME)
            )

        assert [player.name for player in page] == ["Roy", "Sally"]
        assert page.is_last
        assert page.has_previous
        assert not page.has_next

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, scopes, seeded):
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_page_by_name_is_not_null(
                PageRequest.of(5, 3)
            )

        assert len(page) == 0
        assert page.total_elements == 5

    @pytest.mark.asyncio
    async def test_find_all_with_page_and_filter(self, scopes, seeded):
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_all(
                greater_height(170),
                page=PageRequest.of(0, 2, Sort.by(Order.desc("height"))),
            )

        assert [player.name for player in page] == ["Dice", "Perry"]
        assert page.total_elements == 4
        assert page.total_pages == 2

    @pytest.mark.asyncio
    async def test_declared_page_uses_count_query(self, scopes, seeded):
        """
        Test a declared page with its own count text.

        Arrange: Five seeded players
        Act: Request page 1 of size 3 from the declared query
        Assert: Two rows on the page, five in total
        """
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_custom_page_by_name_is_not_null(
                page=PageRequest.of(1, 3, BY_NAME)
            )

        assert [player.name for player in page] == ["Roy", "Sally"]
        assert page.total_elements == 5

    @pytest.mark.asyncio
    async def test_page_map(self, scopes, seeded):
        async with scopes() as scope:
            page = await scope.repository(PlayerRepository).find_page_by_name_is_not_null(
                PageRequest.of(0, 2, BY_NAME)
            )

        mapped = page.map(PlayerResponse.of)

        assert mapped.content == (
            PlayerResponse("Dice", 190, 90),
            PlayerResponse("Mambo", 175, 75),
        )
        assert mapped.total_elements == page.total_elements

    @pytest.mark.asyncio
    async def test_page_lookup_without_request(self, scopes, seeded):
        async with scopes() as scope:
            with pytest.raises(UnresolvableIntent):
                await scope.repository(PlayerRepository).find_page_by_name_is_not_null()


class TestSlices:
    """Tests for Slice results."""

    @pytest.mark.asyncio
    async def test_slice_knows_only_whether_more_follow(self, scopes, seeded, statement_counter):
        """
        Test a slice issues no count query.

        Arrange: Five seeded players
        Act: Request slice 0 and slice 1 of size 3
        Assert: has_next flips, no total is available, one statement per slice
        """
        async with scopes() as scope:
            players = scope.repository(PlayerRepository)
            statement_counter.reset()

            first = await players.find_slice_by_name_is_not_null(PageRequest.of(0, 3, BY_NAME))
            first_statements = statement_counter.count
            second = await players.find_slice_by_name_is_not_null(PageRequest.of(1, 3, BY_NAME))

        assert isinstance(first, Slice)
        assert len(first) == 3
        assert first.has_next
        assert not hasattr(first, "total_elements")
        assert [player.name for player in second] == ["Roy", "Sally"]
        assert not second.has_next
        assert first_statements == 1

    @pytest.mark.asyncio
    async def test_find_slice_with_filter(self, scopes, seeded):
        async with scopes() as scope:
            chunk = await scope.repository(PlayerRepository).find_slice(
                greater_height(170), PageRequest.of(0, 4)
            )

        assert len(chunk) == 4
        assert not chunk.has_next


class TopTwoRepository(Repository[Player]):
    entity = Player

    find_top_2_page_by_name_is_not_null = derived_query()
    find_top_2_slice_by_name_is_not_null = derived_query()


class TestRowLimitedPages:
    """Tests for top-N lookups returned as pages and slices."""

    @pytest.mark.asyncio
    async def test_row_limit_caps_the_page_total(self, scopes, seeded):
        """
        Test a top-2 lookup pages over two rows, not over every match.

        Arrange: Five seeded players
        Act: Request page 0, size 2, of the top 2 by name
        Assert: Two rows, two in total, one page, nothing next
        """
        async with scopes() as scope:
            page = await scope.repository(TopTwoRepository).find_top_2_page_by_name_is_not_null(
                PageRequest.of(0, 2, BY_NAME)
            )

        assert [player.name for player in page] == ["Dice", "Mambo"]
        assert page.total_elements == 2
        assert page.total_pages == 1
        assert not page.has_next

    @pytest.mark.asyncio
    async def test_row_limit_spans_pages(self, scopes, seeded):
        async with scopes() as scope:
            players = scope.repository(TopTwoRepository)
            first = await players.find_top_2_page_by_name_is_not_null(PageRequest.of(0, 1, BY_NAME))
            second = await players.find_top_2_page_by_name_is_not_null(PageRequest.of(1, 1, BY_NAME))
            beyond = await players.find_top_2_page_by_name_is_not_null(PageRequest.of(2, 1, BY_NAME))

        assert [player.name for player in first] == ["Dice"]
        assert first.has_next
        assert [player.name for player in second] == ["Mambo"]
        assert second.is_last
        assert list(beyond) == []
        assert beyond.total_elements == 2

    @pytest.mark.asyncio
    async def test_slice_agrees_with_page(self, scopes, seeded):
        async with scopes() as scope:
            players = scope.repository(TopTwoRepository)
            first = await players.find_top_2_slice_by_name_is_not_null(PageRequest.of(0, 1, BY_NAME))
            second = await players.find_top_2_slice_by_name_is_not_null(PageRequest.of(1, 1, BY_NAME))

        assert [player.name for player in first] == ["Dice"]
        assert first.has_next
        assert [player.name for player in second] == ["Mambo"]
        assert not second.has_next
