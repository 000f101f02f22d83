"""
Tests for page requests and page arithmetic.
"""

import pytest

from repokit.core.errors import InvalidSpecification
from repokit.query.paging import Page, PageRequest, Slice
from repokit.query.plan import Sort


def make_page(page: int, size: int, total: int) -> Page:
    return Page(content=(), page=page, size=size, sort=Sort(), total_elements=total)


class TestPageRequest:
    """Tests for PageRequest."""

    def test_offset(self):
        assert PageRequest.of(2, 25).offset == 50

    def test_navigation(self):
        request = PageRequest.of(1, 10, Sort.by("name"))

        assert request.next() == PageRequest.of(2, 10, Sort.by("name"))
        assert request.previous_or_first().page == 0
        assert request.first().previous_or_first().page == 0

    @pytest.mark.parametrize("page,size", [(-1, 10), (0, 0), (0, -5)])
    def test_invalid_requests(self, page, size):
        with pytest.raises(InvalidSpecification):
            PageRequest.of(page, size)


class TestPage:
    """Tests for derived page metadata."""

    @pytest.mark.parametrize("total,pages", [(0, 0), (1, 1), (5, 2), (6, 2), (7, 3)])
    def test_total_pages(self, total, pages):
        assert make_page(0, 3, total).total_pages == pages

    def test_first_of_two(self):
        page = make_page(0, 3, 5)

        assert page.is_first
        assert page.has_next
        assert not page.has_previous
        assert not page.is_last

    def test_last_of_two(self):
        page = make_page(1, 3, 5)

        assert page.is_last
        assert page.has_previous
        assert not page.has_next

    def test_empty_result(self):
        page = make_page(0, 3, 0)

        assert page.is_first
        assert page.is_last
        assert not page.has_next

    def test_map_keeps_metadata(self):
        page = Page(content=(1, 2, 3), page=0, size=3, sort=Sort(), total_elements=5)

        doubled = page.map(lambda value: value * 2)

        assert doubled.content == (2, 4, 6)
        assert doubled.total_elements == 5
        assert list(doubled) == [2, 4, 6]


class TestSlice:
    """Tests for Slice."""

    def test_slice_metadata(self):
        chunk = Slice(content=("a", "b"), page=1, size=2, sort=Sort(), has_next=True)

        assert len(chunk) == 2
        assert chunk.has_previous
        assert not chunk.is_first
        assert chunk.map(str.upper).content == ("A", "B")
