"""
Pagination and slicing.

- Page: OFFSET page*size, LIMIT size, plus a count over the same filter
  with ordering, fetch paths and locks dropped
- Slice: LIMIT size + 1; the extra row only signals "has next" and is
  trimmed. No count query.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, Iterator, Optional, Tuple, TypeVar

from repokit.core.errors import InvalidSpecification
from repokit.query.plan import QueryPlan, Sort

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class PageRequest:
    """
    Requested page.

    Attributes:
        page: Zero-based page index
        size: Rows per page (at least 1)
        sort: Ordering applied before paging
    """
    page: int = 0
    size: int = 20
    sort: Sort = field(default_factory=Sort)

    def __post_init__(self):
        if self.page < 0:
            raise InvalidSpecification(f"Page index must not be negative, got {self.page}")
        if self.size < 1:
            raise InvalidSpecification(f"Page size must be at least 1, got {self.size}")

    @classmethod
    def of(cls, page: int, size: int, sort: Optional[Sort] = None) -> "PageRequest":
        return cls(page=page, size=size, sort=sort or Sort())

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> "PageRequest":
        return replace(self, page=self.page + 1)

    def previous_or_first(self) -> "PageRequest":
        return replace(self, page=max(self.page - 1, 0))

    def first(self) -> "PageRequest":
        return replace(self, page=0)


@dataclass(frozen=True)
class Slice(Generic[T]):
    """Page-like result that only knows whether more rows follow."""
    content: Tuple[T, ...]
    page: int
    size: int
    sort: Sort
    has_next: bool

    @property
    def is_first(self) -> bool:
        return self.page == 0

    @property
    def has_previous(self) -> bool:
        return self.page > 0

    def map(self, fn: Callable[[T], U]) -> "Slice[U]":
        return replace(self, content=tuple(fn(item) for item in self.content))

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Page(Generic[T]):
    """Page of results with the total row count of the filter."""
    content: Tuple[T, ...]
    page: int
    size: int
    sort: Sort
    total_elements: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.size)

    @property
    def is_first(self) -> bool:
        return self.page == 0

    @property
    def is_last(self) -> bool:
        return not self.has_next

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 0

    def map(self, fn: Callable[[T], U]) -> "Page[U]":
        return replace(self, content=tuple(fn(item) for item in self.content))

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


async def fetch_page(executor: Any, plan: QueryPlan, request: PageRequest,
                     mapper: Optional[Callable[[Any], Any]] = None) -> Page:
    """
    Execute a plan as one page plus its count.

    Args:
        executor: QueryExecutor bound to the scope's session
        plan: Plan to page
        request: Page index, size and sort
        mapper: Optional row transformation (projection)

    Returns:
        Page with content and total element count
    """
    plan = plan.with_sort(request.sort)
    rows = await executor.execute(plan, offset=request.offset, limit=request.size)
    total = await executor.count(plan)
    content = tuple(mapper(row) for row in rows) if mapper else tuple(rows)
    return Page(content=content, page=request.page, size=request.size,
                sort=plan.sort, total_elements=total)


async def fetch_slice(executor: Any, plan: QueryPlan, request: PageRequest,
                      mapper: Optional[Callable[[Any], Any]] = None) -> Slice:
    """
    Execute a plan as one slice (no count query).

    Args:
        executor: QueryExecutor bound to the scope's session
        plan: Plan to slice
        request: Page index, size and sort
        mapper: Optional row transformation (projection)

    Returns:
        Slice with content and has_next
    """
    plan = plan.with_sort(request.sort)
    rows = await executor.execute(plan, offset=request.offset, limit=request.size + 1)
    has_next = len(rows) > request.size
    rows = rows[:request.size]
    content = tuple(mapper(row) for row in rows) if mapper else tuple(rows)
    return Slice(content=content, page=request.page, size=request.size,
                 sort=plan.sort, has_next=has_next)
