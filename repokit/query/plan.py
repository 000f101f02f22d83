"""
Query plan.

A QueryPlan is the immutable, store-agnostic description of one lookup:
which entity, which filter, ordering, fetch paths, locking and hints,
or, for declared lookups, the query text and its bound parameters.
Every resolution strategy produces one; the executor consumes it.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Tuple

from repokit.core.locking import LockMode, QueryHints
from repokit.query.specification import Specification, and_


class ResultKind(str, Enum):
    """Shape of what a lookup hands back to the caller."""

    LIST = "list"
    ONE = "one"
    OPTIONAL = "optional"
    FIRST = "first"
    PAGE = "page"
    SLICE = "slice"
    COUNT = "count"
    EXISTS = "exists"
    DELETE = "delete"
    MODIFYING = "modifying"


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Order:
    """Ordering on one attribute path."""
    attribute: str
    direction: Direction = Direction.ASC

    @classmethod
    def asc(cls, attribute: str) -> "Order":
        return cls(attribute, Direction.ASC)

    @classmethod
    def desc(cls, attribute: str) -> "Order":
        return cls(attribute, Direction.DESC)


@dataclass(frozen=True)
class Sort:
    """
    Ordered list of orderings.

    Example:
        Sort.by("name")                         # name ASC
        Sort.by(Order.desc("height"), "name")   # height DESC, name ASC
    """
    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *orders) -> "Sort":
        return cls(tuple(o if isinstance(o, Order) else Order.asc(o) for o in orders))

    @classmethod
    def unsorted(cls) -> "Sort":
        return cls()

    def and_(self, other: "Sort") -> "Sort":
        return Sort(self.orders + other.orders)

    def __bool__(self) -> bool:
        return bool(self.orders)

    def __iter__(self):
        return iter(self.orders)


@dataclass(frozen=True)
class QueryPlan:
    """
    Resolved lookup, ready for execution.

    Attributes:
        entity: Root entity class
        filter: Specification tree (None means no filter)
        sort: Ordering
        fetch_paths: Association paths to materialize with the owner
        lock_mode: Row lock requested for the read
        hints: Execution hints
        distinct: Apply DISTINCT
        limit: Hard row limit from the lookup itself (e.g. "first")
        declared: Declared query text, for declared/named lookups
        bindings: Bound parameters of the declared text as (name, value) pairs
        strategy: Resolution strategy name used in logs
    """
    entity: type
    filter: Optional[Specification] = None
    sort: Sort = field(default_factory=Sort)
    fetch_paths: Tuple[str, ...] = ()
    lock_mode: LockMode = LockMode.NONE
    hints: QueryHints = field(default_factory=QueryHints)
    distinct: bool = False
    limit: Optional[int] = None
    declared: Optional[Any] = None
    bindings: Tuple[Tuple[str, Any], ...] = ()
    strategy: str = "criteria"

    @property
    def textual(self) -> bool:
        return self.declared is not None

    def params(self) -> dict:
        return dict(self.bindings)

    def with_filter(self, spec: Optional[Specification]) -> "QueryPlan":
        """New plan whose filter is the AND of the current filter and spec."""
        return replace(self, filter=and_(self.filter, spec))

    def with_sort(self, sort: Optional[Sort]) -> "QueryPlan":
        if not sort:
            return self
        return replace(self, sort=self.sort.and_(sort) if self.sort else sort)

    def with_fetch(self, *paths: str) -> "QueryPlan":
        merged = self.fetch_paths + tuple(p for p in paths if p not in self.fetch_paths)
        return replace(self, fetch_paths=merged)

    def with_lock(self, mode: LockMode) -> "QueryPlan":
        return replace(self, lock_mode=LockMode(mode))

    def with_hints(self, hints: QueryHints) -> "QueryPlan":
        return replace(self, hints=hints)

    def with_limit(self, limit: Optional[int]) -> "QueryPlan":
        return replace(self, limit=limit)

    def unordered(self) -> "QueryPlan":
        """Plan for counting: same filter, no ordering, fetch or lock."""
        return replace(self, sort=Sort(), fetch_paths=(), lock_mode=LockMode.NONE, limit=None)
