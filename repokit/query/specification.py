"""
Specification composer.

Specifications are composable, immutable predicates over one entity type.
A leaf compares one attribute path with a value; AND/OR/NOT combine
leaves into arbitrarily deep trees. Nothing touches SQLAlchemy until
``to_clause()`` is called by the executor.

``None`` is the "no filter" marker:
- a leaf built from a blank value (None, whitespace string, empty
  collection) is ``None``
- ``and_(None, x)``, ``or_(x, None)``, ``None & x`` all return ``x``

Example:
    players = Specifications(Player)
    spec = players.equal("team.name", "Lakers") & players.greater_than("height", 200)
    stmt = select(Player).where(spec.to_clause())
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from sqlalchemy import and_ as sa_and, not_ as sa_not, or_ as sa_or
from sqlalchemy.sql.elements import ColumnElement

from repokit.core.errors import InvalidSpecification
from repokit.models.registry import registry


class Comparator(str, Enum):
    """Comparison operators available to specification leaves."""

    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    GREATER_THAN = "greater_than"
    GREATER_THAN_EQUAL = "greater_than_equal"
    LESS_THAN = "less_than"
    LESS_THAN_EQUAL = "less_than_equal"
    LIKE = "like"
    CONTAINING = "containing"
    STARTING_WITH = "starting_with"
    ENDING_WITH = "ending_with"
    IN = "in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"

    @property
    def nullary(self) -> bool:
        """True for comparators that take no value."""
        return self in (Comparator.IS_NULL, Comparator.IS_NOT_NULL)


class Specification:
    """Base class of every predicate node."""

    entity: type

    def to_clause(self) -> ColumnElement:
        raise NotImplementedError

    def __and__(self, other: Optional["Specification"]) -> "Specification":
        return and_(self, other)

    def __rand__(self, other: Optional["Specification"]) -> "Specification":
        return and_(other, self)

    def __or__(self, other: Optional["Specification"]) -> "Specification":
        return or_(self, other)

    def __ror__(self, other: Optional["Specification"]) -> "Specification":
        return or_(other, self)

    def __invert__(self) -> "Specification":
        return not_(self)


@dataclass(frozen=True)
class Leaf(Specification):
    """Single attribute comparison."""
    entity: type
    path: str
    comparator: Comparator
    value: Any = None

    def to_clause(self) -> ColumnElement:
        resolved = registry.describe(self.entity).resolve_path(self.path)
        owner = resolved.leaf_owner or self.entity
        column = getattr(owner, resolved.leaf_attribute.name)
        clause = _compare(column, self.comparator, self.value)

        # Wrap innermost hop first: team.name -> Player.team.has(Team.name == v)
        for hop in reversed(resolved.hops):
            relationship = getattr(hop.owner, hop.name)
            clause = relationship.any(clause) if hop.collection else relationship.has(clause)
        return clause


@dataclass(frozen=True)
class And(Specification):
    entity: type
    left: Specification
    right: Specification

    def to_clause(self) -> ColumnElement:
        return sa_and(self.left.to_clause(), self.right.to_clause())


@dataclass(frozen=True)
class Or(Specification):
    entity: type
    left: Specification
    right: Specification

    def to_clause(self) -> ColumnElement:
        return sa_or(self.left.to_clause(), self.right.to_clause())


@dataclass(frozen=True)
class Not(Specification):
    entity: type
    operand: Specification

    def to_clause(self) -> ColumnElement:
        return sa_not(self.operand.to_clause())


def _compare(column, comparator: Comparator, value: Any) -> ColumnElement:
    if comparator is Comparator.EQUAL:
        return column == value
    if comparator is Comparator.NOT_EQUAL:
        return column != value
    if comparator is Comparator.GREATER_THAN:
        return column > value
    if comparator is Comparator.GREATER_THAN_EQUAL:
        return column >= value
    if comparator is Comparator.LESS_THAN:
        return column < value
    if comparator is Comparator.LESS_THAN_EQUAL:
        return column <= value
    if comparator is Comparator.LIKE:
        return column.like(value)
    if comparator is Comparator.CONTAINING:
        return column.contains(value, autoescape=True)
    if comparator is Comparator.STARTING_WITH:
        return column.startswith(value, autoescape=True)
    if comparator is Comparator.ENDING_WITH:
        return column.endswith(value, autoescape=True)
    if comparator is Comparator.IN:
        return column.in_(list(value))
    if comparator is Comparator.IS_NULL:
        return column.is_(None)
    if comparator is Comparator.IS_NOT_NULL:
        return column.is_not(None)
    raise InvalidSpecification(f"Unsupported comparator: {comparator!r}")


def is_blank(value: Any) -> bool:
    """
    Decide whether a leaf value means "no filter".

    Args:
        value: Candidate comparison value

    Returns:
        True for None, whitespace-only strings and empty collections
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def where(
    entity: type,
    path: str,
    comparator: Comparator,
    value: Any = None,
) -> Optional[Specification]:
    """
    Build a leaf specification.

    Args:
        entity: Mapped entity class the predicate applies to
        path: Dotted scalar attribute path ("height", "team.name")
        comparator: Comparison operator
        value: Comparison value (ignored by IS_NULL / IS_NOT_NULL)

    Returns:
        The leaf, or None when the value is blank

    Raises:
        InvalidSpecification: If the path does not end at a scalar attribute

    Example:
        where(Player, "team.name", Comparator.EQUAL, "Lakers")
    """
    comparator = Comparator(comparator)
    resolved = registry.describe(entity).resolve_path(path)
    if resolved.leaf_attribute is None:
        raise InvalidSpecification(
            f"Path '{path}' ends at an association; compare one of its attributes instead"
        )

    if comparator.nullary:
        return Leaf(entity=entity, path=path, comparator=comparator)
    if is_blank(value):
        return None
    if comparator is Comparator.IN:
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise InvalidSpecification(f"IN comparison on '{path}' needs a collection value")
        value = tuple(value)
    return Leaf(entity=entity, path=path, comparator=comparator, value=value)


def _check_same_entity(left: Specification, right: Specification) -> None:
    if left.entity is not right.entity:
        raise InvalidSpecification(
            f"Cannot combine predicates over {left.entity.__name__} and {right.entity.__name__}"
        )


def and_(left: Optional[Specification], right: Optional[Specification]) -> Optional[Specification]:
    """Conjunction; None on either side is the identity."""
    if left is None:
        return right
    if right is None:
        return left
    _check_same_entity(left, right)
    return And(entity=left.entity, left=left, right=right)


def or_(left: Optional[Specification], right: Optional[Specification]) -> Optional[Specification]:
    """Disjunction; None on either side is the identity."""
    if left is None:
        return right
    if right is None:
        return left
    _check_same_entity(left, right)
    return Or(entity=left.entity, left=left, right=right)


def not_(operand: Optional[Specification]) -> Optional[Specification]:
    """Negation; negating "no filter" is still "no filter"."""
    if operand is None:
        return None
    return Not(entity=operand.entity, operand=operand)


def all_of(*specs: Optional[Specification]) -> Optional[Specification]:
    result = None
    for spec in specs:
        result = and_(result, spec)
    return result


def any_of(*specs: Optional[Specification]) -> Optional[Specification]:
    result = None
    for spec in specs:
        result = or_(result, spec)
    return result


class Specifications:
    """
    Leaf builder bound to one entity.

    Usage:
        players = Specifications(Player)
        players.greater_than("height", 200)
    """

    def __init__(self, entity: type):
        registry.describe(entity)
        self.entity = entity

    def equal(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.EQUAL, value)

    def not_equal(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.NOT_EQUAL, value)

    def greater_than(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.GREATER_THAN, value)

    def greater_than_equal(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.GREATER_THAN_EQUAL, value)

    def less_than(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.LESS_THAN, value)

    def less_than_equal(self, path: str, value: Any) -> Optional[Specification]:
        return where(self.entity, path, Comparator.LESS_THAN_EQUAL, value)

    def like(self, path: str, pattern: Optional[str]) -> Optional[Specification]:
        return where(self.entity, path, Comparator.LIKE, pattern)

    def containing(self, path: str, value: Optional[str]) -> Optional[Specification]:
        return where(self.entity, path, Comparator.CONTAINING, value)

    def starting_with(self, path: str, value: Optional[str]) -> Optional[Specification]:
        return where(self.entity, path, Comparator.STARTING_WITH, value)

    def ending_with(self, path: str, value: Optional[str]) -> Optional[Specification]:
        return where(self.entity, path, Comparator.ENDING_WITH, value)

    def in_(self, path: str, values: Optional[Iterable[Any]]) -> Optional[Specification]:
        return where(self.entity, path, Comparator.IN, values)

    def is_null(self, path: str) -> Specification:
        return where(self.entity, path, Comparator.IS_NULL)

    def is_not_null(self, path: str) -> Specification:
        return where(self.entity, path, Comparator.IS_NOT_NULL)
