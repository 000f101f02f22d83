"""
Pattern-derived lookups.

Parses snake_case lookup names into a small AST of (attribute path,
comparator) clauses:

    <verb>[_<subject words>][_by_<clauses>][_order_by_<orders>]

- verb: find/read/get/query/search/stream, count, exists, delete/remove
- subject words: page, slice, optional, first[_N], top[_N], one, distinct
  (other words such as "all" or "players" are ignored)
- clauses: <attribute><comparator keywords> joined by _and_ / _or_
  (an OR of AND groups); association attributes are spelled team_name
- orders: <attribute>[_asc|_desc] repeated

Parsing happens once per (entity, name) and is cached; binding the
arguments of a call is a plain walk over the parsed clauses.

Example:
    parsed = parse_pattern(Player, "find_by_name_and_height_greater_than")
    spec = parsed.bind(["Roy", 170])
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional, Sequence, Tuple

from repokit.core.errors import UnresolvableIntent
from repokit.models.registry import registry
from repokit.query.plan import Direction, Order, ResultKind, Sort
from repokit.query.specification import Comparator, Specification, all_of, any_of, where

logger = logging.getLogger(__name__)


ROW_VERBS = {"find", "read", "get", "query", "search", "stream"}
VERB_KINDS = {"count": ResultKind.COUNT, "exists": ResultKind.EXISTS,
              "delete": ResultKind.DELETE, "remove": ResultKind.DELETE}

# Longest keyword sequences are tried first
COMPARATOR_KEYWORDS: Tuple[Tuple[Tuple[str, ...], Comparator], ...] = tuple(sorted(
    [
        (("is", "not", "null"), Comparator.IS_NOT_NULL),
        (("not", "null"), Comparator.IS_NOT_NULL),
        (("is", "null"), Comparator.IS_NULL),
        (("null",), Comparator.IS_NULL),
        (("is", "not"), Comparator.NOT_EQUAL),
        (("not",), Comparator.NOT_EQUAL),
        (("greater", "than", "equal"), Comparator.GREATER_THAN_EQUAL),
        (("greater", "than"), Comparator.GREATER_THAN),
        (("less", "than", "equal"), Comparator.LESS_THAN_EQUAL),
        (("less", "than"), Comparator.LESS_THAN),
        (("after",), Comparator.GREATER_THAN),
        (("before",), Comparator.LESS_THAN),
        (("like",), Comparator.LIKE),
        (("is", "like"), Comparator.LIKE),
        (("containing",), Comparator.CONTAINING),
        (("contains",), Comparator.CONTAINING),
        (("starting", "with"), Comparator.STARTING_WITH),
        (("starts", "with"), Comparator.STARTING_WITH),
        (("ending", "with"), Comparator.ENDING_WITH),
        (("ends", "with"), Comparator.ENDING_WITH),
        (("in",), Comparator.IN),
        (("is", "in"), Comparator.IN),
        (("is",), Comparator.EQUAL),
        (("equals",), Comparator.EQUAL),
    ],
    key=lambda item: len(item[0]),
    reverse=True,
))

CONNECTORS = {"and", "or"}


@dataclass(frozen=True)
class Clause:
    path: str
    comparator: Comparator


@dataclass(frozen=True)
class ParsedPattern:
    """
    Parsed lookup name.

    Attributes:
        entity: Entity the lookup targets
        name: Original lookup name
        kind: Result shape
        distinct: Apply DISTINCT
        limit: Row limit implied by first/top
        groups: OR of AND groups of clauses
        sort: Ordering from the order_by suffix
    """
    entity: type
    name: str
    kind: ResultKind
    distinct: bool
    limit: Optional[int]
    groups: Tuple[Tuple[Clause, ...], ...]
    sort: Sort

    @property
    def arity(self) -> int:
        """Number of call arguments the lookup consumes."""
        return sum(
            1 for group in self.groups for clause in group if not clause.comparator.nullary
        )

    def bind(self, args: Sequence[Any]) -> Optional[Specification]:
        """
        Bind call arguments to the clauses in declared order.

        Args:
            args: Positional call arguments

        Returns:
            Specification (None when every bound value was blank)

        Raises:
            UnresolvableIntent: If the argument count does not match
        """
        if len(args) != self.arity:
            raise UnresolvableIntent(
                f"'{self.name}' takes {self.arity} argument(s), got {len(args)}"
            )

        remaining = iter(args)
        groups = []
        for group in self.groups:
            leaves = []
            for clause in group:
                value = None if clause.comparator.nullary else next(remaining)
                leaves.append(where(self.entity, clause.path, clause.comparator, value))
            groups.append(all_of(*leaves))
        return any_of(*groups)


def _path_spellings(entity: type) -> List[Tuple[Tuple[str, ...], str]]:
    """Token spellings of every attribute path reachable in at most one hop."""
    descriptor = registry.describe(entity)
    spellings = [(tuple(name.split("_")), name) for name in descriptor.scalar_names()]
    for association in descriptor.associations:
        target = registry.describe(association.target)
        for name in target.scalar_names():
            tokens = tuple(association.name.split("_")) + tuple(name.split("_"))
            spellings.append((tokens, f"{association.name}.{name}"))
    # Longest spelling wins: "team_name" before "team"
    spellings.sort(key=lambda item: len(item[0]), reverse=True)
    return spellings


def _match_path(tokens: Sequence[str], pos: int, spellings, name: str) -> Tuple[str, int]:
    for spelled, path in spellings:
        if tuple(tokens[pos:pos + len(spelled)]) == spelled:
            return path, pos + len(spelled)
    raise UnresolvableIntent(
        f"'{name}': no attribute matches '{'_'.join(tokens[pos:])}'"
    )


def _at_boundary(tokens: Sequence[str], pos: int) -> bool:
    return pos == len(tokens) or tokens[pos] in CONNECTORS


def _parse_clauses(tokens: Sequence[str], spellings, name: str) -> Tuple[Tuple[Clause, ...], ...]:
    if not tokens:
        raise UnresolvableIntent(f"'{name}': expected at least one condition after 'by'")

    groups: List[Tuple[Clause, ...]] = []
    current: List[Clause] = []
    pos = 0
    while True:
        path, pos = _match_path(tokens, pos, spellings, name)

        comparator = None
        for keywords, candidate in COMPARATOR_KEYWORDS:
            end = pos + len(keywords)
            if tuple(tokens[pos:end]) == keywords and _at_boundary(tokens, end):
                comparator, pos = candidate, end
                break
        if comparator is None:
            if not _at_boundary(tokens, pos):
                raise UnresolvableIntent(
                    f"'{name}': unknown comparison '{'_'.join(tokens[pos:])}' on '{path}'"
                )
            comparator = Comparator.EQUAL
        current.append(Clause(path, comparator))

        if pos == len(tokens):
            break
        connector = tokens[pos]
        pos += 1
        if pos == len(tokens):
            raise UnresolvableIntent(f"'{name}': dangling '{connector}'")
        if connector == "or":
            groups.append(tuple(current))
            current = []

    groups.append(tuple(current))
    return tuple(groups)


def _parse_orders(tokens: Sequence[str], spellings, name: str) -> Sort:
    if not tokens:
        raise UnresolvableIntent(f"'{name}': expected an attribute after 'order_by'")

    orders = []
    pos = 0
    while pos < len(tokens):
        if tokens[pos] == "and":
            pos += 1
            continue
        path, pos = _match_path(tokens, pos, spellings, name)
        if "." in path:
            raise UnresolvableIntent(
                f"'{name}': cannot order by '{path}', ordering is limited to the entity's own attributes"
            )
        direction = Direction.ASC
        if pos < len(tokens) and tokens[pos] in ("asc", "desc"):
            direction = Direction(tokens[pos])
            pos += 1
        orders.append(Order(path, direction))
    return Sort(tuple(orders))


def _parse_subject(words: Sequence[str], verb_kind: ResultKind, name: str):
    kind = verb_kind
    distinct = False
    limit = None

    index = 0
    while index < len(words):
        word = words[index]
        if word == "distinct":
            distinct = True
        elif verb_kind is ResultKind.LIST:
            if word in ("first", "top"):
                following = words[index + 1] if index + 1 < len(words) else ""
                if following.isdigit():
                    limit = int(following)
                    if limit < 1:
                        raise UnresolvableIntent(f"'{name}': row limit must be positive")
                    index += 1
                else:
                    kind, limit = ResultKind.FIRST, 1
            elif word == "page":
                kind = ResultKind.PAGE
            elif word == "slice":
                kind = ResultKind.SLICE
            elif word == "optional":
                kind = ResultKind.OPTIONAL
            elif word == "one" and kind is not ResultKind.OPTIONAL:
                kind = ResultKind.ONE
        index += 1
    return kind, distinct, limit


def _find_pair(tokens: Sequence[str], first: str, second: str, start: int = 0) -> int:
    for index in range(start, len(tokens) - 1):
        if tokens[index] == first and tokens[index + 1] == second:
            return index
    return -1


@lru_cache(maxsize=1024)
def parse_pattern(entity: type, name: str) -> ParsedPattern:
    """
    Parse (and cache) a lookup name for an entity.

    Args:
        entity: Mapped entity class
        name: Snake_case lookup name

    Returns:
        ParsedPattern

    Raises:
        UnresolvableIntent: If the name is malformed or references unknown attributes
    """
    tokens = [token for token in name.lower().split("_") if token]
    if not tokens:
        raise UnresolvableIntent("Lookup name is empty")

    verb = tokens[0]
    if verb in ROW_VERBS:
        verb_kind = ResultKind.LIST
    elif verb in VERB_KINDS:
        verb_kind = VERB_KINDS[verb]
    else:
        raise UnresolvableIntent(
            f"'{name}' must start with one of: "
            f"{', '.join(sorted(ROW_VERBS | set(VERB_KINDS)))}"
        )

    order_at = _find_pair(tokens, "order", "by", 1)
    body_end = order_at if order_at != -1 else len(tokens)

    by_at = -1
    for index in range(1, body_end):
        if tokens[index] == "by":
            by_at = index
            break

    spellings = _path_spellings(entity)
    subject = tokens[1:by_at if by_at != -1 else body_end]
    kind, distinct, limit = _parse_subject(subject, verb_kind, name)

    groups: Tuple[Tuple[Clause, ...], ...] = ()
    if by_at != -1:
        groups = _parse_clauses(tokens[by_at + 1:body_end], spellings, name)

    sort = Sort()
    if order_at != -1:
        sort = _parse_orders(tokens[order_at + 2:], spellings, name)

    parsed = ParsedPattern(
        entity=entity,
        name=name,
        kind=kind,
        distinct=distinct,
        limit=limit,
        groups=groups,
        sort=sort,
    )
    logger.debug(
        "Lookup pattern parsed",
        extra={
            "entity": entity.__name__,
            "strategy": "derived",
            "pattern": name,
            "result_kind": kind.value,
            "arity": parsed.arity,
        }
    )
    return parsed
