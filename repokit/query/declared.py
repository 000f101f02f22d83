"""
Declared-text and named lookups.

A declared query is literal SQL carrying either positional (``?1``,
``?2``) or named (``:name``) placeholders, never both. Positional
placeholders are rewritten to named bind parameters (``:p1``) so both
styles execute through the same SQLAlchemy ``text()`` path.

Placeholders inside quoted string literals and ``::`` type casts are
not parameters.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from repokit.core.errors import UnresolvableIntent
from repokit.models.registry import registry

logger = logging.getLogger(__name__)


_LITERAL = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")
_POSITIONAL = re.compile(r"\?(\d+)")
_NAMED = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")

POSITIONAL = "positional"
NAMED = "named"


def _mask_literals(sql: str) -> str:
    """Blank out quoted literals keeping character offsets intact."""
    return _LITERAL.sub(lambda match: " " * len(match.group(0)), sql)


def _scan(sql: str) -> Tuple[Optional[str], str, Tuple[str, ...]]:
    """
    Find the placeholders of one SQL text.

    Returns:
        (style, rewritten sql, parameter names in binding order)
    """
    masked = _mask_literals(sql)
    positional = list(_POSITIONAL.finditer(masked))
    named = list(_NAMED.finditer(masked))

    if positional and named:
        raise UnresolvableIntent(
            "Declared query mixes positional (?1) and named (:name) parameters"
        )

    if positional:
        indexes = sorted({int(match.group(1)) for match in positional})
        if indexes[0] < 1 or indexes != list(range(1, indexes[-1] + 1)):
            raise UnresolvableIntent(
                f"Positional parameters must be numbered ?1..?{indexes[-1]} without gaps"
            )
        # Rewrite right to left so earlier offsets stay valid
        rewritten = sql
        for match in reversed(positional):
            rewritten = (
                rewritten[:match.start()] + f":p{match.group(1)}" + rewritten[match.end():]
            )
        return POSITIONAL, rewritten, tuple(f"p{index}" for index in indexes)

    if named:
        names = []
        for match in named:
            if match.group(1) not in names:
                names.append(match.group(1))
        return NAMED, sql, tuple(names)

    return None, sql, ()


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def to_text(sql: str, params: Mapping[str, Any]) -> TextClause:
    """
    Build a ``text()`` clause, expanding collection-valued parameters.

    Args:
        sql: SQL with named placeholders
        params: Bound values; collections bind as ``IN :name`` lists

    Returns:
        TextClause ready for execution with ``params``
    """
    clause = text(sql)
    expanding = [bindparam(name, expanding=True) for name, value in params.items()
                 if _is_collection(value)]
    if expanding:
        clause = clause.bindparams(*expanding)
    return clause


@dataclass(frozen=True)
class DeclaredQuery:
    """
    Parsed declared query text.

    Attributes:
        sql: Executable SQL with named placeholders only
        parameters: Parameter names in binding order
        style: "positional", "named" or None when parameterless
        count_sql: Explicit count query (None derives one from sql)
        count_parameters: Parameter names the count query binds
        rows: Return raw row mappings instead of entities
        modifying: UPDATE/DELETE text returning an affected-row count
        source: Original text as declared
    """
    sql: str
    parameters: Tuple[str, ...]
    style: Optional[str]
    count_sql: Optional[str] = None
    count_parameters: Tuple[str, ...] = ()
    rows: bool = False
    modifying: bool = False
    source: str = ""

    @classmethod
    def parse(
        cls,
        sql: str,
        count_sql: Optional[str] = None,
        rows: bool = False,
        modifying: bool = False,
    ) -> "DeclaredQuery":
        """
        Parse declared query text.

        Args:
            sql: Query text with ?N or :name placeholders
            count_sql: Optional explicit count query for paging
            rows: Return row mappings instead of entity instances
            modifying: Text is an UPDATE/DELETE

        Returns:
            DeclaredQuery

        Raises:
            UnresolvableIntent: On empty text, mixed styles or numbering gaps

        Example:
            DeclaredQuery.parse("SELECT * FROM players WHERE name = ?1 AND height > ?2")
        """
        if not sql or not sql.strip():
            raise UnresolvableIntent("Declared query text is empty")

        style, rewritten, parameters = _scan(sql.strip().rstrip(";").strip())

        rewritten_count = None
        count_parameters: Tuple[str, ...] = ()
        if count_sql is not None:
            count_style, rewritten_count, count_parameters = _scan(
                count_sql.strip().rstrip(";").strip()
            )
            if count_style is not None and style is not None and count_style != style:
                raise UnresolvableIntent("Count query must use the same parameter style")
            unknown = set(count_parameters) - set(parameters)
            if unknown:
                raise UnresolvableIntent(
                    f"Count query references parameters absent from the query: {sorted(unknown)}"
                )

        return cls(
            sql=rewritten,
            parameters=parameters,
            style=style,
            count_sql=rewritten_count,
            count_parameters=count_parameters if count_sql is not None else parameters,
            rows=rows,
            modifying=modifying,
            source=sql,
        )

    @property
    def arity(self) -> int:
        return len(self.parameters)

    def bind(self, args: Sequence[Any] = (), kwargs: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Bind call arguments to parameter names.

        Positional-style queries take positional arguments only. Named-style
        queries take positional arguments in first-appearance order and/or
        keyword arguments.

        Args:
            args: Positional call arguments
            kwargs: Keyword call arguments

        Returns:
            Mapping of parameter name to value

        Raises:
            UnresolvableIntent: On missing, extra or unknown parameters
        """
        kwargs = dict(kwargs or {})

        if self.style == POSITIONAL and kwargs:
            raise UnresolvableIntent(
                f"Positional query does not accept keyword parameters: {sorted(kwargs)}"
            )
        if len(args) > len(self.parameters):
            raise UnresolvableIntent(
                f"Query takes {len(self.parameters)} parameter(s), got {len(args)} positional"
            )

        values = dict(zip(self.parameters, args))
        for name, value in kwargs.items():
            if name not in self.parameters:
                raise UnresolvableIntent(f"Unknown query parameter ':{name}'")
            if name in values:
                raise UnresolvableIntent(f"Parameter ':{name}' bound twice")
            values[name] = value

        missing = [name for name in self.parameters if name not in values]
        if missing:
            raise UnresolvableIntent(f"Missing query parameter(s): {missing}")
        return values

    def statement(self, params: Mapping[str, Any]) -> TextClause:
        return to_text(self.sql, params)


def resolve_named(entity: type, name: str, **options: Any) -> DeclaredQuery:
    """
    Look up a named query declared on an entity and parse it.

    Args:
        entity: Mapped entity class carrying ``__named_queries__``
        name: Query name
        **options: Forwarded to DeclaredQuery.parse

    Returns:
        DeclaredQuery

    Raises:
        UnresolvableIntent: If no query of that name is declared
    """
    sql = registry.describe(entity).named_query(name)
    if sql is None:
        raise UnresolvableIntent(f"{entity.__name__} declares no named query '{name}'")
    logger.debug(
        "Named query resolved",
        extra={"entity": entity.__name__, "strategy": "named", "query_name": name}
    )
    return DeclaredQuery.parse(sql, **options)
