"""
Store adapter.

Executes QueryPlans against an AsyncSession:

- criteria plans become ``select(Entity)`` with the filter compiled to a
  WHERE clause, ordering, fetch options, DISTINCT and row locks
- declared plans become ``select(Entity).from_statement(text(...))`` (or
  raw row mappings), wrapped in a sub-select when sorted or paged

Every call translates store errors into the repository taxonomy.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete, func, literal_column, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.errors import InvalidSpecification, UnresolvableIntent, translate_store_errors
from repokit.core.locking import LockMode, acquire_lock, apply_lock
from repokit.core.logging_config import log_with_context
from repokit.models.registry import registry
from repokit.query.declared import DeclaredQuery, to_text
from repokit.query.fetch import loader_options
from repokit.query.plan import Direction, QueryPlan
from repokit.query.specification import Specification

logger = logging.getLogger(__name__)

LIMIT_PARAM = "repokit_limit"
OFFSET_PARAM = "repokit_offset"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _capped_limit(plan: QueryPlan, offset: Optional[int], limit: Optional[int]) -> Optional[int]:
    # A plan's row limit caps the whole result, not each window of it
    if plan.limit is None:
        return limit
    remaining = max(plan.limit - (offset or 0), 0)
    return remaining if limit is None else min(limit, remaining)


class QueryExecutor:
    """
    Runs plans on one session.

    Usage:
        executor = QueryExecutor(session)
        rows = await executor.execute(plan, offset=0, limit=10)
    """

    def __init__(self, session: AsyncSession, scope_id: Optional[str] = None):
        self.session = session
        self.scope_id = scope_id

    # Criteria plans

    def _order_by(self, plan: QueryPlan) -> List[Any]:
        clauses = []
        for order in plan.sort:
            resolved = registry.describe(plan.entity).resolve_path(order.attribute)
            if resolved.hops or resolved.leaf_attribute is None:
                raise InvalidSpecification(
                    f"Cannot order {plan.entity.__name__} by '{order.attribute}'"
                )
            column = getattr(plan.entity, resolved.leaf_attribute.name)
            clauses.append(column.desc() if order.direction is Direction.DESC else column.asc())
        return clauses

    def build_statement(self, plan: QueryPlan):
        """
        Compile a criteria plan into a SELECT.

        Args:
            plan: Criteria plan

        Returns:
            SQLAlchemy Select
        """
        statement = select(plan.entity)
        if plan.filter is not None:
            statement = statement.where(plan.filter.to_clause())
        if plan.fetch_paths:
            statement = statement.options(*loader_options(plan.entity, plan.fetch_paths))
        order_by = self._order_by(plan)
        if order_by:
            statement = statement.order_by(*order_by)
        if plan.distinct:
            statement = statement.distinct()
        statement = apply_lock(statement, plan.lock_mode)
        if plan.hints.populate_existing:
            statement = statement.execution_options(populate_existing=True)
        return statement

    # Declared plans

    def _declared_sql(self, plan: QueryPlan, paged: bool) -> str:
        declared: DeclaredQuery = plan.declared
        if not plan.sort and not paged:
            return declared.sql

        sql = f"SELECT * FROM ({declared.sql}) AS q"
        if plan.sort:
            descriptor = registry.describe(plan.entity)
            parts = []
            for order in plan.sort:
                scalar = descriptor.scalar(order.attribute)
                if scalar is None:
                    raise UnresolvableIntent(
                        f"Cannot order declared query by '{order.attribute}'"
                    )
                parts.append(f"q.{scalar.column} {order.direction.value.upper()}")
            sql += " ORDER BY " + ", ".join(parts)
        if paged:
            sql += f" LIMIT :{LIMIT_PARAM} OFFSET :{OFFSET_PARAM}"
        return sql

    async def _execute_declared(self, plan: QueryPlan, offset: Optional[int],
                                limit: Optional[int]) -> List[Any]:
        declared: DeclaredQuery = plan.declared
        params: Dict[str, Any] = plan.params()

        paged = limit is not None or bool(offset)
        if paged:
            params[LIMIT_PARAM] = limit if limit is not None else -1
            params[OFFSET_PARAM] = offset or 0

        statement = to_text(self._declared_sql(plan, paged), params)

        if declared.rows:
            result = await self.session.execute(statement, params)
            return [dict(row) for row in result.mappings().all()]

        # Entity texts must select every mapped column; they are typed by name
        table = plan.entity.__table__
        typed = statement.columns(**{column.name: column.type for column in table.columns})
        orm_statement = select(plan.entity).from_statement(typed)
        if plan.fetch_paths:
            orm_statement = orm_statement.options(
                *loader_options(plan.entity, plan.fetch_paths, textual=True)
            )
        if plan.hints.populate_existing:
            orm_statement = orm_statement.execution_options(populate_existing=True)
        result = await self.session.execute(orm_statement, params)
        return list(result.scalars().all())

    # Consumed interface

    async def acquire_lock(self, plan: QueryPlan) -> None:
        """Bound the wait of the plan's pessimistic lock, if it requests one."""
        if plan.lock_mode is LockMode.OPTIMISTIC:
            if registry.describe(plan.entity).version_attribute is None:
                raise UnresolvableIntent(
                    f"Optimistic locking needs a version attribute on {plan.entity.__name__}"
                )
            return
        await acquire_lock(self.session, plan.lock_mode, plan.hints.lock_timeout_ms)

    async def execute(self, plan: QueryPlan, offset: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Any]:
        """
        Execute a plan and return its ordered rows.

        Args:
            plan: Plan to execute
            offset: Rows to skip
            limit: Maximum rows to return (combined with the plan's own limit)

        Returns:
            Entity instances, or row mappings for raw declared queries

        Raises:
            LockTimeout: If a pessimistic lock could not be acquired in time
        """
        started = time.perf_counter()
        limit = _capped_limit(plan, offset, limit)
        with translate_store_errors():
            await self.acquire_lock(plan)

            if limit == 0:
                rows = []
            elif plan.textual:
                rows = await self._execute_declared(plan, offset, limit)
            else:
                statement = self.build_statement(plan)
                if offset:
                    statement = statement.offset(offset)
                if limit is not None:
                    statement = statement.limit(limit)
                result = await self.session.execute(statement)
                if plan.fetch_paths:
                    result = result.unique()
                rows = list(result.scalars().all())

        if plan.hints.read_only and not (plan.textual and plan.declared.rows):
            for row in rows:
                if row in self.session:
                    self.session.expunge(row)

        log_with_context(
            logger, "debug", "Query executed",
            scope_id=self.scope_id,
            entity=plan.entity.__name__,
            strategy=plan.strategy,
            rows=len(rows),
            elapsed_ms=_elapsed_ms(started),
        )
        return rows

    async def count(self, plan: QueryPlan) -> int:
        """
        Count the rows a plan selects, ignoring ordering, fetch and locks.

        Args:
            plan: Plan to count

        Returns:
            Number of matching rows
        """
        started = time.perf_counter()
        cap = plan.limit
        plan = plan.unordered()
        with translate_store_errors():
            if plan.textual:
                declared: DeclaredQuery = plan.declared
                params = plan.params()
                if declared.count_sql is not None:
                    sql = declared.count_sql
                    params = {name: params[name] for name in declared.count_parameters}
                else:
                    sql = f"SELECT count(*) FROM ({declared.sql}) AS q"
                result = await self.session.execute(to_text(sql, params), params)
            else:
                inner = select(plan.entity)
                if plan.filter is not None:
                    inner = inner.where(plan.filter.to_clause())
                if plan.distinct:
                    inner = inner.distinct()
                statement = select(func.count()).select_from(inner.subquery())
                result = await self.session.execute(statement)
            total = int(result.scalar_one())
        if cap is not None:
            total = min(total, cap)

        log_with_context(
            logger, "debug", "Count executed",
            scope_id=self.scope_id,
            entity=plan.entity.__name__,
            strategy=plan.strategy,
            rows=total,
            elapsed_ms=_elapsed_ms(started),
        )
        return total

    async def exists(self, plan: QueryPlan) -> bool:
        """Tell whether a plan selects at least one row."""
        with translate_store_errors():
            if plan.textual:
                rows = await self.execute(plan, limit=1)
                return bool(rows)
            inner = select(literal_column("1")).select_from(plan.entity)
            if plan.filter is not None:
                inner = inner.where(plan.filter.to_clause())
            result = await self.session.execute(select(inner.exists()))
            return bool(result.scalar())

    async def bulk_apply(self, entity: type, filter: Optional[Specification],
                         mutation: Mapping[str, Any]) -> int:
        """
        Apply a set-based mutation to every row matching a filter.

        Pending changes are flushed first and the identity map is cleared
        afterwards, so later reads see the new values. Auditing is not
        applied to rows changed this way.

        Args:
            entity: Entity class to update
            filter: Rows to update (None updates every row)
            mutation: Attribute -> constant, or callable over the column
                expression (``lambda weight: weight + 10``)

        Returns:
            Affected row count
        """
        if not mutation:
            raise UnresolvableIntent("Bulk update needs at least one attribute to set")

        descriptor = registry.describe(entity)
        values = {}
        for name, value in mutation.items():
            if descriptor.attribute(name) is None:
                raise InvalidSpecification(f"{entity.__name__} has no attribute '{name}'")
            column = getattr(entity, name)
            values[column] = value(column) if callable(value) else value

        statement = update(entity).values(values).execution_options(synchronize_session=False)
        if filter is not None:
            statement = statement.where(filter.to_clause())
        return await self._run_bulk(entity, statement, "bulk_update")

    async def bulk_remove(self, entity: type, filter: Optional[Specification]) -> int:
        """
        Delete every row matching a filter in one statement.

        Returns:
            Affected row count
        """
        registry.describe(entity)
        statement = delete(entity).execution_options(synchronize_session=False)
        if filter is not None:
            statement = statement.where(filter.to_clause())
        return await self._run_bulk(entity, statement, "bulk_delete")

    async def execute_modifying(self, plan: QueryPlan) -> int:
        """
        Execute a declared UPDATE/DELETE text.

        Returns:
            Affected row count
        """
        params = plan.params()
        statement = to_text(plan.declared.sql, params)
        return await self._run_bulk(plan.entity, statement, plan.strategy, params)

    async def _run_bulk(self, entity: type, statement, strategy: str,
                        params: Optional[Mapping[str, Any]] = None) -> int:
        started = time.perf_counter()
        with translate_store_errors():
            await self.session.flush()
            if params is None:
                result = await self.session.execute(statement)
            else:
                result = await self.session.execute(statement, params)
            affected = result.rowcount
        # Loaded rows may be stale now
        self.session.expunge_all()

        log_with_context(
            logger, "info", "Bulk statement executed",
            scope_id=self.scope_id,
            entity=entity.__name__,
            strategy=strategy,
            affected=affected,
            elapsed_ms=_elapsed_ms(started),
        )
        return affected
