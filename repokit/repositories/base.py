"""
Generic repository.

Repository[T] is the caller-facing surface over one entity class:
CRUD, criteria lookups with specifications, paging and slicing,
query by example, bulk operations and ad-hoc declared text.

Declared lookup methods are added as class attributes built by
``derived_query()``, ``declared_query()`` and ``named_query()``. They are
compiled when the repository class is created, so a malformed lookup
fails at import time with UnresolvableIntent.

Returned entities outlive their scope. Traverse their associations with
``repokit.query.fetch.association()`` (or ``await scope.load()`` while the
scope is open); an association neither fetched nor loaded then fails
with DetachedAccess.

Example:
    class PlayerRepository(Repository[Player]):
        entity = Player

        find_by_name_and_height_greater_than = derived_query()
        find_all_using_declared_query = declared_query("SELECT * FROM players")

    async with scopes() as scope:
        players = scope.repository(PlayerRepository)
        tall = await players.find_by_name_and_height_greater_than("Roy", 170)
"""

import logging
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.errors import (
    InvalidSpecification,
    NonUniqueResult,
    NotFound,
    OptimisticConflict,
    UnresolvableIntent,
    translate_store_errors,
)
from repokit.core.identity import identity_of, is_new
from repokit.core.locking import LockMode, QueryHints
from repokit.core.logging_config import log_with_context
from repokit.models.registry import registry
from repokit.query.declared import DeclaredQuery, resolve_named
from repokit.query.example import Example, example_specification
from repokit.query.executor import QueryExecutor
from repokit.query.fetch import plan_fetch
from repokit.query.paging import PageRequest, Page, Slice, fetch_page, fetch_slice
from repokit.query.patterns import ParsedPattern, parse_pattern
from repokit.query.plan import QueryPlan, ResultKind, Sort
from repokit.query.projection import ProjectionKind, ProjectionMapper, ProjectionRegistry, projections
from repokit.query.specification import Comparator, Specification, where

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT")


class Repository(Generic[EntityT]):
    """
    Data access for one entity class.

    Subclasses set ``entity``. Instances are bound to one session and are
    normally obtained from ``PersistenceScope.repository()``.

    Args:
        session: Session of the current persistence scope
        projections: Projection registry (defaults to the global one)
        scope_id: Correlation ID for logs
    """

    entity: Type[EntityT] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.entity is None:
            return
        registry.describe(cls.entity)
        # Builder step: compile every declared lookup of the class
        for name, attribute in list(vars(cls).items()):
            if isinstance(attribute, QueryMethod):
                attribute.compile(cls.entity)

    def __init__(self, session: AsyncSession, projections: Optional[ProjectionRegistry] = None,
                 scope_id: Optional[str] = None):
        if self.entity is None:
            raise TypeError(f"{type(self).__name__} must set the 'entity' class attribute")
        self.session = session
        self.scope_id = scope_id
        self.descriptor = registry.describe(self.entity)
        self.executor = QueryExecutor(session, scope_id=scope_id)
        self.mapper = ProjectionMapper(projections)

    # Helpers

    def _log(self, level: str, message: str, **fields: Any) -> None:
        log_with_context(logger, level, message, scope_id=self.scope_id,
                         entity=self.descriptor.name, **fields)

    def _check_filter(self, spec: Optional[Specification]) -> None:
        if spec is not None and spec.entity is not self.entity:
            raise InvalidSpecification(
                f"Predicate over {spec.entity.__name__} used with {self.descriptor.name} repository"
            )

    def _check_instance(self, instance: Any) -> None:
        if not isinstance(instance, self.entity):
            raise InvalidSpecification(
                f"{type(instance).__name__} is not a {self.descriptor.name}"
            )

    def _attached(self, instance: Any) -> bool:
        return sa_inspect(instance).session_id == self.session.sync_session.hash_key

    async def _check_version(self, instance: Any) -> None:
        # merge() copies the detached counter over the stored one, so compare first
        version = self.descriptor.version_attribute
        if version is None:
            return
        carried = sa_inspect(instance).dict.get(version)
        if carried is None:
            return
        current = await self.session.get(self.entity, identity_of(instance))
        if current is not None and getattr(current, version) != carried:
            raise OptimisticConflict(
                f"{self.descriptor.name} {identity_of(instance)!r} is at version "
                f"{getattr(current, version)}, not {carried}"
            )

    def plan(
        self,
        filter: Optional[Specification] = None,
        sort: Optional[Sort] = None,
        fetch: Iterable[str] = (),
        lock: LockMode = LockMode.NONE,
        hints: Optional[QueryHints] = None,
        strategy: str = "criteria",
    ) -> QueryPlan:
        """Build a criteria plan for this repository's entity."""
        self._check_filter(filter)
        plan = QueryPlan(
            entity=self.entity,
            filter=filter,
            sort=sort or Sort(),
            lock_mode=LockMode(lock),
            hints=hints or QueryHints(),
            strategy=strategy,
        )
        return plan_fetch(plan, fetch)

    async def run(
        self,
        plan: QueryPlan,
        kind: ResultKind,
        page: Optional[PageRequest] = None,
        projection: Optional[type] = None,
    ) -> Any:
        """
        Execute a plan and shape the result.

        Args:
            plan: Resolved plan
            kind: Result shape
            page: Page request (required for PAGE and SLICE)
            projection: Output type token (None returns entities)

        Returns:
            List, single value, Page, Slice, count, bool or affected rows
        """
        if kind is ResultKind.MODIFYING:
            return await self.executor.execute_modifying(plan)
        if kind is ResultKind.COUNT:
            return await self.executor.count(plan)
        if kind is ResultKind.EXISTS:
            return await self.executor.exists(plan)
        if kind is ResultKind.DELETE:
            return await self._delete_matching(plan)

        descriptor = self.mapper.resolve(projection, self.entity)
        raw_rows = plan.textual and plan.declared.rows
        if descriptor.fetch_paths() and not raw_rows:
            plan = plan_fetch(plan, descriptor.fetch_paths())
        project = None
        if descriptor.kind is not ProjectionKind.ENTITY:
            def project(row):
                return self.mapper.project(descriptor, row)

        if kind in (ResultKind.PAGE, ResultKind.SLICE):
            if page is None:
                raise UnresolvableIntent(f"A {kind.value} lookup needs a PageRequest")
            if kind is ResultKind.PAGE:
                return await fetch_page(self.executor, plan, page, project)
            return await fetch_slice(self.executor, plan, page, project)

        if page is not None:
            plan = plan.with_sort(page.sort)
            rows = await self.executor.execute(plan, offset=page.offset, limit=page.size)
        elif kind in (ResultKind.ONE, ResultKind.OPTIONAL):
            rows = await self.executor.execute(plan, limit=2)
        elif kind is ResultKind.FIRST:
            rows = await self.executor.execute(plan, limit=1)
        else:
            rows = await self.executor.execute(plan)

        if project is not None:
            rows = [project(row) for row in rows]

        if kind is ResultKind.LIST:
            return rows
        if len(rows) > 1:
            raise NonUniqueResult(
                f"{self.descriptor.name} lookup ({plan.strategy}) matched more than one row"
            )
        if not rows:
            if kind is ResultKind.ONE:
                raise NotFound(f"No {self.descriptor.name} matched the lookup ({plan.strategy})")
            return None
        return rows[0]

    async def _delete_matching(self, plan: QueryPlan) -> int:
        rows = await self.executor.execute(plan)
        with translate_store_errors():
            for row in rows:
                await self.session.delete(row)
            await self.session.flush()
        self._log("info", "Entities deleted", strategy=plan.strategy, affected=len(rows))
        return len(rows)

    # Writes

    async def save(self, instance: EntityT) -> EntityT:
        """
        Insert or update an entity.

        New entities are added; existing detached ones are merged into the
        scope (the merged instance is returned). Audit metadata is stamped
        on flush.

        Args:
            instance: Entity to persist

        Returns:
            The managed instance holding the generated identity

        Raises:
            OptimisticConflict: If a merged instance carries a stale version
        """
        self._check_instance(instance)
        with translate_store_errors():
            if self._attached(instance):
                await self.session.flush()
                return instance

            new = is_new(instance)
            if new is None:
                existing = await self.session.get(self.entity, identity_of(instance))
                new = existing is None

            if new:
                self.session.add(instance)
                await self.session.flush()
                managed = instance
            else:
                await self._check_version(instance)
                managed = await self.session.merge(instance)
                await self.session.flush()

        self._log("debug", "Entity saved", identity=identity_of(managed), inserted=bool(new))
        return managed

    async def save_all(self, instances: Iterable[EntityT]) -> List[EntityT]:
        return [await self.save(instance) for instance in instances]

    async def delete(self, instance: EntityT) -> None:
        """
        Delete an entity. Deleting a never-persisted entity does nothing.
        """
        self._check_instance(instance)
        with translate_store_errors():
            if not self._attached(instance):
                if sa_inspect(instance).key is None:
                    return
                instance = await self.session.merge(instance)
            await self.session.delete(instance)
            await self.session.flush()
        self._log("debug", "Entity deleted", identity=identity_of(instance))

    async def delete_by_id(self, identity: Any) -> bool:
        """
        Delete the entity with an identity.

        Returns:
            True if a row was deleted, False if none existed
        """
        instance = await self.find_by_id(identity)
        if instance is None:
            return False
        await self.delete(instance)
        return True

    async def delete_all(self, instances: Optional[Iterable[EntityT]] = None) -> int:
        """
        Delete the given entities, or every entity when none are given.

        Entities are deleted one by one through the session, so cascades
        apply. Use bulk_delete for a single set-based statement.

        Returns:
            Number of entities deleted
        """
        if instances is None:
            instances = await self.find_all()
        count = 0
        for instance in list(instances):
            await self.delete(instance)
            count += 1
        return count

    # Reads by identity

    async def find_by_id(
        self,
        identity: Any,
        fetch: Iterable[str] = (),
        projection: Optional[type] = None,
        lock: LockMode = LockMode.NONE,
    ) -> Optional[Any]:
        """
        Find an entity by identity.

        Args:
            identity: Identity value
            fetch: Association paths to load with the entity
            projection: Output type token
            lock: Row lock for the read

        Returns:
            Entity (or projection), None when absent
        """
        if identity is None:
            raise InvalidSpecification("Identity must not be None")

        fetch = tuple(fetch)
        if not fetch and projection is None and LockMode(lock) is LockMode.NONE:
            with translate_store_errors():
                return await self.session.get(self.entity, identity)

        spec = where(self.entity, self.descriptor.identity.name, Comparator.EQUAL, identity)
        plan = self.plan(spec, fetch=fetch, lock=lock, strategy="identity")
        return await self.run(plan, ResultKind.OPTIONAL, projection=projection)

    async def get_by_id(self, identity: Any, **options: Any) -> Any:
        """
        Like find_by_id, but absence is an error.

        Raises:
            NotFound: If no entity has the identity
        """
        found = await self.find_by_id(identity, **options)
        if found is None:
            raise NotFound(f"{self.descriptor.name} with identity {identity!r} does not exist")
        return found

    async def exists_by_id(self, identity: Any) -> bool:
        if identity is None:
            raise InvalidSpecification("Identity must not be None")
        spec = where(self.entity, self.descriptor.identity.name, Comparator.EQUAL, identity)
        return await self.executor.exists(self.plan(spec, strategy="identity"))

    # Criteria reads

    async def find_all(
        self,
        filter: Optional[Specification] = None,
        sort: Optional[Sort] = None,
        page: Optional[PageRequest] = None,
        fetch: Iterable[str] = (),
        projection: Optional[type] = None,
        lock: LockMode = LockMode.NONE,
        hints: Optional[QueryHints] = None,
    ) -> Union[List[Any], Page]:
        """
        Find every entity matching a filter.

        Args:
            filter: Specification (None matches all)
            sort: Ordering
            page: Page request; when given the result is a Page
            fetch: Association paths to load with each entity
            projection: Output type token
            lock: Row lock for the read
            hints: Execution hints

        Returns:
            List of entities/projections, or a Page when page is given
        """
        plan = self.plan(filter, sort, fetch, lock, hints)
        kind = ResultKind.PAGE if page is not None else ResultKind.LIST
        return await self.run(plan, kind, page=page, projection=projection)

    async def find_slice(
        self,
        filter: Optional[Specification],
        page: PageRequest,
        fetch: Iterable[str] = (),
        projection: Optional[type] = None,
    ) -> Slice:
        plan = self.plan(filter, fetch=fetch)
        return await self.run(plan, ResultKind.SLICE, page=page, projection=projection)

    async def find_one(
        self,
        filter: Optional[Specification],
        fetch: Iterable[str] = (),
        projection: Optional[type] = None,
    ) -> Optional[Any]:
        """
        Find the single entity matching a filter.

        Returns:
            The entity, or None when nothing matches

        Raises:
            NonUniqueResult: If more than one row matches
        """
        plan = self.plan(filter, fetch=fetch)
        return await self.run(plan, ResultKind.OPTIONAL, projection=projection)

    async def count(self, filter: Optional[Specification] = None) -> int:
        return await self.executor.count(self.plan(filter))

    async def exists(self, filter: Optional[Specification]) -> bool:
        return await self.executor.exists(self.plan(filter))

    # Bulk operations

    async def bulk_update(self, filter: Optional[Specification], mutation: Mapping[str, Any]) -> int:
        """
        Update every matching row in one statement.

        Auditing does not apply. The scope's loaded entities are detached
        afterwards so later reads fetch the new values.

        Args:
            filter: Rows to update (None updates every row)
            mutation: Attribute -> value or callable over the column

        Returns:
            Affected row count

        Example:
            await players.bulk_update(
                players_spec.greater_than("height", 180),
                {"weight": lambda weight: weight + 10},
            )
        """
        self._check_filter(filter)
        return await self.executor.bulk_apply(self.entity, filter, mutation)

    async def bulk_delete(self, filter: Optional[Specification]) -> int:
        self._check_filter(filter)
        return await self.executor.bulk_remove(self.entity, filter)

    # Query by example

    def _example_plan(self, example: Example, sort: Optional[Sort] = None) -> QueryPlan:
        if example.entity is not self.entity:
            raise InvalidSpecification(
                f"Example probe is a {example.entity.__name__}, not a {self.descriptor.name}"
            )
        return self.plan(example_specification(example), sort, strategy="example")

    async def find_all_by_example(
        self,
        example: Example,
        sort: Optional[Sort] = None,
        page: Optional[PageRequest] = None,
        projection: Optional[type] = None,
    ) -> Union[List[Any], Page]:
        plan = self._example_plan(example, sort)
        kind = ResultKind.PAGE if page is not None else ResultKind.LIST
        return await self.run(plan, kind, page=page, projection=projection)

    async def find_one_by_example(self, example: Example, projection: Optional[type] = None) -> Optional[Any]:
        return await self.run(self._example_plan(example), ResultKind.OPTIONAL, projection=projection)

    async def count_by_example(self, example: Example) -> int:
        return await self.executor.count(self._example_plan(example))

    async def exists_by_example(self, example: Example) -> bool:
        return await self.executor.exists(self._example_plan(example))

    # Declared text

    async def query(
        self,
        sql: str,
        *args: Any,
        count_sql: Optional[str] = None,
        rows: bool = False,
        modifying: bool = False,
        result: ResultKind = ResultKind.LIST,
        page: Optional[PageRequest] = None,
        sort: Optional[Sort] = None,
        fetch: Iterable[str] = (),
        projection: Optional[type] = None,
        **params: Any,
    ) -> Any:
        """
        Run ad-hoc declared text.

        Args:
            sql: Query text with ?N or :name placeholders
            *args: Positional parameter values
            count_sql: Count query used for PAGE results
            rows: Return row mappings instead of entities
            modifying: Text is an UPDATE/DELETE; returns the affected count
            result: Result shape
            page: Page request
            sort: Ordering applied around the text
            fetch: Association paths to load with each entity
            projection: Output type token
            **params: Named parameter values

        Example:
            await players.query("SELECT * FROM players WHERE height > :height", height=170)
        """
        declared = DeclaredQuery.parse(sql, count_sql=count_sql, rows=rows, modifying=modifying)
        if modifying:
            result = ResultKind.MODIFYING
        plan = QueryPlan(
            entity=self.entity,
            declared=declared,
            bindings=tuple(declared.bind(args, params).items()),
            sort=sort or Sort(),
            strategy="declared",
        )
        plan = plan_fetch(plan, fetch)
        return await self.run(plan, result, page=page, projection=projection)

    # Session

    async def flush(self) -> None:
        with translate_store_errors():
            await self.session.flush()

    def clear(self) -> None:
        self.session.expunge_all()


# Declared lookup methods

CALL_OPTIONS = ("page", "sort", "projection")


def _split_call(args: Sequence[Any], kwargs: Dict[str, Any]) -> Tuple[List[Any], Dict[str, Any], Dict[str, Any]]:
    """Separate trailing PageRequest/Sort positionals and option keywords."""
    args = list(args)
    options: Dict[str, Any] = {name: kwargs.pop(name) for name in CALL_OPTIONS if name in kwargs}
    while args and isinstance(args[-1], (PageRequest, Sort)):
        value = args.pop()
        key = "page" if isinstance(value, PageRequest) else "sort"
        if key in options:
            raise UnresolvableIntent(f"'{key}' given twice")
        options[key] = value
    return args, kwargs, options


class QueryMethod:
    """
    Base descriptor for declared lookup methods.

    Accessed through an instance, it returns an async callable taking the
    lookup arguments, optionally followed by a PageRequest and/or Sort, and
    the ``page=``, ``sort=`` and ``projection=`` keywords.
    """

    strategy = "declared"

    def __init__(self, fetch: Iterable[str] = (), lock: LockMode = LockMode.NONE,
                 hints: Optional[QueryHints] = None, projection: Optional[type] = None):
        self.fetch = tuple(fetch)
        self.lock = LockMode(lock)
        self.hints = hints or QueryHints()
        self.projection = projection
        self.name: Optional[str] = None
        self.entity: Optional[type] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def compile(self, entity: type) -> None:
        self.entity = entity
        plan_fetch(QueryPlan(entity=entity), self.fetch)
        projections.resolve(self.projection, entity)

    def __get__(self, instance: Optional[Repository], owner: type):
        if instance is None:
            return self

        async def call(*args: Any, **kwargs: Any) -> Any:
            args, kwargs, options = _split_call(args, kwargs)
            return await self.invoke(instance, args, kwargs, options)

        call.__name__ = self.name
        call.__qualname__ = f"{owner.__name__}.{self.name}"
        return call

    def base_plan(self, **fields: Any) -> QueryPlan:
        plan = QueryPlan(
            entity=self.entity,
            lock_mode=self.lock,
            hints=self.hints,
            strategy=self.strategy,
            **fields,
        )
        return plan_fetch(plan, self.fetch)

    async def invoke(self, repository: Repository, args: List[Any], kwargs: Dict[str, Any],
                     options: Dict[str, Any]) -> Any:
        raise NotImplementedError


class DerivedQuery(QueryMethod):
    """Lookup whose filter, ordering and result shape come from its name."""

    strategy = "derived"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.parsed: Optional[ParsedPattern] = None

    def compile(self, entity: type) -> None:
        super().compile(entity)
        self.parsed = parse_pattern(entity, self.name)

    async def invoke(self, repository, args, kwargs, options):
        if kwargs:
            raise UnresolvableIntent(
                f"'{self.name}' takes positional arguments only, got {sorted(kwargs)}"
            )
        parsed = self.parsed
        plan = self.base_plan(
            filter=parsed.bind(args),
            sort=parsed.sort,
            distinct=parsed.distinct,
            limit=parsed.limit,
        ).with_sort(options.get("sort"))
        return await repository.run(
            plan,
            parsed.kind,
            page=options.get("page"),
            projection=options.get("projection", self.projection),
        )


class DeclaredTextQuery(QueryMethod):
    """Lookup running literal SQL."""

    def __init__(self, sql: str, count_sql: Optional[str] = None, rows: bool = False,
                 modifying: bool = False, result: ResultKind = ResultKind.LIST, **kwargs: Any):
        super().__init__(**kwargs)
        self.sql = sql
        self.count_sql = count_sql
        self.rows = rows
        self.modifying = modifying
        self.result = ResultKind.MODIFYING if modifying else ResultKind(result)
        self.declared: Optional[DeclaredQuery] = None

    def parse(self, entity: type) -> DeclaredQuery:
        return DeclaredQuery.parse(
            self.sql, count_sql=self.count_sql, rows=self.rows, modifying=self.modifying
        )

    def compile(self, entity: type) -> None:
        super().compile(entity)
        self.declared = self.parse(entity)

    async def invoke(self, repository, args, kwargs, options):
        bindings = self.declared.bind(args, kwargs)
        plan = self.base_plan(
            declared=self.declared,
            bindings=tuple(bindings.items()),
        ).with_sort(options.get("sort"))
        return await repository.run(
            plan,
            self.result,
            page=options.get("page"),
            projection=options.get("projection", self.projection),
        )


class NamedQuery(DeclaredTextQuery):
    """Lookup running a query text declared on the entity by name."""

    strategy = "named"

    def __init__(self, query_name: Optional[str] = None, **kwargs: Any):
        super().__init__(sql="", **kwargs)
        self.query_name = query_name

    def parse(self, entity: type) -> DeclaredQuery:
        return resolve_named(
            entity,
            self.query_name or self.name,
            count_sql=self.count_sql,
            rows=self.rows,
            modifying=self.modifying,
        )


def derived_query(fetch: Iterable[str] = (), lock: LockMode = LockMode.NONE,
                  hints: Optional[QueryHints] = None, projection: Optional[type] = None) -> DerivedQuery:
    """
    Declare a lookup derived from the attribute name it is assigned to.

    Example:
        find_by_name_and_height_greater_than = derived_query()
    """
    return DerivedQuery(fetch=fetch, lock=lock, hints=hints, projection=projection)


def declared_query(
    sql: str,
    count_sql: Optional[str] = None,
    rows: bool = False,
    modifying: bool = False,
    result: ResultKind = ResultKind.LIST,
    fetch: Iterable[str] = (),
    lock: LockMode = LockMode.NONE,
    hints: Optional[QueryHints] = None,
    projection: Optional[type] = None,
) -> DeclaredTextQuery:
    """
    Declare a lookup running literal SQL with ?N or :name placeholders.

    Example:
        find_by_name_positional = declared_query(
            "SELECT * FROM players WHERE name = ?1 AND height > ?2"
        )
    """
    return DeclaredTextQuery(
        sql, count_sql=count_sql, rows=rows, modifying=modifying, result=result,
        fetch=fetch, lock=lock, hints=hints, projection=projection,
    )


def named_query(
    query_name: Optional[str] = None,
    count_sql: Optional[str] = None,
    rows: bool = False,
    result: ResultKind = ResultKind.LIST,
    fetch: Iterable[str] = (),
    projection: Optional[type] = None,
) -> NamedQuery:
    """
    Declare a lookup running a named query of the entity.

    Args:
        query_name: Key in the entity's ``__named_queries__``
            (defaults to the attribute name)
    """
    return NamedQuery(
        query_name, count_sql=count_sql, rows=rows, result=result,
        fetch=fetch, projection=projection,
    )
