"""
Fetch graph planner.

Validates association paths a caller wants materialized together with
their owner and turns them into loader options:

- criteria plans: chained ``joinedload`` (same round trip as the owner)
- declared-text plans: chained ``selectinload`` (one batched statement
  per path, never one per row)

Cycles are never expanded automatically; only the listed paths load.

Associations of entities returned by a repository are read through
``association(instance, path)``, the supported traversal. It raises
DetachedAccess for a path that was not fetched once the scope has ended.
Plain attribute access (``player.team``) is the ORM's own and raises
SQLAlchemy's DetachedInstanceError in that case.
"""

from typing import Any, Iterable, List

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import joinedload, selectinload

from repokit.core.errors import DetachedAccess, InvalidSpecification, RepositoryError
from repokit.models.registry import registry
from repokit.query.plan import QueryPlan


def validate_fetch_path(entity: type, path: str) -> None:
    """
    Check that every segment of a path is an association.

    Raises:
        InvalidSpecification: If a segment is unknown or a scalar
    """
    resolved = registry.describe(entity).resolve_path(path)
    if resolved.leaf_association is None:
        raise InvalidSpecification(
            f"Fetch path '{path}' must end at an association of {entity.__name__}"
        )


def plan_fetch(plan: QueryPlan, paths: Iterable[str]) -> QueryPlan:
    """
    Annotate a plan with validated fetch paths.

    Args:
        plan: Plan to annotate
        paths: Dotted association paths ("team", "team.players")

    Returns:
        New plan carrying the paths

    Raises:
        InvalidSpecification: On unknown or non-association segments
    """
    paths = tuple(paths or ())
    for path in paths:
        validate_fetch_path(plan.entity, path)
    return plan.with_fetch(*paths) if paths else plan


def loader_options(entity: type, paths: Iterable[str], textual: bool = False) -> List[Any]:
    """
    Build SQLAlchemy loader options for fetch paths.

    Args:
        entity: Root entity class
        paths: Validated dotted association paths
        textual: Plan executes declared text (joins cannot be added to it)

    Returns:
        List of loader options for ``.options(...)``
    """
    strategy = selectinload if textual else joinedload
    options = []
    for path in paths:
        resolved = registry.describe(entity).resolve_path(path)
        hops = list(resolved.hops) + [resolved.leaf_association]
        option = strategy(getattr(hops[0].owner, hops[0].name))
        for hop in hops[1:]:
            attribute = getattr(hop.owner, hop.name)
            option = option.selectinload(attribute) if textual else option.joinedload(attribute)
        options.append(option)
    return options


def is_materialized(instance: Any, path: str) -> bool:
    """
    Tell whether every association along a path is already loaded.

    Args:
        instance: Entity instance
        path: Dotted association path

    Returns:
        True if the path can be traversed without touching the store
    """
    current = [instance]
    for segment in path.split("."):
        following = []
        for obj in current:
            if obj is None:
                continue
            if segment in sa_inspect(obj).unloaded:
                return False
            value = getattr(obj, segment)
            if isinstance(value, (list, set, tuple)):
                following.extend(value)
            else:
                following.append(value)
        current = following
    return True


def association(instance: Any, path: str) -> Any:
    """
    Read a materialized association.

    Args:
        instance: Entity instance
        path: Dotted association path

    Returns:
        The associated entity, collection or None

    Raises:
        DetachedAccess: If the association was never loaded and the
            instance's scope has ended
        RepositoryError: If it was never loaded but the instance is still
            attached; use ``await scope.load(instance, path)`` instead
    """
    current = instance
    for segment in path.split("."):
        if current is None:
            return None
        state = sa_inspect(current)
        if segment in state.unloaded:
            if state.detached:
                raise DetachedAccess(
                    f"{type(current).__name__}.{segment} was not fetched and its scope has ended"
                )
            raise RepositoryError(
                f"{type(current).__name__}.{segment} is not loaded; "
                f"use 'await scope.load(instance, \"{path}\")'"
            )
        current = getattr(current, segment)
    return current
