"""
Projection mapper.

Reshapes query rows into read-only output types selected per call by a
type token:

- entity: the managed entity itself (token None or the entity class)
- closed view: frozen pydantic model whose fields are a subset of the
  entity's attributes
- open view: frozen pydantic model with fields computed from
  ``str.format`` templates over entity attributes
- DTO: any class constructed positionally from a declared field list
- nested: a closed/open view field holding the projection of an
  association; its path is fetched together with the owner

Declarations are validated against the entity registry when the
decorator runs, so a typo fails at import time.

Example:
    @closed_view(Player)
    class PlayerSummary(BaseModel):
        model_config = ConfigDict(frozen=True)
        name: Optional[str] = None
"""

import logging
import string
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from repokit.core.errors import UnsupportedProjection
from repokit.models.registry import registry

logger = logging.getLogger(__name__)


class ProjectionKind(str, Enum):
    ENTITY = "entity"
    CLOSED = "closed"
    OPEN = "open"
    DTO = "dto"


@dataclass(frozen=True)
class ProjectionDescriptor:
    """
    Declared output shape.

    Attributes:
        kind: Projection kind
        source: Entity class the projection reads
        target: Output type
        fields: Attributes copied verbatim, in declaration order
        expressions: (field, template) pairs of an open view
        nested: (association, descriptor) pairs of nested views
    """
    kind: ProjectionKind
    source: type
    target: type
    fields: Tuple[str, ...] = ()
    expressions: Tuple[Tuple[str, str], ...] = ()
    nested: Tuple[Tuple[str, "ProjectionDescriptor"], ...] = ()

    def fetch_paths(self) -> Tuple[str, ...]:
        """Association paths the projection reads, nested paths included."""
        paths: List[str] = []
        for name, descriptor in self.nested:
            paths.append(name)
            paths.extend(f"{name}.{inner}" for inner in descriptor.fetch_paths())
        return tuple(paths)


class ProjectionRegistry:
    """Projection descriptors keyed by their output type."""

    def __init__(self):
        self._descriptors: Dict[type, ProjectionDescriptor] = {}
        self._entity_descriptors: Dict[type, ProjectionDescriptor] = {}

    def register(self, descriptor: ProjectionDescriptor) -> ProjectionDescriptor:
        self._descriptors[descriptor.target] = descriptor
        logger.debug(
            "Projection registered",
            extra={
                "entity": descriptor.source.__name__,
                "projection": descriptor.target.__name__,
                "kind": descriptor.kind.value,
            }
        )
        return descriptor

    def lookup(self, token: type) -> Optional[ProjectionDescriptor]:
        return self._descriptors.get(token)

    def resolve(self, token: Optional[type], entity: type) -> ProjectionDescriptor:
        """
        Resolve the descriptor for a requested output type.

        Args:
            token: Output type requested by the caller (None for the entity)
            entity: Entity class the query returns

        Returns:
            ProjectionDescriptor

        Raises:
            UnsupportedProjection: If the token is unknown or declared for
                another entity
        """
        if token is None or token is entity:
            descriptor = self._entity_descriptors.get(entity)
            if descriptor is None:
                descriptor = ProjectionDescriptor(
                    kind=ProjectionKind.ENTITY, source=entity, target=entity
                )
                self._entity_descriptors[entity] = descriptor
            return descriptor

        descriptor = self._descriptors.get(token)
        if descriptor is None:
            raise UnsupportedProjection(
                f"No projection of {entity.__name__} is declared for {getattr(token, '__name__', token)!r}"
            )
        if descriptor.source is not entity:
            raise UnsupportedProjection(
                f"{token.__name__} projects {descriptor.source.__name__}, not {entity.__name__}"
            )
        return descriptor


# Process-wide projection registry
projections = ProjectionRegistry()


def _check_scalar(entity: type, name: str, target: type) -> None:
    if registry.describe(entity).scalar(name) is None:
        raise UnsupportedProjection(
            f"{target.__name__}.{name} does not match an attribute of {entity.__name__}"
        )


def _check_frozen_model(target: type) -> None:
    if not (isinstance(target, type) and issubclass(target, BaseModel)):
        raise UnsupportedProjection(f"{target!r} must be a pydantic model")
    if not target.model_config.get("frozen", False):
        raise UnsupportedProjection(f"{target.__name__} must be declared with frozen=True")


def _nested_descriptors(entity: type, target: type,
                        nested: Optional[Mapping[str, type]]) -> Tuple[Tuple[str, ProjectionDescriptor], ...]:
    pairs = []
    for name, view in (nested or {}).items():
        association = registry.describe(entity).association(name)
        if association is None:
            raise UnsupportedProjection(
                f"{target.__name__}.{name} does not match an association of {entity.__name__}"
            )
        if name not in target.model_fields:
            raise UnsupportedProjection(f"{target.__name__} has no field '{name}'")
        inner = projections.lookup(view)
        if inner is None or inner.source is not association.target:
            raise UnsupportedProjection(
                f"{getattr(view, '__name__', view)!r} is not a projection of {association.target.__name__}"
            )
        pairs.append((name, inner))
    return tuple(pairs)


def template_fields(template: str) -> Tuple[str, ...]:
    """
    List the attributes a template reads.

    Only bare identifiers are accepted as placeholders: attribute access,
    indexing, conversions (`!r`) and positional fields are rejected.

    Raises:
        UnsupportedProjection: On any other placeholder form
    """
    names = []
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as exc:
        raise UnsupportedProjection(f"Malformed template {template!r}: {exc}") from exc

    for _, field_name, format_spec, conversion in parsed:
        if field_name is None:
            continue
        if not field_name.isidentifier():
            raise UnsupportedProjection(
                f"Template placeholder '{{{field_name}}}' must be a bare attribute name"
            )
        if conversion is not None:
            raise UnsupportedProjection(
                f"Template placeholder '{{{field_name}!{conversion}}}' must not use a conversion"
            )
        if format_spec and "{" in format_spec:
            raise UnsupportedProjection(f"Nested placeholders are not allowed in {template!r}")
        if field_name not in names:
            names.append(field_name)
    return tuple(names)


def closed_view(entity: type, nested: Optional[Mapping[str, type]] = None):
    """
    Declare a frozen pydantic model as a closed view of an entity.

    Args:
        entity: Source entity class
        nested: Association name -> projection type of the associated entity

    Raises:
        UnsupportedProjection: If a field is not an entity attribute
    """
    def decorator(target: type) -> type:
        _check_frozen_model(target)
        pairs = _nested_descriptors(entity, target, nested)
        nested_names = {name for name, _ in pairs}
        fields = tuple(name for name in target.model_fields if name not in nested_names)
        for name in fields:
            _check_scalar(entity, name, target)
        projections.register(ProjectionDescriptor(
            kind=ProjectionKind.CLOSED, source=entity, target=target,
            fields=fields, nested=pairs,
        ))
        return target
    return decorator


def open_view(entity: type, nested: Optional[Mapping[str, type]] = None, **templates: str):
    """
    Declare a frozen pydantic model as an open view of an entity.

    Fields named in ``templates`` are computed; the other fields are
    copied from entity attributes of the same name.

    Args:
        entity: Source entity class
        nested: Association name -> projection type of the associated entity
        **templates: Field name -> ``str.format`` template over attributes

    Example:
        @open_view(Player, body="height: {height}, weight: {weight}")
        class BodySpec(BaseModel):
            model_config = ConfigDict(frozen=True)
            body: str
    """
    def decorator(target: type) -> type:
        _check_frozen_model(target)
        pairs = _nested_descriptors(entity, target, nested)
        nested_names = {name for name, _ in pairs}

        expressions = []
        for name, template in templates.items():
            if name not in target.model_fields:
                raise UnsupportedProjection(f"{target.__name__} has no field '{name}'")
            for attribute in template_fields(template):
                _check_scalar(entity, attribute, target)
            expressions.append((name, template))

        fields = tuple(
            name for name in target.model_fields
            if name not in templates and name not in nested_names
        )
        for name in fields:
            _check_scalar(entity, name, target)

        projections.register(ProjectionDescriptor(
            kind=ProjectionKind.OPEN, source=entity, target=target,
            fields=fields, expressions=tuple(expressions), nested=pairs,
        ))
        return target
    return decorator


def dto(entity: type, *fields: str):
    """
    Declare a class as a DTO constructed positionally from entity attributes.

    Args:
        entity: Source entity class
        *fields: Attributes passed to the constructor, in order

    Example:
        @dto(Player, "name", "height")
        @dataclass(frozen=True)
        class PlayerResponse:
            name: str
            height: int
    """
    for name in fields:
        if registry.describe(entity).scalar(name) is None:
            raise UnsupportedProjection(f"DTO field '{name}' is not an attribute of {entity.__name__}")

    def decorator(target: type) -> type:
        projections.register(ProjectionDescriptor(
            kind=ProjectionKind.DTO, source=entity, target=target, fields=tuple(fields),
        ))
        return target
    return decorator


def read_value(row: Any, name: str) -> Any:
    """Read one attribute from an ORM instance or a row mapping."""
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _absent(target: type) -> Any:
    values = {
        name: None if field.is_required() else field.get_default(call_default_factory=True)
        for name, field in target.model_fields.items()
    }
    return target.model_construct(**values)


class ProjectionMapper:
    """
    Applies projection descriptors to rows.

    Usage:
        mapper = ProjectionMapper()
        descriptor = projections.resolve(PlayerSummary, Player)
        summaries = mapper.map_all(descriptor, rows)
    """

    def __init__(self, registry: Optional[ProjectionRegistry] = None):
        self.registry = registry or projections

    def resolve(self, token: Optional[type], entity: type) -> ProjectionDescriptor:
        return self.registry.resolve(token, entity)

    def project(self, descriptor: ProjectionDescriptor, row: Any) -> Any:
        if descriptor.kind is ProjectionKind.ENTITY:
            return row

        values = [read_value(row, name) for name in descriptor.fields]
        if descriptor.kind is ProjectionKind.DTO:
            return descriptor.target(*values)

        data: Dict[str, Any] = dict(zip(descriptor.fields, values))
        for name, template in descriptor.expressions:
            arguments = {attribute: read_value(row, attribute)
                         for attribute in template_fields(template)}
            data[name] = template.format(**arguments)
        for name, inner in descriptor.nested:
            data[name] = self._project_nested(inner, read_value(row, name))
        return descriptor.target.model_validate(data)

    def _project_nested(self, descriptor: ProjectionDescriptor, value: Any) -> Any:
        if isinstance(value, (list, set, tuple)):
            return [self.project(descriptor, item) for item in value]
        if value is None:
            return _absent(descriptor.target)
        return self.project(descriptor, value)

    def map_all(self, descriptor: ProjectionDescriptor, rows: Iterable[Any]) -> List[Any]:
        if descriptor.kind is ProjectionKind.ENTITY:
            return list(rows)
        return [self.project(descriptor, row) for row in rows]
