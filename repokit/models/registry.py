"""
Entity registry.

Builds static metadata for mapped classes from SQLAlchemy mapper
inspection: the identity attribute, ordered scalar attributes,
association edges with their ownership direction, the optional version
attribute and the named queries declared on the class.

Descriptors are built once per class and cached for the life of the
process.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import Integer
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper, RelationshipDirection, configure_mappers

from repokit.core.errors import InvalidSpecification

logger = logging.getLogger(__name__)


class Cardinality(str, Enum):
    """Shape of an association edge seen from its owner."""

    MANY_TO_ONE = "many_to_one"
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class AttributeDescriptor:
    """Scalar persisted attribute."""
    name: str
    column: str
    python_type: Optional[type]
    default: Any
    nullable: bool


@dataclass(frozen=True)
class IdentityDescriptor:
    """Identity attribute; generated=False means caller-assigned."""
    name: str
    column: str
    python_type: Optional[type]
    generated: bool


@dataclass(frozen=True)
class AssociationDescriptor:
    """Association edge between two mapped classes."""
    name: str
    owner: type
    target: type
    cardinality: Cardinality
    owning: bool
    back_reference: Optional[str]

    @property
    def collection(self) -> bool:
        return self.cardinality in (Cardinality.ONE_TO_MANY, Cardinality.MANY_TO_MANY)


@dataclass(frozen=True)
class ResolvedPath:
    """
    Result of resolving a dotted path against the registry.

    Attributes:
        hops: Associations traversed, outermost first
        leaf: Final segment name
        leaf_attribute: Scalar descriptor when the leaf is an attribute
        leaf_association: Association descriptor when the leaf is an edge
    """
    hops: Tuple[AssociationDescriptor, ...]
    leaf: str
    leaf_attribute: Optional[Union[AttributeDescriptor, IdentityDescriptor]] = None
    leaf_association: Optional[AssociationDescriptor] = None

    @property
    def leaf_owner(self) -> Optional[type]:
        return self.hops[-1].target if self.hops else None


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Static metadata for one mapped entity class.

    Attributes:
        entity: Mapped class
        name: Entity name (class name)
        identity: Identity attribute descriptor
        attributes: Ordered scalar attributes, identity excluded
        associations: Association edges owned or referenced by the entity
        version_attribute: Name of the optimistic-locking counter, if any
        named_queries: Declared query texts keyed by name
    """
    entity: type
    name: str
    identity: IdentityDescriptor
    attributes: Tuple[AttributeDescriptor, ...]
    associations: Tuple[AssociationDescriptor, ...]
    version_attribute: Optional[str] = None
    named_queries: Mapping[str, str] = field(default_factory=dict)

    def attribute(self, name: str) -> Optional[AttributeDescriptor]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def association(self, name: str) -> Optional[AssociationDescriptor]:
        for association in self.associations:
            if association.name == name:
                return association
        return None

    def scalar(self, name: str) -> Optional[Union[AttributeDescriptor, IdentityDescriptor]]:
        """Look up the identity or a scalar attribute by name."""
        if name == self.identity.name:
            return self.identity
        return self.attribute(name)

    def scalar_names(self) -> List[str]:
        return [self.identity.name] + [attribute.name for attribute in self.attributes]

    def resolve_path(self, path: str) -> ResolvedPath:
        """
        Resolve a dotted path such as ``"team.name"``.

        Every segment but the last must be an association. The last segment
        may be a scalar attribute, the identity or an association.

        Args:
            path: Dotted attribute path

        Returns:
            ResolvedPath describing the traversal

        Raises:
            InvalidSpecification: If any segment is unknown
        """
        if not path or not isinstance(path, str):
            raise InvalidSpecification(f"Attribute path must be a non-empty string, got {path!r}")

        segments = path.split(".")
        current = self
        hops: List[AssociationDescriptor] = []

        for segment in segments[:-1]:
            association = current.association(segment)
            if association is None:
                raise InvalidSpecification(
                    f"'{segment}' in path '{path}' is not an association of {current.name}"
                )
            hops.append(association)
            current = registry.describe(association.target)

        leaf = segments[-1]
        scalar = current.scalar(leaf)
        if scalar is not None:
            return ResolvedPath(hops=tuple(hops), leaf=leaf, leaf_attribute=scalar)

        association = current.association(leaf)
        if association is not None:
            return ResolvedPath(hops=tuple(hops), leaf=leaf, leaf_association=association)

        raise InvalidSpecification(f"{current.name} has no attribute '{leaf}' (path '{path}')")

    def named_query(self, name: str) -> Optional[str]:
        return self.named_queries.get(name)


class EntityRegistry:
    """
    Cache of entity descriptors keyed by mapped class.

    Usage:
        descriptor = registry.describe(Player)
        descriptor.identity.name  # "id"
    """

    def __init__(self):
        self._descriptors: Dict[type, EntityDescriptor] = {}

    def describe(self, entity: type) -> EntityDescriptor:
        """
        Get (building on first use) the descriptor of a mapped class.

        Args:
            entity: Mapped class

        Returns:
            Cached EntityDescriptor

        Raises:
            InvalidSpecification: If the class is not mapped or has a composite key
        """
        descriptor = self._descriptors.get(entity)
        if descriptor is None:
            descriptor = self._build(entity)
            self._descriptors[entity] = descriptor
        return descriptor

    def clear(self) -> None:
        self._descriptors.clear()

    def _build(self, entity: type) -> EntityDescriptor:
        try:
            mapper: Mapper = sa_inspect(entity)
        except NoInspectionAvailable as exc:
            raise InvalidSpecification(f"{entity!r} is not a mapped entity class") from exc

        # Relationship directions are only known once mappers are configured
        configure_mappers()

        primary_key = mapper.primary_key
        if len(primary_key) != 1:
            raise InvalidSpecification(
                f"{entity.__name__} must declare exactly one identity column, found {len(primary_key)}"
            )
        pk_column = primary_key[0]
        pk_property = mapper.get_property_by_column(pk_column)
        identity = IdentityDescriptor(
            name=pk_property.key,
            column=pk_column.name,
            python_type=_python_type(pk_column),
            generated=_is_generated(pk_column),
        )

        attributes = []
        for prop in mapper.column_attrs:
            if prop.key == identity.name:
                continue
            column = prop.columns[0]
            attributes.append(AttributeDescriptor(
                name=prop.key,
                column=column.name,
                python_type=_python_type(column),
                default=_scalar_default(column),
                nullable=bool(column.nullable),
            ))

        associations = []
        for rel in mapper.relationships:
            associations.append(AssociationDescriptor(
                name=rel.key,
                owner=entity,
                target=rel.mapper.class_,
                cardinality=_cardinality(rel.direction, rel.uselist),
                owning=rel.direction is RelationshipDirection.MANYTOONE,
                back_reference=rel.back_populates,
            ))

        version_attribute = None
        if mapper.version_id_col is not None:
            version_attribute = mapper.get_property_by_column(mapper.version_id_col).key

        descriptor = EntityDescriptor(
            entity=entity,
            name=entity.__name__,
            identity=identity,
            attributes=tuple(attributes),
            associations=tuple(associations),
            version_attribute=version_attribute,
            named_queries=dict(getattr(entity, "__named_queries__", {}) or {}),
        )
        logger.debug(
            "Entity described",
            extra={
                "entity": descriptor.name,
                "attributes": [attribute.name for attribute in descriptor.attributes],
                "associations": [association.name for association in descriptor.associations],
            }
        )
        return descriptor


def _python_type(column) -> Optional[type]:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _scalar_default(column) -> Any:
    default = column.default
    if default is not None and getattr(default, "is_scalar", False):
        return default.arg
    return None


def _is_generated(column) -> bool:
    if column.default is not None or column.server_default is not None:
        return True
    if column.autoincrement is True:
        return True
    return column.autoincrement == "auto" and isinstance(column.type, Integer)


def _cardinality(direction, uselist: bool) -> Cardinality:
    if direction is RelationshipDirection.MANYTOONE:
        return Cardinality.MANY_TO_ONE
    if direction is RelationshipDirection.MANYTOMANY:
        return Cardinality.MANY_TO_MANY
    if direction is RelationshipDirection.ONETOMANY and not uselist:
        return Cardinality.ONE_TO_ONE
    return Cardinality.ONE_TO_MANY


# Process-wide registry
registry = EntityRegistry()


def describe(entity: type) -> EntityDescriptor:
    """Shortcut for ``registry.describe(entity)``."""
    return registry.describe(entity)
