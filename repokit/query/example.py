"""
Query by example.

A probe is an unsaved entity instance whose populated attributes form
the filter: every non-ignored attribute whose value differs from its
default contributes an equality (or string-match) leaf, ANDed together.
Populated many-to-one / one-to-one associations contribute their own
non-default attributes under a dotted path (``team.name``).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, FrozenSet, List, Optional

from sqlalchemy import inspect as sa_inspect

from repokit.core.errors import InvalidSpecification
from repokit.models.registry import registry
from repokit.query.specification import Comparator, Specification, all_of, where


class StringMatching(str, Enum):
    EXACT = "exact"
    CONTAINING = "containing"
    STARTING = "starting"
    ENDING = "ending"


_STRING_COMPARATORS = {
    StringMatching.EXACT: Comparator.EQUAL,
    StringMatching.CONTAINING: Comparator.CONTAINING,
    StringMatching.STARTING: Comparator.STARTING_WITH,
    StringMatching.ENDING: Comparator.ENDING_WITH,
}


@dataclass(frozen=True)
class ExampleMatcher:
    """
    Controls which probe attributes take part and how strings compare.

    Example:
        matcher = ExampleMatcher.matching().with_ignore_paths("height", "weight")
    """
    ignored_paths: FrozenSet[str] = frozenset()
    string_matching: StringMatching = StringMatching.EXACT

    @classmethod
    def matching(cls) -> "ExampleMatcher":
        return cls()

    def with_ignore_paths(self, *paths: str) -> "ExampleMatcher":
        return replace(self, ignored_paths=self.ignored_paths | frozenset(paths))

    def with_string_matcher(self, matching: StringMatching) -> "ExampleMatcher":
        return replace(self, string_matching=StringMatching(matching))


@dataclass(frozen=True)
class Example:
    """Probe instance paired with its matcher."""
    probe: Any
    matcher: ExampleMatcher

    @classmethod
    def of(cls, probe: Any, matcher: Optional[ExampleMatcher] = None) -> "Example":
        matcher = matcher or ExampleMatcher()
        descriptor = registry.describe(type(probe))
        for path in matcher.ignored_paths:
            descriptor.resolve_path(path)
        return cls(probe=probe, matcher=matcher)

    @property
    def entity(self) -> type:
        return type(self.probe)

    def to_specification(self) -> Optional[Specification]:
        return example_specification(self)


def _populated(value: Any, default: Any) -> bool:
    return value is not None and value != default


def _probe_leaves(entity: type, probe: Any, prefix: str, matcher: ExampleMatcher,
                  root: type, seen: FrozenSet[type]) -> List[Optional[Specification]]:
    descriptor = registry.describe(entity)
    leaves: List[Optional[Specification]] = []

    state = sa_inspect(probe)
    unloaded = state.unloaded

    scalars = [(descriptor.identity.name, None)] + [
        (attribute.name, attribute.default) for attribute in descriptor.attributes
    ]
    for name, default in scalars:
        path = prefix + name
        if path in matcher.ignored_paths or name in unloaded:
            continue
        value = getattr(probe, name)
        if not _populated(value, default):
            continue
        comparator = Comparator.EQUAL
        if isinstance(value, str):
            comparator = _STRING_COMPARATORS[matcher.string_matching]
        leaves.append(where(root, path, comparator, value))

    for association in descriptor.associations:
        path = prefix + association.name
        if association.collection or path in matcher.ignored_paths:
            continue
        if association.name in unloaded or association.target in seen:
            continue
        related = getattr(probe, association.name)
        if related is None:
            continue
        leaves.extend(_probe_leaves(
            association.target, related, path + ".", matcher, root, seen | {entity}
        ))
    return leaves


def example_specification(example: Example) -> Optional[Specification]:
    """
    Translate an example into a specification.

    Args:
        example: Probe and matcher

    Returns:
        AND of one leaf per populated attribute (None when nothing is populated)

    Raises:
        InvalidSpecification: If the probe is not a mapped entity instance
    """
    entity = example.entity
    if not hasattr(entity, "__mapper__"):
        raise InvalidSpecification(f"{entity!r} is not a mapped entity class")
    leaves = _probe_leaves(entity, example.probe, "", example.matcher, entity, frozenset())
    return all_of(*leaves)
