"""
Identity and change classification.

Decides whether a save means INSERT or UPDATE:

1. an ``is_new()`` method on the entity wins
2. an instance with an identity key (loaded or flushed before) is not new
3. a version attribute that is still None means never persisted
4. a generated identity that is still None means never persisted

Caller-assigned identities with no other hint are undecidable here
(``None``); the repository then probes the store.
"""

from typing import Any, Optional

from sqlalchemy import inspect as sa_inspect

from repokit.models.registry import registry


def is_new(instance: Any) -> Optional[bool]:
    """
    Classify an entity instance.

    Args:
        instance: Mapped entity instance

    Returns:
        True (insert), False (update) or None (unknown, probe the store)
    """
    hook = getattr(instance, "is_new", None)
    if callable(hook):
        return bool(hook())

    if sa_inspect(instance).key is not None:
        return False

    descriptor = registry.describe(type(instance))
    if descriptor.version_attribute is not None:
        if getattr(instance, descriptor.version_attribute) is None:
            return True

    identity = getattr(instance, descriptor.identity.name)
    if identity is None:
        return True
    if descriptor.identity.generated:
        return False
    return None


def identity_of(instance: Any) -> Any:
    descriptor = registry.describe(type(instance))
    return getattr(instance, descriptor.identity.name)
