"""
SQLAlchemy ORM models.

This module exports the declarative base, the audit mixins and the
demonstration models. Import models from this module to ensure they're
registered with SQLAlchemy.
"""

from repokit.models.base import (
    Base,
    AuditMixin,
    CreationTimestampMixin,
    ModelMixin,
    utc_now,
)
from repokit.models.team import Team
from repokit.models.player import Player
from repokit.models.director import Director

# Export all models
__all__ = [
    # Base classes
    "Base",
    "AuditMixin",
    "CreationTimestampMixin",
    "ModelMixin",
    "utc_now",
    # Models
    "Team",
    "Player",
    "Director",
]
