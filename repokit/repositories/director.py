"""
Director repository.

Directors carry caller-assigned identities; save() relies on
Director.is_new() to choose between insert and merge.
"""

from repokit.models.director import Director
from repokit.repositories.base import Repository


class DirectorRepository(Repository[Director]):
    entity = Director
