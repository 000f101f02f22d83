"""
repokit: repository and data-access toolkit on SQLAlchemy.

Packages:
- repokit.core: configuration, logging, errors, engine, persistence scopes,
  auditing, identity classification and locking
- repokit.models: declarative base, entity registry and demonstration models
- repokit.query: specifications, lookup resolution, fetch planning,
  paging, projections and statement execution
- repokit.repositories: the generic Repository and demonstration repositories
- repokit.schemas: projection types of the demonstration models
"""

__version__ = "0.1.0"
