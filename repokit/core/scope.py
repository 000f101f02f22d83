"""
Persistence scope.

A PersistenceScope is one AsyncSession plus one transaction, used as an
async context manager:

- commit on clean exit, rollback on any exception, session closed always
- the scope's AuditContext is placed in ``session.info`` on entry
- the configured isolation level is applied to the scope's connection
- entities loaded inside the scope stay readable afterwards, but unloaded
  associations can no longer be traversed (DetachedAccess)

Example:
    scopes = ScopeFactory.from_settings(engine)
    async with scopes() as scope:
        players = scope.repository(PlayerRepository)
        await players.save(Player(name="Roy", height=170))
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from repokit.core.auditing import AUDIT_CONTEXT_KEY, AuditContext, AuditPolicy, install_audit_listener
from repokit.core.config import Settings, settings as default_settings
from repokit.core.database import create_session_maker
from repokit.core.errors import DetachedAccess, translate_store_errors
from repokit.core.logging_config import log_with_context
from repokit.models.base import utc_now

logger = logging.getLogger(__name__)

RepositoryT = TypeVar("RepositoryT")


class PersistenceScope:
    """
    Unit of work bracketing a sequence of reads and writes.

    Attributes:
        scope_id: Correlation ID used in logs
        audit_context: Actor, policy and clock for this scope's writes
        isolation_level: Transaction isolation level (None keeps the driver default)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        audit_context: AuditContext,
        isolation_level: Optional[str] = None,
        scope_id: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.audit_context = audit_context
        self.isolation_level = isolation_level
        self.scope_id = scope_id or uuid.uuid4().hex[:12]
        self._session: Optional[AsyncSession] = None
        self._closed = False
        self._repositories: Dict[type, Any] = {}
        self._started = 0.0

    async def __aenter__(self) -> "PersistenceScope":
        if self._session is not None or self._closed:
            raise RuntimeError("A persistence scope can only be entered once")

        self._session = self._session_factory()
        self._session.info[AUDIT_CONTEXT_KEY] = self.audit_context
        self._started = time.perf_counter()

        if self.isolation_level:
            # Must run before the transaction begins on the connection
            await self._session.connection(
                execution_options={"isolation_level": self.isolation_level}
            )

        log_with_context(
            logger, "debug", "Scope opened",
            scope_id=self.scope_id,
            auditor=self.audit_context.auditor,
            isolation_level=self.isolation_level,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        session = self._session
        try:
            if exc_type is not None:
                await session.rollback()
                log_with_context(
                    logger, "warning", "Scope rolled back",
                    scope_id=self.scope_id,
                    error=exc_type.__name__,
                )
                return

            try:
                with translate_store_errors():
                    await session.commit()
            except Exception:
                await session.rollback()
                log_with_context(logger, "warning", "Scope commit failed", scope_id=self.scope_id)
                raise

            log_with_context(
                logger, "debug", "Scope committed",
                scope_id=self.scope_id,
                elapsed_ms=round((time.perf_counter() - self._started) * 1000, 3),
            )
        finally:
            await session.close()
            self._closed = True
            self._repositories.clear()

    @property
    def session(self) -> AsyncSession:
        """The scope's session; unavailable once the scope has ended."""
        if self._closed:
            raise DetachedAccess(f"Persistence scope {self.scope_id} has ended")
        if self._session is None:
            raise RuntimeError("Persistence scope has not been entered")
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    def repository(self, repository_class: Type[RepositoryT]) -> RepositoryT:
        """
        Get the repository of a given class bound to this scope.

        Args:
            repository_class: Repository subclass

        Returns:
            Repository instance (one per class per scope)
        """
        repository = self._repositories.get(repository_class)
        if repository is None:
            repository = repository_class(self.session, scope_id=self.scope_id)
            self._repositories[repository_class] = repository
        return repository

    async def flush(self) -> None:
        with translate_store_errors():
            await self.session.flush()

    def clear(self) -> None:
        """Detach every instance loaded in this scope."""
        self.session.expunge_all()

    async def load(self, instance: Any, path: str) -> Any:
        """
        Load an association of an attached instance on demand.

        Args:
            instance: Entity attached to this scope's session
            path: Dotted association path

        Returns:
            The associated entity, collection or None

        Raises:
            DetachedAccess: If the instance does not belong to this scope
        """
        session = self.session
        if sa_inspect(instance).session_id != session.sync_session.hash_key:
            raise DetachedAccess(
                f"{type(instance).__name__} is not attached to scope {self.scope_id}"
            )

        current: Any = instance
        for segment in path.split("."):
            if current is None:
                return None
            if isinstance(current, (list, set, tuple)):
                loaded = []
                for item in current:
                    loaded.append(await session.run_sync(lambda _, obj=item: getattr(obj, segment)))
                current = loaded
            else:
                current = await session.run_sync(lambda _, obj=current: getattr(obj, segment))
        return current


class ScopeFactory:
    """
    Builds persistence scopes with shared configuration.

    Args:
        session_factory: async_sessionmaker bound to the engine
        auditor_provider: Returns the current actor; called once per scope
        audit_policy: Audit policy for every scope
        isolation_level: Isolation level for every scope
        clock: Time source for audit stamps
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        auditor_provider: Optional[Callable[[], str]] = None,
        audit_policy: Optional[AuditPolicy] = None,
        isolation_level: Optional[str] = None,
        clock: Callable = utc_now,
    ):
        self.session_factory = session_factory
        self.auditor_provider = auditor_provider or (lambda: default_settings.auditor)
        self.audit_policy = audit_policy or AuditPolicy(
            modify_on_create=default_settings.audit_modify_on_create
        )
        self.isolation_level = isolation_level
        self.clock = clock
        install_audit_listener()

    @classmethod
    def from_settings(cls, engine: AsyncEngine, settings: Optional[Settings] = None,
                      **overrides: Any) -> "ScopeFactory":
        """
        Build a factory from Settings.

        Args:
            engine: Async engine
            settings: Settings instance (defaults to the global one)
            **overrides: Constructor arguments replacing the settings-derived ones

        Returns:
            ScopeFactory
        """
        settings = settings or default_settings
        options = {
            "auditor_provider": lambda: settings.auditor,
            "audit_policy": AuditPolicy(modify_on_create=settings.audit_modify_on_create),
            "isolation_level": settings.isolation_level,
        }
        options.update(overrides)
        return cls(create_session_maker(engine), **options)

    def __call__(self) -> PersistenceScope:
        context = AuditContext(
            auditor=self.auditor_provider(),
            policy=self.audit_policy,
            clock=self.clock,
        )
        return PersistenceScope(
            self.session_factory,
            audit_context=context,
            isolation_level=self.isolation_level,
        )
