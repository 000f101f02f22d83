"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- A file-backed SQLite engine per test with all tables created
- A scope factory with a fixed auditor and a controllable clock
- A statement counter for round-trip assertions
- Seed data (two teams, five players)
"""

import os
from datetime import datetime, timedelta
from typing import Dict

import pytest
from sqlalchemy import event

# Set test environment variables BEFORE any imports
# This must happen first to ensure settings load with test values
os.environ["REPOKIT_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REPOKIT_LOCK_TIMEOUT_MS"] = "200"
os.environ["REPOKIT_AUDITOR"] = "system"
os.environ["REPOKIT_LOG_LEVEL"] = "DEBUG"

from repokit.core.auditing import AuditPolicy  # noqa: E402
from repokit.core.database import close_db, create_session_maker, get_async_engine, init_db  # noqa: E402
from repokit.core.scope import ScopeFactory  # noqa: E402
from repokit.models import Player, Team  # noqa: E402
from repokit.repositories import PlayerRepository, TeamRepository  # noqa: E402


FIXED_NOW = datetime(2025, 1, 15, 10, 30, 0)
AUDITOR = "tester"


class FakeClock:
    """Clock returning a fixed time until advanced."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class StatementCounter:
    """Counts statements sent to the database."""

    def __init__(self):
        self.count = 0
        self.statements = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):  # noqa: ANN001
        self.count += 1
        self.statements.append(statement)

    def reset(self) -> None:
        self.count = 0
        self.statements = []


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """
    Provide an engine on a fresh SQLite file.

    Creates tables before the test and disposes of the engine after.
    """
    engine = get_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'repokit.db'}",
        echo=False,
        lock_timeout_ms=200,
    )
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scopes(engine, clock) -> ScopeFactory:
    """Scope factory auditing as 'tester' with creation counted as modification."""
    return ScopeFactory(
        create_session_maker(engine),
        auditor_provider=lambda: AUDITOR,
        audit_policy=AuditPolicy(modify_on_create=True),
        clock=clock,
    )


@pytest.fixture
def strict_scopes(engine, clock) -> ScopeFactory:
    """Scope factory where creation does not count as a modification."""
    return ScopeFactory(
        create_session_maker(engine),
        auditor_provider=lambda: AUDITOR,
        audit_policy=AuditPolicy(modify_on_create=False),
        clock=clock,
    )


@pytest.fixture
def statement_counter(engine):
    counter = StatementCounter()
    event.listen(engine.sync_engine, "before_cursor_execute", counter)
    yield counter
    event.remove(engine.sync_engine, "before_cursor_execute", counter)


@pytest.fixture
async def seeded(scopes) -> Dict[str, int]:
    """
    Seed two teams and five players.

    Players (height, weight, team):
        Roy    173  73  Lakers
        Perry  180  80  Lakers
        Sally  160  50  Bulls
        Dice   190  90  Bulls
        Mambo  175  75  (none)

    Returns:
        Mapping of player and team names to identities
    """
    async with scopes() as scope:
        teams = scope.repository(TeamRepository)
        players = scope.repository(PlayerRepository)

        lakers = await teams.save(Team(name="Lakers"))
        bulls = await teams.save(Team(name="Bulls"))

        roster = [
            Player(name="Roy", height=173, weight=73, team=lakers),
            Player(name="Perry", height=180, weight=80, team=lakers),
            Player(name="Sally", height=160, weight=50, team=bulls),
            Player(name="Dice", height=190, weight=90, team=bulls),
            Player(name="Mambo", height=175, weight=75),
        ]
        # Pending before the next flush, so the Team.players backref cascades
        scope.session.add_all(roster)
        saved = await players.save_all(roster)

        ids = {player.name: player.id for player in saved}
        ids["Lakers"] = lakers.id
        ids["Bulls"] = bulls.id
    return ids
