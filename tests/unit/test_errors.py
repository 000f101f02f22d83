"""
Tests for store error translation.
"""

import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import DetachedInstanceError, StaleDataError

from repokit.core.errors import (
    DetachedAccess,
    LockTimeout,
    OptimisticConflict,
    RepositoryError,
    is_lock_failure,
    translate_store_errors,
)


class PostgresLockError(Exception):
    pgcode = "55P03"


class TestTranslation:
    """Tests for translate_store_errors()."""

    def test_sqlite_busy_becomes_lock_timeout(self):
        error = OperationalError("UPDATE players", {}, sqlite3.OperationalError("database is locked"))

        with pytest.raises(LockTimeout) as exc_info:
            with translate_store_errors():
                raise error

        assert exc_info.value.__cause__ is error

    def test_lock_sqlstate_becomes_lock_timeout(self):
        error = OperationalError("SELECT 1 FOR UPDATE", {}, PostgresLockError("canceling statement"))

        assert is_lock_failure(error)
        with pytest.raises(LockTimeout):
            with translate_store_errors():
                raise error

    def test_stale_version_becomes_optimistic_conflict(self):
        with pytest.raises(OptimisticConflict):
            with translate_store_errors():
                raise StaleDataError("UPDATE statement on table 'players' expected to update 1 row(s)")

    def test_detached_instance_becomes_detached_access(self):
        with pytest.raises(DetachedAccess):
            with translate_store_errors():
                raise DetachedInstanceError("Parent instance is not bound to a Session")

    def test_other_store_errors_propagate_unchanged(self):
        error = IntegrityError("INSERT INTO teams", {}, sqlite3.IntegrityError("NOT NULL constraint failed"))

        with pytest.raises(IntegrityError):
            with translate_store_errors():
                raise error

    def test_taxonomy_shares_a_base(self):
        for error_type in (DetachedAccess, LockTimeout, OptimisticConflict):
            assert issubclass(error_type, RepositoryError)
