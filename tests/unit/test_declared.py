"""
Tests for declared query text parsing and parameter binding.
"""

import pytest

from repokit.core.errors import UnresolvableIntent
from repokit.models import Player
from repokit.query.declared import NAMED, POSITIONAL, DeclaredQuery, resolve_named, to_text


class TestParse:
    """Tests for placeholder discovery."""

    def test_positional_placeholders_rewritten(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE name = ?1 AND height > ?2")

        assert declared.style == POSITIONAL
        assert declared.sql == "SELECT * FROM players WHERE name = :p1 AND height > :p2"
        assert declared.parameters == ("p1", "p2")
        assert declared.arity == 2

    def test_positional_placeholder_reused(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE height > ?1 OR weight > ?1")

        assert declared.parameters == ("p1",)

    def test_named_placeholders_in_first_appearance_order(self):
        declared = DeclaredQuery.parse(
            "SELECT * FROM players WHERE name = :name AND height > :height OR name = :name"
        )

        assert declared.style == NAMED
        assert declared.parameters == ("name", "height")

    def test_literals_and_casts_are_not_parameters(self):
        declared = DeclaredQuery.parse(
            "SELECT id::text FROM players WHERE name = ':fake' AND note = '?1' AND id = :id"
        )

        assert declared.parameters == ("id",)

    def test_trailing_semicolon_dropped(self):
        declared = DeclaredQuery.parse("SELECT * FROM players;  ")

        assert declared.sql == "SELECT * FROM players"
        assert declared.style is None

    @pytest.mark.parametrize("sql", [
        "",
        "   ",
        "SELECT * FROM players WHERE name = ?1 AND height > :height",
        "SELECT * FROM players WHERE name = ?1 AND height > ?3",
        "SELECT * FROM players WHERE name = ?2",
    ])
    def test_malformed_text(self, sql):
        with pytest.raises(UnresolvableIntent):
            DeclaredQuery.parse(sql)

    def test_count_query_parameters(self):
        declared = DeclaredQuery.parse(
            "SELECT * FROM players WHERE height > :height AND name = :name",
            count_sql="SELECT count(*) FROM players WHERE height > :height",
        )

        assert declared.count_parameters == ("height",)

    def test_count_query_defaults_to_query_parameters(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE height > :height")

        assert declared.count_sql is None
        assert declared.count_parameters == ("height",)

    def test_count_query_unknown_parameter(self):
        with pytest.raises(UnresolvableIntent):
            DeclaredQuery.parse(
                "SELECT * FROM players",
                count_sql="SELECT count(*) FROM players WHERE height > :height",
            )


class TestBind:
    """Tests for binding call arguments."""

    def test_positional_arguments(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE name = ?1 AND height > ?2")

        assert declared.bind(["Roy", 170]) == {"p1": "Roy", "p2": 170}

    def test_named_query_accepts_positional_and_keywords(self):
        declared = DeclaredQuery.parse(
            "SELECT * FROM players WHERE name = :name AND height > :height"
        )

        assert declared.bind(["Roy"], {"height": 170}) == {"name": "Roy", "height": 170}
        assert declared.bind([], {"height": 170, "name": "Roy"}) == {"name": "Roy", "height": 170}

    def test_positional_query_rejects_keywords(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE name = ?1")

        with pytest.raises(UnresolvableIntent):
            declared.bind([], {"p1": "Roy"})

    @pytest.mark.parametrize("args,kwargs", [
        (["Roy"], {}),
        (["Roy", 170, 80], {}),
        (["Roy", 170], {"weight": 80}),
        (["Roy", 170], {"name": "Perry"}),
    ])
    def test_bad_bindings(self, args, kwargs):
        declared = DeclaredQuery.parse(
            "SELECT * FROM players WHERE name = :name AND height > :height"
        )

        with pytest.raises(UnresolvableIntent):
            declared.bind(args, kwargs)


class TestStatement:
    """Tests for building executable text."""

    def test_collection_parameter_expands(self):
        clause = to_text("SELECT * FROM players WHERE id IN :ids", {"ids": [1, 2]})

        assert clause._bindparams["ids"].expanding is True

    def test_scalar_parameter_not_expanding(self):
        declared = DeclaredQuery.parse("SELECT * FROM players WHERE name = :name")
        clause = declared.statement({"name": "Roy"})

        assert "ids" not in clause._bindparams
        assert clause._bindparams["name"].expanding is False


class TestNamedQueries:
    """Tests for named query resolution."""

    def test_resolve_named(self):
        declared = resolve_named(Player, "find_by_name")

        assert declared.parameters == ("name",)
        assert "FROM players" in declared.sql

    def test_unknown_named_query(self):
        with pytest.raises(UnresolvableIntent):
            resolve_named(Player, "find_by_shoe_size")
