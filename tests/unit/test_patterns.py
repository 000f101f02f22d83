"""
Tests for lookup-name parsing.
"""

import pytest

from repokit.core.errors import UnresolvableIntent
from repokit.models import Player
from repokit.query.patterns import Clause, parse_pattern
from repokit.query.plan import Direction, ResultKind
from repokit.query.specification import And, Comparator, Leaf, Or


class TestSubject:
    """Tests for the verb and subject words."""

    @pytest.mark.parametrize("name,kind", [
        ("find_by_name", ResultKind.LIST),
        ("read_all_by_name", ResultKind.LIST),
        ("find_one_by_name", ResultKind.ONE),
        ("find_optional_one_by_name", ResultKind.OPTIONAL),
        ("find_first_by_name", ResultKind.FIRST),
        ("find_page_by_name", ResultKind.PAGE),
        ("find_slice_by_name", ResultKind.SLICE),
        ("count_by_name", ResultKind.COUNT),
        ("exists_by_name", ResultKind.EXISTS),
        ("delete_by_name", ResultKind.DELETE),
        ("remove_by_name", ResultKind.DELETE),
    ])
    def test_result_kind(self, name, kind):
        assert parse_pattern(Player, name).kind is kind

    def test_top_n_limits_rows(self):
        parsed = parse_pattern(Player, "find_top_3_by_height_greater_than")

        assert parsed.kind is ResultKind.LIST
        assert parsed.limit == 3

    def test_first_without_count_means_one_row(self):
        parsed = parse_pattern(Player, "find_first_by_name")

        assert parsed.limit == 1

    def test_distinct(self):
        assert parse_pattern(Player, "find_distinct_by_name").distinct is True

    def test_no_conditions(self):
        parsed = parse_pattern(Player, "find_all_with_team")

        assert parsed.groups == ()
        assert parsed.arity == 0
        assert parsed.bind([]) is None

    def test_unknown_verb(self):
        with pytest.raises(UnresolvableIntent):
            parse_pattern(Player, "fetch_by_name")


class TestClauses:
    """Tests for the condition part of a lookup name."""

    def test_and_clauses_in_order(self):
        parsed = parse_pattern(Player, "find_by_name_and_height_greater_than")

        assert parsed.groups == ((
            Clause("name", Comparator.EQUAL),
            Clause("height", Comparator.GREATER_THAN),
        ),)
        assert parsed.arity == 2

    def test_or_splits_groups(self):
        parsed = parse_pattern(Player, "find_by_name_or_height_greater_than_equal")

        assert parsed.groups == (
            (Clause("name", Comparator.EQUAL),),
            (Clause("height", Comparator.GREATER_THAN_EQUAL),),
        )

    def test_association_path(self):
        parsed = parse_pattern(Player, "find_by_team_name")

        assert parsed.groups == ((Clause("team.name", Comparator.EQUAL),),)

    def test_foreign_key_column_is_not_an_association_path(self):
        parsed = parse_pattern(Player, "find_by_team_id")

        assert parsed.groups == ((Clause("team_id", Comparator.EQUAL),),)

    @pytest.mark.parametrize("suffix,comparator", [
        ("is_not_null", Comparator.IS_NOT_NULL),
        ("is_null", Comparator.IS_NULL),
        ("not", Comparator.NOT_EQUAL),
        ("less_than", Comparator.LESS_THAN),
        ("less_than_equal", Comparator.LESS_THAN_EQUAL),
        ("like", Comparator.LIKE),
        ("containing", Comparator.CONTAINING),
        ("starting_with", Comparator.STARTING_WITH),
        ("ending_with", Comparator.ENDING_WITH),
        ("in", Comparator.IN),
        ("equals", Comparator.EQUAL),
    ])
    def test_comparator_keywords(self, suffix, comparator):
        parsed = parse_pattern(Player, f"find_by_name_{suffix}")

        assert parsed.groups[0][0].comparator is comparator

    def test_nullary_comparators_take_no_argument(self):
        parsed = parse_pattern(Player, "find_by_name_is_not_null_and_height_greater_than")

        assert parsed.arity == 1

    @pytest.mark.parametrize("name", [
        "find_by_shoe_size",
        "find_by_name_bigger_than",
        "find_by_name_and",
        "find_by",
        "find_by_team",
        "find_by_name_order_by",
    ])
    def test_malformed_names(self, name):
        with pytest.raises(UnresolvableIntent):
            parse_pattern(Player, name)


class TestOrdering:
    """Tests for the order_by suffix."""

    def test_order_by_suffix(self):
        parsed = parse_pattern(Player, "find_by_team_name_order_by_height_desc_and_name")

        assert [(order.attribute, order.direction) for order in parsed.sort] == [
            ("height", Direction.DESC),
            ("name", Direction.ASC),
        ]
        assert parsed.arity == 1


class TestBinding:
    """Tests for binding call arguments to parsed clauses."""

    def test_bind_builds_conjunction(self):
        spec = parse_pattern(Player, "find_by_name_and_height_greater_than").bind(["Roy", 170])

        assert isinstance(spec, And)
        assert spec.left == Leaf(Player, "name", Comparator.EQUAL, "Roy")
        assert spec.right == Leaf(Player, "height", Comparator.GREATER_THAN, 170)

    def test_bind_builds_disjunction(self):
        spec = parse_pattern(Player, "find_by_name_or_name").bind(["Roy", "Perry"])

        assert isinstance(spec, Or)

    def test_blank_argument_drops_its_clause(self):
        spec = parse_pattern(Player, "find_by_name_and_height_greater_than").bind(["", 170])

        assert spec == Leaf(Player, "height", Comparator.GREATER_THAN, 170)

    def test_argument_count_checked(self):
        parsed = parse_pattern(Player, "find_by_name_and_height_greater_than")

        with pytest.raises(UnresolvableIntent):
            parsed.bind(["Roy"])
        with pytest.raises(UnresolvableIntent):
            parsed.bind(["Roy", 170, 80])

    def test_parse_is_cached(self):
        assert parse_pattern(Player, "find_by_name") is parse_pattern(Player, "find_by_name")
