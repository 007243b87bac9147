#!/usr/bin/env python3
"""Filter parsing, coercion and matching."""

import pytest
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).parent.parent))
from lens_core.json_worker.filters import (FilterCondition, coerce_literal, compare_values, compile_filter,
                                           matches_filter, matches_join_filter, parse_filter, parse_join_filter,
                                           parse_timestamp)
from shared.errors import InvalidFilterError


class TestParseFilter:

    @pytest.mark.parametrize("expression,operator,path,value", [
        ("payload.level >= 10", ">=", "payload.level", 10),
        ("payload.level<=10", "<=", "payload.level", 10),
        ("payload.name != \"bob\"", "!=", "payload.name", "bob"),
        ("payload.isPremium = true", "=", "payload.isPremium", True),
        ("payload.level > 1.5", ">", "payload.level", 1.5),
        ("payload.level < 3", "<", "payload.level", 3),
        ("entityId contains Player", "contains", "entityId", "Player"),
        ("entityId startsWith Player:", "startsWith", "entityId", "Player:"),
        ("entityId ENDSWITH a1", "endsWith", "entityId", "a1"),
        ("payload.deletedAt exists", "exists", "payload.deletedAt", True),
    ])
    def test_operators(self, expression, operator, path, value):
        condition = parse_filter(expression)
        assert condition == FilterCondition(path=path, operator=operator, value=value)

    def test_two_character_operators_win(self):
        assert parse_filter("a >= 1").operator == ">="
        assert parse_filter("a != 1").operator == "!="

    def test_unparseable(self):
        assert parse_filter("just some words") is None

    def test_join_filter_sides(self):
        assert parse_join_filter("b.payload.level > 10").side == "b"
        assert parse_join_filter("a.entityId exists").side == "a"
        unprefixed = parse_join_filter("payload.level > 10")
        assert unprefixed.side == "a" and unprefixed.path == "payload.level"

    @pytest.mark.parametrize("text,expected", [
        ('"42"', "42"),
        ("42", 42),
        ("-1.25", -1.25),
        ("true", True),
        ("false", False),
        ("null", None),
        ("Thor_Class", "Thor_Class"),
        ("inf", "inf"),
        ("nan", "nan"),
        ("1_000", "1_000"),
        ("1_0.5", "1_0.5"),
    ])
    def test_coerce_literal(self, text, expected):
        assert coerce_literal(text) == expected

    def test_underscore_literal_compares_as_string(self):
        condition = parse_filter("payload.level = 1_000")
        assert not matches_filter({"payload": {"level": 1000}}, condition)
        assert matches_filter({"payload": {"level": "1_000"}}, condition)


class TestCompileFilter:

    def test_empty_is_no_filter(self):
        assert compile_filter(None) is None
        assert compile_filter("") is None

    def test_permissive_records_warning(self, caplog):
        warnings = []
        assert compile_filter("???", strict=False, warnings=warnings) is None
        assert warnings == ["Invalid filter expression ignored: ???"]
        assert "ignored" in caplog.text

    def test_strict_raises(self):
        with pytest.raises(InvalidFilterError) as exc:
            compile_filter("???", strict=True)
        assert exc.value.expression == "???"

    def test_strict_from_environment(self, monkeypatch):
        monkeypatch.setenv("JSONLENS_STRICT_FILTERS", "1")
        with pytest.raises(InvalidFilterError):
            compile_filter("???")


class TestCompareValues:

    def test_strict_equality(self):
        assert compare_values(5, "=", 5.0)
        assert not compare_values("5", "=", 5)
        assert not compare_values(1, "=", True)
        assert compare_values(None, "=", None)
        assert compare_values("5", "!=", 5)

    def test_ordering_numbers_then_dates(self):
        assert compare_values(10, ">", 5)
        assert not compare_values("10", ">", 5)
        assert compare_values("2024-02-01T00:00:00Z", ">", "2024-01-01")
        assert not compare_values("abc", "<", "abd")

    def test_contains(self):
        assert compare_values("Player:a1", "contains", "a1")
        assert compare_values(["x", 1], "contains", 1)
        assert not compare_values(12, "contains", 1)

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            compare_values(1, "~", 1)

    def test_parse_timestamp(self):
        assert parse_timestamp("1970-01-02T00:00:00Z") == 86400000
        assert parse_timestamp(1500) == 1500
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(True) is None


class TestMatches:

    def test_any_wildcard_value_matches(self):
        value = {"items": [{"lvl": 1}, {"lvl": 9}]}
        assert matches_filter(value, parse_filter("items[*].lvl > 5"))
        assert not matches_filter(value, parse_filter("items[*].lvl > 10"))

    def test_exists_ignores_null(self):
        assert not matches_filter({"a": None}, parse_filter("a exists"))
        assert matches_filter({"a": 0}, parse_filter("a exists"))
        assert not matches_filter({}, parse_filter("a exists"))

    def test_missing_path_never_matches(self):
        assert not matches_filter({}, parse_filter("a != 1"))

    def test_join_filter_targets_side(self):
        left, right = {"v": 1}, {"v": 2}
        assert matches_join_filter(left, right, parse_join_filter("b.v = 2"))
        assert matches_join_filter(left, right, parse_join_filter("v = 1"))
        assert not matches_join_filter(left, right, parse_join_filter("a.v = 2"))
