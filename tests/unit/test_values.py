"""
Unit tests for the tagged value model.

Tests cover:
- Type classification (bool is not a number)
- Validation and normalization of nested data
- Tag-aware equality
- Date parsing and total sort order
"""

import math

import pytest

from dbaas.docbase_server.errors import ValidationError
from dbaas.docbase_server.values import (
    ValueType,
    parse_date,
    sort_key,
    validate_data,
    validate_value,
    values_equal,
)


class TestValueType:
    """Tests for ValueType.of."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, ValueType.NULL),
            (True, ValueType.BOOL),
            (0, ValueType.NUMBER),
            (1.5, ValueType.NUMBER),
            ("x", ValueType.STRING),
            ([1, 2], ValueType.ARRAY),
            ((1, 2), ValueType.ARRAY),
            ({"a": 1}, ValueType.OBJECT),
        ],
    )
    def test_classification(self, value, expected):
        assert ValueType.of(value) is expected

    def test_bool_is_not_number(self):
        """bool is checked before int."""
        assert ValueType.of(False) is ValueType.BOOL

    @pytest.mark.parametrize("value", [{1, 2}, b"bytes", object()])
    def test_unsupported_types_rejected(self, value):
        with pytest.raises(ValidationError):
            ValueType.of(value)


class TestValidation:
    """Tests for validate_value / validate_data."""

    def test_normalizes_tuples_and_nested_mappings(self):
        result = validate_data({"tags": ("a", "b"), "meta": {"n": (1,)}})
        assert result == {"tags": ["a", "b"], "meta": {"n": [1]}}

    def test_rejects_non_finite_numbers(self):
        with pytest.raises(ValidationError):
            validate_value(math.nan)
        with pytest.raises(ValidationError):
            validate_data({"x": math.inf})

    def test_rejects_non_string_keys(self):
        with pytest.raises(ValidationError):
            validate_data({"outer": {1: "x"}})

    def test_error_names_nested_path(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_data({"a": {"b": [1, {2, 3}]}})
        assert "a.b[1]" in exc_info.value.message

    def test_data_must_be_mapping(self):
        with pytest.raises(ValidationError):
            validate_data(["not", "an", "object"])


class TestEquality:
    """Tests for values_equal."""

    def test_bool_and_int_differ(self):
        assert not values_equal(True, 1)
        assert not values_equal(0, False)

    def test_int_and_float_equal(self):
        assert values_equal(1, 1.0)

    def test_deep_structures(self):
        assert values_equal({"a": [1, {"b": None}]}, {"a": [1, {"b": None}]})
        assert not values_equal({"a": [1, 2]}, {"a": [2, 1]})
        assert not values_equal({"a": 1}, {"a": 1, "b": 2})


class TestDatesAndOrdering:
    """Tests for parse_date and sort_key."""

    def test_parse_iso_dates(self):
        assert parse_date("2024-01-02") is not None
        assert parse_date("2024-01-02T03:04:05Z") == parse_date("2024-01-02T03:04:05+00:00")

    def test_parse_rejects_non_dates(self):
        assert parse_date("hello") is None
        assert parse_date("2024") is None
        assert parse_date(20240102) is None

    def test_cross_type_order(self):
        values = [{"a": 1}, [1], "s", 3, True, None]
        ordered = sorted(values, key=sort_key)
        assert ordered == [None, True, 3, "s", [1], {"a": 1}]

    def test_same_type_order(self):
        assert sorted([3, 1.5, -2], key=sort_key) == [-2, 1.5, 3]
        assert sorted(["b", "a"], key=sort_key) == ["a", "b"]
