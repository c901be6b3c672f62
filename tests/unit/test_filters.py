"""
Unit tests for filter compilation and evaluation.

Tests cover:
- Mapping form (bare keys and field_<op> suffixes)
- Explicit triple form and unknown operators
- Compile-time value checks
- Per-operator evaluation semantics
- Missing fields, dotted paths and type mismatches
- CURRENT_USER resolution from an explicit context
"""

from types import SimpleNamespace

import pytest

from dbaas.docbase_server.errors import UnauthenticatedError, ValidationError
from dbaas.docbase_server.query import (
    CURRENT_USER,
    Operator,
    Predicate,
    compile_filter,
    lookup_field,
    make_predicate,
    matches,
)


def check(spec, data, context=None):
    return matches(data, compile_filter(spec, context))


class TestCompile:
    """Tests for compile_filter."""

    def test_none_is_empty(self):
        assert compile_filter(None) == ()

    def test_bare_key_is_eq(self):
        (clause,) = compile_filter({"status": "active"})
        assert clause == Predicate("status", Operator.EQ, "active")

    @pytest.mark.parametrize(
        "key,field,op",
        [
            ("title_contains", "title", Operator.CONTAINS),
            ("age_gt", "age", Operator.GT),
            ("age_gte", "age", Operator.GTE),
            ("age_lt", "age", Operator.LT),
            ("age_lte", "age", Operator.LTE),
            ("tags_array_contains", "tags", Operator.ARRAY_CONTAINS),
            ("tags_array_contains_any", "tags", Operator.ARRAY_CONTAINS_ANY),
            ("status_in", "status", Operator.IN),
            ("status_not_in", "status", Operator.NOT_IN),
            ("name_starts_with", "name", Operator.STARTS_WITH),
            ("name_ends_with", "name", Operator.ENDS_WITH),
        ],
    )
    def test_suffixes(self, key, field, op):
        value = {
            Operator.CONTAINS: "x",
            Operator.STARTS_WITH: "x",
            Operator.ENDS_WITH: "x",
            Operator.ARRAY_CONTAINS: "x",
            Operator.ARRAY_CONTAINS_ANY: ["x"],
            Operator.IN: ["x"],
            Operator.NOT_IN: ["x"],
        }.get(op, 1)
        (clause,) = compile_filter({key: value})
        assert clause.field == field
        assert clause.operator is op

    def test_clauses_keep_order(self):
        clauses = compile_filter({"a": 1, "b_gt": 2, "c": 3})
        assert [c.field for c in clauses] == ["a", "b", "c"]

    def test_explicit_triples(self):
        """Triples allow field names that end in an operator suffix."""
        (clause,) = compile_filter([("sign_in", "eq", True)])
        assert clause.field == "sign_in"
        assert clause.operator is Operator.EQ

    def test_operator_names_accept_underscores(self):
        (clause,) = compile_filter([("tags", "array_contains", "a")])
        assert clause.operator is Operator.ARRAY_CONTAINS

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            compile_filter([("age", "between", [1, 2])])

    def test_malformed_clause(self):
        with pytest.raises(ValidationError):
            compile_filter([("age", "gt")])

    def test_malformed_spec(self):
        with pytest.raises(ValidationError):
            compile_filter("status=active")

    @pytest.mark.parametrize(
        "spec",
        [
            {"title_contains": 5},
            {"name_starts_with": None},
            {"status_in": "active"},
            {"tags_array_contains_any": "a"},
            {"tags_array_contains": ["a"]},
            {"age_gt": "old"},
            {"age_lt": True},
        ],
    )
    def test_incompatible_values_rejected(self, spec):
        with pytest.raises(ValidationError):
            compile_filter(spec)

    def test_empty_field_rejected(self):
        with pytest.raises(ValidationError):
            make_predicate("", "eq", 1)


class TestEvaluate:
    """Tests for per-operator semantics."""

    def test_eq(self):
        assert check({"status": "active"}, {"status": "active"})
        assert not check({"status": "active"}, {"status": "draft"})
        assert not check({"published": True}, {"published": 1})

    def test_contains_is_case_insensitive(self):
        assert check({"title_contains": "HELLO"}, {"title": "say hello world"})
        assert not check({"title_contains": "bye"}, {"title": "hello"})

    def test_contains_on_non_string_field_fails(self):
        with pytest.raises(ValidationError):
            check({"title_contains": "1"}, {"title": 1})

    def test_numeric_ordering(self):
        data = {"age": 30}
        assert check({"age_gt": 18}, data)
        assert check({"age_gte": 30}, data)
        assert not check({"age_lt": 30}, data)
        assert check({"age_lte": 30.0}, data)

    def test_date_ordering(self):
        data = {"published_at": "2024-06-01T12:00:00Z"}
        assert check({"published_at_gt": "2024-01-01"}, data)
        assert not check({"published_at_lt": "2024-06-01"}, data)

    def test_ordering_type_mismatch_fails(self):
        with pytest.raises(ValidationError):
            check({"age_gt": 18}, {"age": "thirty"})
        with pytest.raises(ValidationError):
            check({"when_gt": "2024-01-01"}, {"when": 5})

    def test_array_contains(self):
        assert check({"tags_array_contains": "python"}, {"tags": ["go", "python"]})
        assert not check({"tags_array_contains": "rust"}, {"tags": ["go"]})
        assert not check({"tags_array_contains": "go"}, {"tags": "go"})

    def test_array_contains_any(self):
        assert check({"tags_array_contains_any": ["rust", "go"]}, {"tags": ["go"]})
        assert not check({"tags_array_contains_any": ["rust"]}, {"tags": ["go"]})

    def test_in_and_not_in(self):
        assert check({"status_in": ["a", "b"]}, {"status": "b"})
        assert not check({"status_in": ["a", "b"]}, {"status": "c"})
        assert check({"status_not_in": ["a", "b"]}, {"status": "c"})
        assert not check({"status_not_in": ["a"]}, {"status": "a"})

    def test_prefix_and_suffix_are_case_sensitive(self):
        assert check({"name_starts_with": "Ada"}, {"name": "Ada Lovelace"})
        assert not check({"name_starts_with": "ada"}, {"name": "Ada Lovelace"})
        assert check({"name_ends_with": "lace"}, {"name": "Ada Lovelace"})
        assert not check({"name_ends_with": "LACE"}, {"name": "Ada Lovelace"})

    def test_missing_and_null_fields_fail_other_operators(self):
        assert not check({"status": "active"}, {})
        assert not check({"status_not_in": ["x"]}, {"status": None})
        assert not check({"title_contains": "x"}, {"title": None})

    def test_eq_null_matches_stored_null_only(self):
        assert check({"deletedAt": None}, {"deletedAt": None})
        assert check([("deletedAt", "eq", None)], {"deletedAt": None})
        assert not check({"deletedAt": None}, {})
        assert not check({"deletedAt": None}, {"deletedAt": "2024-01-01"})
        assert not check({"deletedAt": "2024-01-01"}, {"deletedAt": None})
        assert check({"meta.deletedAt": None}, {"meta": {"deletedAt": None}})

    def test_all_clauses_must_match(self):
        spec = {"status": "active", "age_gte": 18}
        assert check(spec, {"status": "active", "age": 20})
        assert not check(spec, {"status": "active", "age": 10})

    def test_empty_filter_matches_everything(self):
        assert matches({"anything": 1}, ())


class TestLookup:
    """Tests for field lookup."""

    def test_exact_key_wins_over_path(self):
        data = {"a.b": 1, "a": {"b": 2}}
        assert lookup_field(data, "a.b") == 1

    def test_dotted_path(self):
        assert check({"author.name": "ada"}, {"author": {"name": "ada"}})
        assert not check({"author.name": "ada"}, {"author": "ada"})


class TestCurrentUser:
    """Tests for CURRENT_USER resolution."""

    @pytest.fixture
    def context(self):
        return SimpleNamespace(user_id="user-1")

    def test_sentinel_resolves(self, context):
        (clause,) = compile_filter({"owner": CURRENT_USER}, context)
        assert clause.value == "user-1"

    def test_literal_resolves(self, context):
        assert check({"owner": "$currentUser"}, {"owner": "user-1"}, context)

    def test_resolves_inside_lists(self, context):
        (clause,) = compile_filter({"owner_in": [CURRENT_USER, "user-2"]}, context)
        assert clause.value == ["user-1", "user-2"]

    def test_missing_context(self):
        with pytest.raises(UnauthenticatedError):
            compile_filter({"owner": CURRENT_USER})
