"""
Unit tests for ordering and pagination helpers.
"""

import pytest

from dbaas.docbase_server.documents.models import Document
from dbaas.docbase_server.errors import ValidationError
from dbaas.docbase_server.query import MAX_LIMIT, clamp_page, parse_order_by, sort_documents


def doc(doc_id, created_at, **data):
    return Document(
        id=doc_id,
        collection_id="c",
        data=data,
        created_at=created_at,
        updated_at=created_at,
    )


class TestParseOrderBy:
    """Tests for parse_order_by."""

    def test_forms(self):
        assert parse_order_by(None) == []
        assert parse_order_by("age") == [("age", False)]
        assert parse_order_by(["age", ("name", "DESC")]) == [("age", False), ("name", True)]

    def test_bad_direction(self):
        with pytest.raises(ValidationError):
            parse_order_by([("age", "up")])

    def test_bad_entry(self):
        with pytest.raises(ValidationError):
            parse_order_by([("age", "asc", "extra")])
        with pytest.raises(ValidationError):
            parse_order_by([""])


class TestSortDocuments:
    """Tests for sort_documents."""

    def test_no_order_keeps_input_order(self):
        docs = [doc("b", 2), doc("a", 1)]
        assert [d.id for d in sort_documents(docs)] == ["b", "a"]

    def test_ascending_and_descending(self):
        docs = [doc("1", 1, n=2), doc("2", 2, n=3), doc("3", 3, n=1)]
        assert [d.id for d in sort_documents(docs, "n")] == ["3", "1", "2"]
        assert [d.id for d in sort_documents(docs, [("n", "desc")])] == ["2", "1", "3"]

    def test_missing_sorts_as_minimum(self):
        docs = [doc("1", 1, n=5), doc("2", 2), doc("3", 3, n=None)]
        assert [d.id for d in sort_documents(docs, "n")] == ["2", "3", "1"]
        assert [d.id for d in sort_documents(docs, [("n", "desc")])][0] == "1"

    def test_ties_broken_by_created_at_then_id(self):
        docs = [doc("b", 5, n=1), doc("a", 5, n=1), doc("c", 1, n=1)]
        assert [d.id for d in sort_documents(docs, "n")] == ["c", "a", "b"]
        # Descending keeps the tie-break ascending
        assert [d.id for d in sort_documents(docs, [("n", "desc")])] == ["c", "a", "b"]

    def test_multiple_keys(self):
        docs = [
            doc("1", 1, team="x", score=1),
            doc("2", 2, team="y", score=5),
            doc("3", 3, team="x", score=9),
        ]
        ordered = sort_documents(docs, ["team", ("score", "desc")])
        assert [d.id for d in ordered] == ["3", "1", "2"]

    def test_mixed_types(self):
        docs = [doc("s", 1, v="a"), doc("n", 2, v=1), doc("b", 3, v=False)]
        assert [d.id for d in sort_documents(docs, "v")] == ["b", "n", "s"]


class TestClampPage:
    """Tests for clamp_page."""

    @pytest.mark.parametrize(
        "limit,offset,expected",
        [
            (10, 5, (10, 5)),
            (0, -3, (1, 0)),
            (5000, 0, (MAX_LIMIT, 0)),
        ],
    )
    def test_clamping(self, limit, offset, expected):
        assert clamp_page(limit, offset) == expected
