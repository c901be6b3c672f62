"""
Query module for Docbase - filter compilation, evaluation and ordering.

The same compiled predicates are used by document listing and by the
change notification bus's per-subscription match test.

Invariants:
    - Filters are parsed once into Predicate tuples, then evaluated
      generically per operator
    - Clauses are ANDed; there is no OR across clauses
    - Sorting is deterministic (created_at, id tiebreak)
"""

from .filters import (
    CURRENT_USER,
    CURRENT_USER_LITERAL,
    Operator,
    Predicate,
    compile_filter,
    lookup_field,
    make_predicate,
    matches,
)
from .ordering import MAX_LIMIT, clamp_page, parse_order_by, sort_documents

__all__ = [
    "CURRENT_USER",
    "CURRENT_USER_LITERAL",
    "Operator",
    "Predicate",
    "compile_filter",
    "lookup_field",
    "make_predicate",
    "matches",
    "MAX_LIMIT",
    "clamp_page",
    "parse_order_by",
    "sort_documents",
]
