"""
Filter compilation and evaluation.

A filter specification is compiled once into an ordered tuple of
Predicate clauses which are implicitly ANDed. Two input encodings are
accepted:

- Mapping form: a bare key implies ``eq``; ``field_<op>`` keys select
  another operator, e.g. ``{"status": "active", "age_gte": 18,
  "tags_array_contains": "python"}``.
- Explicit form: a sequence of ``Predicate`` objects or
  ``(field, operator, value)`` triples. Use it when a field name itself
  ends in an operator suffix (``sign_in`` would otherwise parse as
  ``sign`` + ``in``).

Field lookup tries the exact key first, then a dotted path into nested
objects. A missing field never matches. A stored null only matches
``eq null``; every other operator treats it like a missing field.

Invariants:
    - Operator/value compatibility is checked at compile time
    - Evaluation never mutates document data
    - CURRENT_USER values are resolved at compile time from an explicit
      AuthContext, never from ambient session state
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import UnauthenticatedError, ValidationError
from ..values import ValueType, parse_date, validate_value, values_equal

if TYPE_CHECKING:
    from ..auth.manager import AuthContext

logger = logging.getLogger(__name__)


class Operator(Enum):
    """Predicate operators."""

    EQ = "eq"
    CONTAINS = "contains"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"
    IN = "in"
    NOT_IN = "not-in"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"

    @classmethod
    def parse(cls, name: str) -> Operator:
        """Parse an operator name; underscores and dashes are interchangeable.

        Raises:
            ValidationError: If the operator is unknown
        """
        normalized = str(name).strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Unknown filter operator: {name}",
                errors=[f"operator must be one of: {', '.join(op.value for op in cls)}"],
            )


ORDERING_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
STRING_OPERATORS = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})
LIST_OPERATORS = frozenset({Operator.ARRAY_CONTAINS_ANY, Operator.IN, Operator.NOT_IN})

# Longest suffix first so "_not_in" wins over "_in"
_KEY_SUFFIXES: tuple[tuple[str, Operator], ...] = tuple(
    sorted(
        (
            ("_contains", Operator.CONTAINS),
            ("_gt", Operator.GT),
            ("_gte", Operator.GTE),
            ("_lt", Operator.LT),
            ("_lte", Operator.LTE),
            ("_array_contains", Operator.ARRAY_CONTAINS),
            ("_array_contains_any", Operator.ARRAY_CONTAINS_ANY),
            ("_in", Operator.IN),
            ("_not_in", Operator.NOT_IN),
            ("_starts_with", Operator.STARTS_WITH),
            ("_ends_with", Operator.ENDS_WITH),
        ),
        key=lambda item: len(item[0]),
        reverse=True,
    )
)


class _CurrentUser:
    """Placeholder resolved to the authenticated user's id."""

    def __repr__(self) -> str:
        return "CURRENT_USER"


CURRENT_USER = _CurrentUser()
CURRENT_USER_LITERAL = "$currentUser"

_MISSING = object()


def lookup_field(data: Mapping[str, Any], path: str) -> Any:
    """Get a field value by exact key or dotted path.

    Returns:
        The value, or the module's missing sentinel if absent
    """
    if path in data:
        return data[path]

    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


@dataclass(frozen=True)
class Predicate:
    """A single field/operator/value test.

    Attributes:
        field: Field name or dotted path
        operator: Operator to apply
        value: Comparison value (already validated)
    """

    field: str
    operator: Operator
    value: Any

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        """Test one document's data.

        Raises:
            ValidationError: If the stored field type is incompatible
                with the operator (non-string for contains, incomparable
                type for gt/gte/lt/lte)
        """
        actual = lookup_field(data, self.field)
        if actual is _MISSING:
            return False

        op = self.operator

        if op is Operator.EQ:
            return values_equal(actual, self.value)

        if actual is None:
            return False

        if op is Operator.CONTAINS:
            if not isinstance(actual, str):
                raise ValidationError(
                    f"Field '{self.field}' is not a string; 'contains' requires a string field",
                    field_name=self.field,
                )
            return self.value.casefold() in actual.casefold()

        if op in ORDERING_OPERATORS:
            return _compare(op, self.field, actual, self.value)

        if op is Operator.ARRAY_CONTAINS:
            return isinstance(actual, list) and any(
                values_equal(item, self.value) for item in actual
            )

        if op is Operator.ARRAY_CONTAINS_ANY:
            return isinstance(actual, list) and any(
                values_equal(item, candidate) for item in actual for candidate in self.value
            )

        if op is Operator.IN:
            return any(values_equal(actual, candidate) for candidate in self.value)

        if op is Operator.NOT_IN:
            return not any(values_equal(actual, candidate) for candidate in self.value)

        if op is Operator.STARTS_WITH:
            return isinstance(actual, str) and actual.startswith(self.value)

        if op is Operator.ENDS_WITH:
            return isinstance(actual, str) and actual.endswith(self.value)

        raise ValidationError(f"Unsupported operator: {op}")

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


def _is_number(value: Any) -> bool:
    return ValueType.of(value) is ValueType.NUMBER


def _compare(op: Operator, field_name: str, actual: Any, expected: Any) -> bool:
    """Numeric or date-ordered comparison."""
    if _is_number(expected):
        if not _is_number(actual):
            raise ValidationError(
                f"Type mismatch on '{field_name}': stored {ValueType.of(actual).value} "
                f"is not comparable to number",
                field_name=field_name,
            )
        left, right = actual, expected
    else:
        left = parse_date(actual)
        right = parse_date(expected)
        if left is None:
            raise ValidationError(
                f"Type mismatch on '{field_name}': stored {ValueType.of(actual).value} "
                f"is not comparable to date",
                field_name=field_name,
            )

    if op is Operator.GT:
        return left > right
    if op is Operator.GTE:
        return left >= right
    if op is Operator.LT:
        return left < right
    return left <= right


def _resolve_current_user(value: Any, context: AuthContext | None, field_name: str) -> Any:
    if value is CURRENT_USER or value == CURRENT_USER_LITERAL:
        if context is None:
            raise UnauthenticatedError(
                f"Filter on '{field_name}' references the current user but no session is active",
                reason="missing_context",
            )
        return context.user_id
    if isinstance(value, (list, tuple)):
        return [_resolve_current_user(item, context, field_name) for item in value]
    return value


def make_predicate(
    field_name: str,
    operator: Operator | str,
    value: Any,
    context: AuthContext | None = None,
) -> Predicate:
    """Build one validated predicate.

    Raises:
        ValidationError: On an empty field, unknown operator or a value
            incompatible with the operator
        UnauthenticatedError: If CURRENT_USER is used without a context
    """
    if not isinstance(field_name, str) or not field_name:
        raise ValidationError("Filter field name must be a non-empty string", field_name=None)

    op = operator if isinstance(operator, Operator) else Operator.parse(operator)
    value = validate_value(_resolve_current_user(value, context, field_name), field_name)
    value_type = ValueType.of(value)

    if op in STRING_OPERATORS and value_type is not ValueType.STRING:
        raise ValidationError(
            f"Operator '{op.value}' on '{field_name}' requires a string value",
            field_name=field_name,
        )

    if op in LIST_OPERATORS and value_type is not ValueType.ARRAY:
        raise ValidationError(
            f"Operator '{op.value}' on '{field_name}' requires an array value",
            field_name=field_name,
        )

    if op is Operator.ARRAY_CONTAINS and value_type in (ValueType.ARRAY, ValueType.OBJECT):
        raise ValidationError(
            f"Operator 'array-contains' on '{field_name}' requires a scalar value",
            field_name=field_name,
        )

    if op in ORDERING_OPERATORS and value_type is not ValueType.NUMBER and parse_date(value) is None:
        raise ValidationError(
            f"Operator '{op.value}' on '{field_name}' requires a number or ISO-8601 date",
            field_name=field_name,
        )

    return Predicate(field=field_name, operator=op, value=value)


def _split_key(key: str) -> tuple[str, Operator]:
    for suffix, op in _KEY_SUFFIXES:
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)], op
    return key, Operator.EQ


def compile_filter(spec: Any, context: AuthContext | None = None) -> tuple[Predicate, ...]:
    """Compile a filter specification into predicate clauses.

    Args:
        spec: None, a mapping, or a sequence of Predicate / triples
        context: Authenticated user context for CURRENT_USER values

    Returns:
        Tuple of predicates (empty for no filter)

    Raises:
        ValidationError: If the specification is malformed
        UnauthenticatedError: If CURRENT_USER is used without a context
    """
    if spec is None:
        return ()

    if isinstance(spec, Mapping):
        predicates = []
        for key, value in spec.items():
            if not isinstance(key, str):
                raise ValidationError(f"Filter keys must be strings, got {type(key).__name__}")
            field_name, op = _split_key(key)
            predicates.append(make_predicate(field_name, op, value, context))
        return tuple(predicates)

    if isinstance(spec, Sequence) and not isinstance(spec, (str, bytes)):
        predicates = []
        for clause in spec:
            if isinstance(clause, Predicate):
                predicates.append(make_predicate(clause.field, clause.operator, clause.value, context))
            elif isinstance(clause, Sequence) and not isinstance(clause, str) and len(clause) == 3:
                field_name, op, value = clause
                predicates.append(make_predicate(field_name, op, value, context))
            else:
                raise ValidationError(
                    f"Invalid filter clause: {clause!r}",
                    errors=["clauses must be Predicate objects or (field, operator, value) triples"],
                )
        return tuple(predicates)

    raise ValidationError(f"Filter must be a mapping or a list of clauses, got {type(spec).__name__}")


def matches(data: Mapping[str, Any], predicates: Sequence[Predicate]) -> bool:
    """Return True if every predicate matches (empty filter matches all)."""
    return all(predicate.evaluate(data) for predicate in predicates)
